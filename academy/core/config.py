from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getint(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    app_url: str = "http://localhost:5173"
    # Exam and quota rules
    exam_length: int = 100
    pass_threshold: int = 80
    base_attempts: int = 2
    max_vouchers: int = 1
    voucher_price_cents: int = 14900
    certificate_prefix: str = "NSBS"
    ledger_max_retries: int = 3

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    port = _getint("PORT", 8000, minimum=1)

    pass_threshold = _getint("PASS_THRESHOLD", 80)
    if pass_threshold > 100:
        raise ValueError(f"PASS_THRESHOLD must be <= 100 (got {pass_threshold})")

    certificate_prefix = _getenv("CERTIFICATE_PREFIX", "NSBS").upper()
    if not certificate_prefix.isalnum():
        raise ValueError(
            f"CERTIFICATE_PREFIX must be alphanumeric (got {certificate_prefix!r})"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in ("1", "true", "yes"),
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        stripe_secret_key=_getenv("STRIPE_SECRET_KEY", "") or None,
        stripe_webhook_secret=_getenv("STRIPE_WEBHOOK_SECRET", "") or None,
        app_url=_getenv("APP_URL", "http://localhost:5173").rstrip("/"),
        exam_length=_getint("EXAM_LENGTH", 100, minimum=1),
        pass_threshold=pass_threshold,
        base_attempts=_getint("BASE_ATTEMPTS", 2, minimum=1),
        max_vouchers=_getint("MAX_VOUCHERS", 1),
        voucher_price_cents=_getint("VOUCHER_PRICE_CENTS", 14900),
        certificate_prefix=certificate_prefix,
        ledger_max_retries=_getint("LEDGER_MAX_RETRIES", 3),
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
