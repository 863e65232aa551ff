from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from academy.api.admin import router as admin_router
from academy.api.certificates import router as certificates_router
from academy.api.courses import router as courses_router
from academy.api.enrollments import router as enrollments_router
from academy.api.errors import register_exception_handlers
from academy.api.exams import router as exams_router
from academy.api.health import router as health_router
from academy.api.metrics_endpoint import router as metrics_router
from academy.api.payments import router as payments_router
from academy.api.progress import router as progress_router
from academy.api.webhooks import router as webhooks_router
from academy.core.config import SETTINGS
from academy.core.logging import setup_logging
from academy.db.engine import lifespan_db
from academy.db.redis import lifespan_redis
from academy.middleware.metrics import MetricsMiddleware
from academy.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order (Redis, then DB).
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="academy-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[SETTINGS.app_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last-added runs first: RequestContext -> Metrics -> CORS -> route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

register_exception_handlers(app)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(courses_router)
app.include_router(payments_router)
app.include_router(webhooks_router)
app.include_router(enrollments_router)
app.include_router(progress_router)
app.include_router(exams_router)
app.include_router(certificates_router)
app.include_router(admin_router)

logger.info(
    "academy-service started  env=%s log_level=%s port=%d ledger=%s docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "postgres" if SETTINGS.database_url else "in-memory",
    "on" if SETTINGS.is_dev else "off",
)
