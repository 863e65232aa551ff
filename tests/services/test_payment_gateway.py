"""Checkout sessions and webhook signature checks."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import time
from types import SimpleNamespace

import pytest
import stripe

from academy.core.errors import PaymentGatewayError
from academy.services.payment_gateway import (
    OfflineGateway,
    StripeGateway,
    verify_webhook_signature,
)

SECRET = "whsec_test_secret"


def sign(payload: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe does."""
    ts = timestamp if timestamp is not None else int(time.time())
    signed = f"{ts}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def _checkout(gateway, **overrides):
    kwargs = {
        "product_name": "AI Foundations",
        "amount_cents": 49900,
        "metadata": {"type": "course_purchase", "user_id": "u1", "course_id": "c1"},
        "success_path": "/courses/ai?checkout=success",
        "cancel_path": "/courses/ai?checkout=cancelled",
    }
    kwargs.update(overrides)
    return asyncio.run(gateway.create_checkout(**kwargs))


def test_offline_sessions_are_deterministic() -> None:
    gateway = OfflineGateway("http://localhost:5173/")
    first = _checkout(gateway)
    second = _checkout(gateway)
    other = _checkout(gateway, amount_cents=100)

    assert first == second
    assert first.id != other.id
    assert first.url.startswith("http://localhost:5173/courses/ai?checkout=success")
    assert len(gateway.sessions) == 3


def test_stripe_gateway_builds_one_line_item(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict] = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(id="cs_test_123", url="https://checkout.stripe.com/x")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    session = _checkout(StripeGateway("sk_test_x", "https://academy.example"))

    assert session.id == "cs_test_123"
    (call,) = calls
    assert call["mode"] == "payment"
    assert call["line_items"][0]["price_data"]["unit_amount"] == 49900
    assert call["metadata"]["type"] == "course_purchase"
    assert call["success_url"] == "https://academy.example/courses/ai?checkout=success"


def test_stripe_errors_become_gateway_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_create(**kwargs):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.checkout.Session, "create", failing_create)
    with pytest.raises(PaymentGatewayError):
        _checkout(StripeGateway("sk_test_x", "https://academy.example"))


# ---- webhook signatures ----


def test_valid_signature_verifies() -> None:
    payload = b'{"id": "evt_1"}'
    assert verify_webhook_signature(payload, sign(payload), SECRET) is True


def test_wrong_secret_fails() -> None:
    payload = b'{"id": "evt_1"}'
    assert verify_webhook_signature(payload, sign(payload, "whsec_other"), SECRET) is False


def test_tampered_body_fails() -> None:
    header = sign(b'{"id": "evt_1"}')
    assert verify_webhook_signature(b'{"id": "evt_2"}', header, SECRET) is False


def test_missing_header_fails() -> None:
    assert verify_webhook_signature(b"{}", None, SECRET) is False
