"""Checkout initiation and webhook signature checks against Stripe.

Purchases never write lifecycle state here.  A checkout session carries
metadata (user_id + course_id, or enrollment_id) that comes back on the
gateway's webhook, and only the webhook path creates enrollments and
vouchers.

With no STRIPE_SECRET_KEY configured an offline gateway hands out
deterministic fake sessions so dev and tests run without the network.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Protocol

import stripe

from academy.core.config import SETTINGS
from academy.core.errors import PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    id: str
    url: str


class PaymentGateway(Protocol):
    async def create_checkout(
        self,
        *,
        product_name: str,
        amount_cents: int,
        metadata: dict[str, str],
        success_path: str,
        cancel_path: str,
    ) -> CheckoutSession: ...


class StripeGateway:
    """Stripe Checkout in ``payment`` mode, one line item per session."""

    def __init__(self, api_key: str, app_url: str) -> None:
        self._api_key = api_key
        self._app_url = app_url.rstrip("/")

    async def create_checkout(
        self,
        *,
        product_name: str,
        amount_cents: int,
        metadata: dict[str, str],
        success_path: str,
        cancel_path: str,
    ) -> CheckoutSession:
        try:
            # stripe-python is synchronous; keep it off the event loop.
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self._api_key,
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": "usd",
                            "product_data": {"name": product_name},
                            "unit_amount": amount_cents,
                        },
                        "quantity": 1,
                    }
                ],
                metadata=metadata,
                success_url=f"{self._app_url}{success_path}",
                cancel_url=f"{self._app_url}{cancel_path}",
            )
        except stripe.StripeError as e:
            logger.error("Stripe checkout creation failed: %s", e)
            raise PaymentGatewayError("payment provider unavailable") from e
        return CheckoutSession(id=session.id, url=session.url or "")


class OfflineGateway:
    """Deterministic stand-in used when Stripe is not configured."""

    def __init__(self, app_url: str) -> None:
        self._app_url = app_url.rstrip("/")
        self.sessions: list[tuple[CheckoutSession, dict[str, str]]] = []

    async def create_checkout(
        self,
        *,
        product_name: str,
        amount_cents: int,
        metadata: dict[str, str],
        success_path: str,
        cancel_path: str,
    ) -> CheckoutSession:
        digest = hashlib.sha256(
            json.dumps(
                {"name": product_name, "amount": amount_cents, "metadata": metadata},
                sort_keys=True,
            ).encode()
        ).hexdigest()[:24]
        session = CheckoutSession(
            id=f"cs_offline_{digest}",
            url=f"{self._app_url}{success_path}&session_id=cs_offline_{digest}",
        )
        self.sessions.append((session, metadata))
        logger.info("Offline checkout session %s for %s", session.id, product_name)
        return session


def verify_webhook_signature(payload: bytes, sig_header: str | None, secret: str) -> bool:
    """Check a ``Stripe-Signature`` header against the raw request body."""
    if not sig_header:
        return False
    try:
        stripe.WebhookSignature.verify_header(payload.decode("utf-8"), sig_header, secret)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed: %s", e)
        return False
    return True


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if SETTINGS.stripe_secret_key:
    payment_gateway: PaymentGateway = StripeGateway(
        SETTINGS.stripe_secret_key, SETTINGS.app_url
    )
else:
    payment_gateway = OfflineGateway(SETTINGS.app_url)
