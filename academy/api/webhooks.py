"""Payment gateway webhook receiver.

Accepts two body shapes:

  * the gateway-neutral envelope
    ``{"externalEventId", "type", "userId", "courseId", "enrollmentId", "amount"}``
  * a raw Stripe event (``"object": "event"``), translated from the
    checkout-session metadata set in payments.py

Status codes are chosen for the sender's retry logic: 200 for applied,
duplicate and rejected (stop re-delivering), 503 on transient storage
failure (re-deliver later), 400 for an unverifiable signature or a body
that is not a JSON object.

An event whose fields fail validation is still recorded under its id as
rejected, so re-deliveries come back as duplicates.  Without a usable id
there is nothing to record; the answer is a 200 rejection all the same.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from academy.core.config import SETTINGS
from academy.services.lifecycle import lifecycle
from academy.services.payment_gateway import verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])

# Column widths of payment_events.external_event_id and event_type.
MAX_EVENT_ID = 255
MAX_EVENT_TYPE = 32


class PaymentEventIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    external_event_id: str = Field(alias="externalEventId", max_length=MAX_EVENT_ID)
    type: str = Field(default="", max_length=MAX_EVENT_TYPE)
    user_id: str | None = Field(default=None, alias="userId")
    course_id: str | None = Field(default=None, alias="courseId")
    enrollment_id: str | None = Field(default=None, alias="enrollmentId")
    amount: int | float | None = None  # informational only


class PaymentEventOut(BaseModel):
    status: str  # applied|duplicate|rejected|ignored
    reason: str | None = None
    enrollment_id: str | None = None
    voucher_id: str | None = None


def envelope_from_stripe(event: dict) -> dict | None:
    """Map a Stripe event to the neutral envelope, or None to ignore it."""
    obj = (event.get("data") or {}).get("object") or {}
    metadata = obj.get("metadata") or {}
    event_type = event.get("type")

    if event_type == "checkout.session.completed":
        kind = metadata.get("type", "")
        amount = obj.get("amount_total")
    elif event_type == "charge.refunded":
        kind = "refund"
        amount = obj.get("amount_refunded")
    else:
        return None

    return {
        "externalEventId": event.get("id", ""),
        "type": kind,
        "userId": metadata.get("user_id"),
        "courseId": metadata.get("course_id"),
        "enrollmentId": metadata.get("enrollment_id"),
        "amount": amount,
    }


def _recordable(value: object, max_length: int) -> bool:
    return isinstance(value, str) and bool(value.strip()) and len(value) <= max_length


@router.post("/payments", response_model=PaymentEventOut)
async def receive_payment_event(request: Request) -> PaymentEventOut:
    body = await request.body()

    if SETTINGS.stripe_webhook_secret and not verify_webhook_signature(
        body, request.headers.get("stripe-signature"), SETTINGS.stripe_webhook_secret
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature"
        )

    try:
        raw = json.loads(body)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Body is not valid JSON"
        ) from None
    if not isinstance(raw, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be an object"
        )

    if raw.get("object") == "event":
        envelope = envelope_from_stripe(raw)
        if envelope is None:
            logger.debug("Ignoring Stripe event type %s", raw.get("type"))
            return PaymentEventOut(status="ignored")
        raw = envelope

    event_id = raw.get("externalEventId")
    if not _recordable(event_id, MAX_EVENT_ID):
        logger.warning("Payment event without a usable externalEventId rejected")
        return PaymentEventOut(status="rejected", reason="missing externalEventId")

    try:
        event = PaymentEventIn.model_validate(raw)
    except PydanticValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        event_type = raw.get("type")
        outcome = await lifecycle.process_payment_event(
            event_id,
            event_type if _recordable(event_type, MAX_EVENT_TYPE) else "",
            {},
            rejection=f"malformed {', '.join(fields)}",
        )
    else:
        payload = {
            "user_id": event.user_id,
            "course_id": event.course_id,
            "enrollment_id": event.enrollment_id,
            "amount": event.amount,
        }
        outcome = await lifecycle.process_payment_event(
            event.external_event_id, event.type, payload
        )
    return PaymentEventOut(
        status=outcome.status,
        reason=outcome.reason,
        enrollment_id=outcome.enrollment_id,
        voucher_id=outcome.voucher_id,
    )
