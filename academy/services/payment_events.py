"""Payment Event Processor.

Turns a verified gateway event into lifecycle state, exactly once per
external event id.  The PaymentEventRecord insert is the first write in
the transaction; if it reports a duplicate nothing else happens.

Permanently invalid events (unknown course, closed enrollment, missing
fields) are recorded with outcome ``rejected`` and committed, so the
gateway's re-deliveries land on the duplicate path instead of looping.
"""

from __future__ import annotations

import logging
from uuid import UUID

from academy.core.errors import ALREADY_ENROLLED, DuplicateEventError, ValidationError
from academy.models.enrollment import CANCELLED, CURRENT_STATUSES, Enrollment, Voucher
from academy.models.payment_event import (
    APPLIED,
    COURSE_PURCHASE,
    DUPLICATE,
    EVENT_TYPES,
    REFUND,
    REJECTED,
    VOUCHER_PURCHASE,
    PaymentEventRecord,
    PaymentOutcome,
)
from academy.repos.ledger_repo import Ledger

logger = logging.getLogger(__name__)


class _Rejected(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def _require_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise _Rejected(f"missing {key}")
    return value.strip()


def _require_uuid(payload: dict, key: str) -> UUID:
    raw = _require_str(payload, key)
    try:
        return UUID(raw)
    except ValueError:
        raise _Rejected(f"invalid {key}") from None


async def process_payment_event(
    ledger: Ledger,
    external_event_id: str,
    event_type: str,
    payload: dict,
    *,
    now: int,
    max_vouchers: int,
    rejection: str | None = None,
) -> PaymentOutcome:
    """Apply one payment event inside the caller's transaction.

    Raises ValidationError only when the event cannot even be recorded
    (empty id).  Everything else becomes an outcome.  A ``rejection``
    reason (the receiver could not parse the event) records the id as
    rejected without looking at the payload.
    """
    if not external_event_id or not external_event_id.strip():
        raise ValidationError("externalEventId must be non-empty")

    try:
        await ledger.insert_payment_event(
            PaymentEventRecord(
                external_event_id=external_event_id,
                event_type=event_type,
                processed_at=now,
            )
        )
    except DuplicateEventError:
        logger.info(
            "Duplicate payment event ignored",
            extra={"event_id": external_event_id, "event_type": event_type},
        )
        return PaymentOutcome(external_event_id=external_event_id, status=DUPLICATE)

    try:
        if rejection is not None:
            raise _Rejected(rejection)
        if event_type == COURSE_PURCHASE:
            return await _apply_course_purchase(ledger, external_event_id, payload, now)
        if event_type == VOUCHER_PURCHASE:
            return await _apply_voucher_purchase(
                ledger, external_event_id, payload, now, max_vouchers
            )
        if event_type == REFUND:
            return await _apply_refund(ledger, external_event_id, payload)
        raise _Rejected(
            f"unknown event type {event_type!r}; expected one of {sorted(EVENT_TYPES)}"
        )
    except _Rejected as rej:
        await ledger.set_payment_event_outcome(external_event_id, REJECTED, rej.reason)
        logger.warning(
            "Payment event rejected: %s",
            rej.reason,
            extra={
                "event_id": external_event_id,
                "event_type": event_type,
                "outcome": REJECTED,
            },
        )
        return PaymentOutcome(
            external_event_id=external_event_id, status=REJECTED, reason=rej.reason
        )


async def _apply_course_purchase(
    ledger: Ledger, event_id: str, payload: dict, now: int
) -> PaymentOutcome:
    user_id = _require_str(payload, "user_id")
    course_id = _require_uuid(payload, "course_id")

    course = await ledger.get_course(course_id)
    if course is None:
        raise _Rejected("unknown course")

    if await ledger.find_current_enrollment(user_id, course_id) is not None:
        raise _Rejected(ALREADY_ENROLLED)

    enrollment = Enrollment.new(
        user_id=user_id,
        course_id=course_id,
        enrolled_at=now,
        lesson_total=await ledger.count_lessons(course_id),
    )
    # The partial unique index has the final word under concurrency.
    if not await ledger.insert_enrollment(enrollment):
        raise _Rejected(ALREADY_ENROLLED)

    logger.info(
        "Enrollment created for user=%s course=%s",
        user_id,
        course.slug,
        extra={"event_id": event_id, "enrollment_id": str(enrollment.id)},
    )
    return PaymentOutcome(
        external_event_id=event_id, status=APPLIED, enrollment_id=str(enrollment.id)
    )


async def _apply_voucher_purchase(
    ledger: Ledger, event_id: str, payload: dict, now: int, max_vouchers: int
) -> PaymentOutcome:
    enrollment_id = _require_uuid(payload, "enrollment_id")

    enrollment = await ledger.get_enrollment(enrollment_id, lock=True)
    if enrollment is None:
        raise _Rejected("unknown enrollment")
    if not enrollment.is_current:
        raise _Rejected("enrollment is not active")

    vouchers = await ledger.list_vouchers(enrollment_id)
    if len(vouchers) >= max_vouchers:
        raise _Rejected("voucher limit reached")

    voucher = Voucher.new(
        enrollment_id=enrollment_id, purchased_at=now, payment_event_id=event_id
    )
    await ledger.add_voucher(voucher)
    logger.info(
        "Voucher %s granted",
        voucher.id,
        extra={"event_id": event_id, "enrollment_id": str(enrollment_id)},
    )
    return PaymentOutcome(
        external_event_id=event_id,
        status=APPLIED,
        enrollment_id=str(enrollment_id),
        voucher_id=str(voucher.id),
    )


async def _apply_refund(ledger: Ledger, event_id: str, payload: dict) -> PaymentOutcome:
    if payload.get("enrollment_id"):
        enrollment = await ledger.get_enrollment(
            _require_uuid(payload, "enrollment_id"), lock=True
        )
    else:
        enrollment = await ledger.find_current_enrollment(
            _require_str(payload, "user_id"), _require_uuid(payload, "course_id")
        )
    if enrollment is None:
        raise _Rejected("unknown enrollment")

    # Issued certificates stay.  An open attempt is left orphaned.
    cancelled = await ledger.transition_enrollment(
        enrollment.id, from_statuses=CURRENT_STATUSES, to_status=CANCELLED
    )
    if not cancelled:
        raise _Rejected("enrollment already closed")

    logger.info(
        "Enrollment cancelled by refund",
        extra={"event_id": event_id, "enrollment_id": str(enrollment.id)},
    )
    return PaymentOutcome(
        external_event_id=event_id, status=APPLIED, enrollment_id=str(enrollment.id)
    )
