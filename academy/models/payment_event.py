from __future__ import annotations

from dataclasses import dataclass

COURSE_PURCHASE = "course_purchase"
VOUCHER_PURCHASE = "voucher_purchase"
REFUND = "refund"
EVENT_TYPES = frozenset({COURSE_PURCHASE, VOUCHER_PURCHASE, REFUND})

APPLIED = "applied"
DUPLICATE = "duplicate"
REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class PaymentEventRecord:
    """Dedupe ledger entry.  The idempotency anchor for the whole lifecycle."""

    external_event_id: str
    event_type: str
    processed_at: int
    outcome: str = APPLIED
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class PaymentOutcome:
    external_event_id: str
    status: str  # applied|duplicate|rejected
    reason: str | None = None
    enrollment_id: str | None = None
    voucher_id: str | None = None
