"""Error taxonomy for the enrollment-to-certification lifecycle.

Components raise these; the API layer maps them to HTTP status codes
(see academy.api.errors).  Only TransientStorageError is safe to retry.
"""

from __future__ import annotations


class LifecycleError(Exception):
    """Base class.  ``message`` is safe to show to the end user."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(LifecycleError):
    """Malformed input.  Rejected, never retried."""


class NotFoundError(LifecycleError):
    """Referenced enrollment, attempt, lesson or certificate does not exist."""


class ConflictError(LifecycleError):
    """The request would violate a lifecycle invariant.

    Expected, user-facing outcomes: already enrolled, exam already in
    progress, no attempts remaining, attempt already submitted.
    """


class DuplicateEventError(LifecycleError):
    """Payment event already processed.

    Raised by the ledger when the idempotency anchor already exists; the
    payment processor turns it into a ``duplicate`` outcome so the gateway
    sees success and stops re-delivering.
    """

    def __init__(self, external_event_id: str) -> None:
        super().__init__(f"payment event {external_event_id!r} already processed")
        self.external_event_id = external_event_id


class AccessDeniedError(LifecycleError):
    """Caller may not act on this enrollment or attempt (not owner, not admin)."""


class PaymentGatewayError(LifecycleError):
    """The payment provider refused or failed a checkout request."""


class TransientStorageError(LifecycleError):
    """Ledger I/O failure.  The transaction was rolled back; retry is safe."""


# User-facing messages shared between services and tests.
ALREADY_ENROLLED = "already enrolled"
ATTEMPT_ALREADY_OPEN = "exam already in progress"
NO_ATTEMPTS_REMAINING = (
    "no attempts remaining; purchase a voucher for another attempt"
)
LESSONS_INCOMPLETE = "all lessons must be completed before starting the exam"
ENROLLMENT_NOT_ACTIVE = "enrollment is not active"
