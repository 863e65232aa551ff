from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

# active:    paid, lessons in progress
# completed: every lesson done; exam may be attempted
# cancelled: refunded (issued certificates are kept)
# expired:   access window closed; written by an external expiry job,
#            never by this service, and treated like cancelled here
ACTIVE = "active"
COMPLETED = "completed"
CANCELLED = "cancelled"
EXPIRED = "expired"

# Statuses that still grant access to the course.  At most one enrollment
# per (user, course) may be in one of these at a time.
CURRENT_STATUSES = frozenset({ACTIVE, COMPLETED})


@dataclass(frozen=True, slots=True)
class Enrollment:
    id: UUID
    user_id: str
    course_id: UUID
    status: str
    enrolled_at: int
    lesson_total: int
    completed_at: int | None = None

    @property
    def is_current(self) -> bool:
        return self.status in CURRENT_STATUSES

    @staticmethod
    def new(
        *, user_id: str, course_id: UUID, enrolled_at: int, lesson_total: int
    ) -> Enrollment:
        return Enrollment(
            id=uuid4(),
            user_id=user_id,
            course_id=course_id,
            status=ACTIVE,
            enrolled_at=enrolled_at,
            lesson_total=lesson_total,
        )


@dataclass(frozen=True, slots=True)
class LessonProgress:
    """Fact: this enrollment completed this lesson at this time."""

    enrollment_id: UUID
    lesson_id: UUID
    completed_at: int


@dataclass(frozen=True, slots=True)
class Voucher:
    """A purchased right to one exam attempt beyond the base quota."""

    id: UUID
    enrollment_id: UUID
    purchased_at: int
    consumed_by_attempt_id: UUID | None = None
    payment_event_id: str | None = None

    @property
    def is_consumed(self) -> bool:
        return self.consumed_by_attempt_id is not None

    @staticmethod
    def new(
        *,
        enrollment_id: UUID,
        purchased_at: int,
        payment_event_id: str | None = None,
    ) -> Voucher:
        return Voucher(
            id=uuid4(),
            enrollment_id=enrollment_id,
            purchased_at=purchased_at,
            payment_event_id=payment_event_id,
        )
