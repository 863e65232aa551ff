from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Progress:
    """Lesson completion summary, recomputed from LessonProgress facts."""

    enrollment_id: UUID
    completed: int
    total: int
    completed_lesson_ids: tuple[UUID, ...] = ()

    @property
    def all_completed(self) -> bool:
        return self.completed >= self.total

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 100
        return min(100, self.completed * 100 // self.total)


@dataclass(frozen=True, slots=True)
class Eligibility:
    """Exam gate for one enrollment.  Derived, never stored."""

    enrollment_id: UUID
    all_lessons_completed: bool
    attempts_used: int
    attempts_available: int
    vouchers_purchased: int
    vouchers_unconsumed: int
    open_attempt_id: UUID | None = None
    enrollment_current: bool = True
    max_vouchers: int = 1

    @property
    def can_attempt_exam(self) -> bool:
        return (
            self.enrollment_current
            and self.all_lessons_completed
            and self.open_attempt_id is None
            and self.attempts_available > 0
        )

    @property
    def can_purchase_voucher(self) -> bool:
        return (
            self.enrollment_current
            and self.vouchers_purchased < self.max_vouchers
        )
