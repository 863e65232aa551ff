"""Progress Tracker: lesson completion facts and the exam eligibility read.

Counts are always recomputed from LessonProgress, ExamAttempt and Voucher
rows inside the caller's transaction; nothing here keeps a counter.
"""

from __future__ import annotations

import logging
from uuid import UUID

from academy.core.errors import (
    ENROLLMENT_NOT_ACTIVE,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from academy.models.enrollment import ACTIVE, COMPLETED, Enrollment, LessonProgress
from academy.models.progress import Eligibility, Progress
from academy.repos.ledger_repo import Ledger

logger = logging.getLogger(__name__)


async def load_enrollment(
    ledger: Ledger, enrollment_id: UUID, *, lock: bool = False
) -> Enrollment:
    enrollment = await ledger.get_enrollment(enrollment_id, lock=lock)
    if enrollment is None:
        raise NotFoundError("enrollment not found")
    return enrollment


async def get_progress(ledger: Ledger, enrollment: Enrollment) -> Progress:
    facts = await ledger.list_lesson_progress(enrollment.id)
    return Progress(
        enrollment_id=enrollment.id,
        completed=len(facts),
        total=enrollment.lesson_total,
        completed_lesson_ids=tuple(f.lesson_id for f in facts),
    )


async def mark_lesson_complete(
    ledger: Ledger, enrollment_id: UUID, lesson_id: UUID, *, now: int
) -> tuple[Progress, bool]:
    """Record the fact and return (progress, newly_recorded).

    Re-marking is a no-op: the original completed_at is kept.
    """
    enrollment = await load_enrollment(ledger, enrollment_id, lock=True)
    if not enrollment.is_current:
        raise ConflictError(ENROLLMENT_NOT_ACTIVE)

    lesson = await ledger.get_lesson(lesson_id)
    if lesson is None:
        raise NotFoundError("lesson not found")
    if lesson.course_id != enrollment.course_id:
        raise ValidationError("lesson does not belong to this enrollment's course")

    inserted = await ledger.insert_lesson_progress(
        LessonProgress(enrollment_id=enrollment_id, lesson_id=lesson_id, completed_at=now)
    )
    progress = await get_progress(ledger, enrollment)

    if progress.all_completed and enrollment.status == ACTIVE:
        await ledger.transition_enrollment(
            enrollment_id,
            from_statuses=frozenset({ACTIVE}),
            to_status=COMPLETED,
            completed_at=now,
        )
        logger.info(
            "All %d lessons completed",
            progress.total,
            extra={"enrollment_id": str(enrollment_id)},
        )

    return progress, inserted


async def get_eligibility(
    ledger: Ledger,
    enrollment_id: UUID,
    *,
    base_attempts: int,
    max_vouchers: int,
) -> Eligibility:
    enrollment = await load_enrollment(ledger, enrollment_id)
    progress = await get_progress(ledger, enrollment)
    attempts = await ledger.list_attempts(enrollment_id)
    vouchers = await ledger.list_vouchers(enrollment_id)

    quota = base_attempts + len(vouchers)
    open_attempt = next((a for a in attempts if a.is_open), None)
    return Eligibility(
        enrollment_id=enrollment_id,
        all_lessons_completed=progress.all_completed,
        attempts_used=len(attempts),
        attempts_available=max(0, quota - len(attempts)),
        vouchers_purchased=len(vouchers),
        vouchers_unconsumed=sum(1 for v in vouchers if not v.is_consumed),
        open_attempt_id=open_attempt.id if open_attempt is not None else None,
        enrollment_current=enrollment.is_current,
        max_vouchers=max_vouchers,
    )
