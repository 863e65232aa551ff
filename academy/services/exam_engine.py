"""Exam Attempt Engine.

Per enrollment an attempt goes NoAttempt -> Open -> Graded.  Graded is
terminal; a retry is a new attempt row with the next attempt_number.

start_attempt takes the enrollment row lock first, so two concurrent
starts serialize: the second sees the first's open attempt and gets
"exam already in progress".  Attempts beyond the base quota consume a
voucher in the same transaction that creates them.

submit_attempt grades exactly once.  The conditional update on
submitted_at is the gate; a second submit returns the stored result.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from academy.core.errors import (
    ATTEMPT_ALREADY_OPEN,
    ENROLLMENT_NOT_ACTIVE,
    LESSONS_INCOMPLETE,
    NO_ATTEMPTS_REMAINING,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from academy.models.course import OPTION_IDS, ExamQuestion
from academy.models.exam import (
    ExamAnswer,
    ExamAttempt,
    ExamResult,
    FrozenQuestion,
    QuestionFeedback,
)
from academy.repos.ledger_repo import Ledger
from academy.services.progress import get_progress, load_enrollment

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QuestionSelectionPolicy:
    """How questions are drawn from the bank for a new attempt.

    exam_length:   questions per attempt (capped at the bank size)
    avoid_repeats: prefer questions this enrollment has not been shown
    """

    exam_length: int = 100
    avoid_repeats: bool = False


def select_questions(
    bank: Sequence[ExamQuestion],
    *,
    enrollment_id: UUID,
    attempt_number: int,
    policy: QuestionSelectionPolicy,
    previously_seen: frozenset[UUID] = frozenset(),
) -> list[ExamQuestion]:
    """Deterministic sample seeded by (enrollment_id, attempt_number).

    The same bank and seed always give the same questions in the same
    order, which makes attempts reproducible for audits.
    """
    ordered = sorted(bank, key=lambda q: str(q.id))
    k = min(policy.exam_length, len(ordered))
    rng = random.Random(f"{enrollment_id}:{attempt_number}")

    if not policy.avoid_repeats or not previously_seen:
        return rng.sample(ordered, k)

    fresh = [q for q in ordered if q.id not in previously_seen]
    if len(fresh) >= k:
        return rng.sample(fresh, k)
    seen = [q for q in ordered if q.id in previously_seen]
    # Not enough unseen questions: top up from seen ones.
    return rng.sample(fresh, len(fresh)) + rng.sample(seen, k - len(fresh))


async def start_attempt(
    ledger: Ledger,
    enrollment_id: UUID,
    policy: QuestionSelectionPolicy,
    *,
    now: int,
    base_attempts: int,
) -> ExamAttempt:
    enrollment = await load_enrollment(ledger, enrollment_id, lock=True)
    if not enrollment.is_current:
        raise ConflictError(ENROLLMENT_NOT_ACTIVE)

    progress = await get_progress(ledger, enrollment)
    if not progress.all_completed:
        raise ConflictError(LESSONS_INCOMPLETE)

    attempts = await ledger.list_attempts(enrollment_id)
    if any(a.is_open for a in attempts):
        raise ConflictError(ATTEMPT_ALREADY_OPEN)

    attempt_number = len(attempts) + 1
    voucher = None
    if attempt_number > base_attempts:
        unconsumed = [
            v for v in await ledger.list_vouchers(enrollment_id) if not v.is_consumed
        ]
        if not unconsumed:
            raise ConflictError(NO_ATTEMPTS_REMAINING)
        voucher = unconsumed[0]

    bank = await ledger.list_questions(enrollment.course_id)
    if not bank:
        raise ConflictError("no exam questions are available for this course")

    seen: frozenset[UUID] = frozenset()
    if policy.avoid_repeats:
        seen = frozenset(q.question_id for a in attempts for q in a.question_set)

    selected = select_questions(
        bank,
        enrollment_id=enrollment_id,
        attempt_number=attempt_number,
        policy=policy,
        previously_seen=seen,
    )
    attempt = ExamAttempt.new(
        enrollment_id=enrollment_id,
        attempt_number=attempt_number,
        question_set=tuple(FrozenQuestion.from_bank(q) for q in selected),
        started_at=now,
        voucher_id=voucher.id if voucher is not None else None,
    )
    await ledger.add_attempt(attempt)

    if voucher is not None and not await ledger.consume_voucher(voucher.id, attempt.id):
        # Raising rolls back the attempt row with it.
        raise ConflictError(NO_ATTEMPTS_REMAINING)

    logger.info(
        "Exam attempt %d started with %d questions",
        attempt_number,
        len(selected),
        extra={"enrollment_id": str(enrollment_id), "attempt_id": str(attempt.id)},
    )
    return attempt


def _validate_answers(answers: Sequence[ExamAnswer]) -> None:
    seen: set[UUID] = set()
    for a in answers:
        if a.question_id in seen:
            raise ValidationError(f"duplicate answer for question {a.question_id}")
        if a.selected_option_id not in OPTION_IDS:
            raise ValidationError(
                f"selected option must be one of {', '.join(OPTION_IDS)}"
            )
        seen.add(a.question_id)


def grade(
    question_set: Sequence[FrozenQuestion],
    answers: Sequence[ExamAnswer],
    *,
    pass_threshold: int,
) -> tuple[int, bool, int, tuple[QuestionFeedback, ...]]:
    """Return (score, passed, correct_count, feedback).

    A question with no answer counts as incorrect.  Answers to questions
    outside the frozen set are ignored.
    """
    by_question = {a.question_id: a.selected_option_id for a in answers}
    feedback = []
    correct = 0
    for q in question_set:
        selected = by_question.get(q.question_id)
        is_correct = selected == q.correct_option_id
        correct += is_correct
        feedback.append(
            QuestionFeedback(
                question_id=q.question_id,
                question_text=q.text,
                selected_option_id=selected,
                correct_option_id=q.correct_option_id,
                is_correct=is_correct,
                explanation=q.explanation,
            )
        )
    total = len(question_set)
    score = (100 * correct) // total if total else 0
    return score, score >= pass_threshold, correct, tuple(feedback)


def _result(
    attempt: ExamAttempt,
    answers: Sequence[ExamAnswer],
    *,
    pass_threshold: int,
    already_submitted: bool,
) -> ExamResult:
    _, _, correct, feedback = grade(
        attempt.question_set, answers, pass_threshold=pass_threshold
    )
    return ExamResult(
        attempt_id=attempt.id,
        enrollment_id=attempt.enrollment_id,
        attempt_number=attempt.attempt_number,
        # Stored values win: they were fixed at first submission.
        score=attempt.score if attempt.score is not None else 0,
        passed=bool(attempt.passed),
        total_questions=len(attempt.question_set),
        correct_answers=correct,
        submitted_at=attempt.submitted_at or 0,
        feedback=feedback,
        already_submitted=already_submitted,
    )


async def load_attempt(
    ledger: Ledger, attempt_id: UUID, *, lock: bool = False
) -> ExamAttempt:
    attempt = await ledger.get_attempt(attempt_id, lock=lock)
    if attempt is None:
        raise NotFoundError("exam attempt not found")
    return attempt


async def stored_result(
    ledger: Ledger, attempt: ExamAttempt, *, pass_threshold: int
) -> ExamResult:
    """Result of an already graded attempt, rebuilt from stored answers."""
    answers = await ledger.list_answers(attempt.id)
    return _result(
        attempt, answers, pass_threshold=pass_threshold, already_submitted=True
    )


async def submit_attempt(
    ledger: Ledger,
    attempt_id: UUID,
    answers: Sequence[ExamAnswer],
    *,
    now: int,
    pass_threshold: int,
) -> ExamResult:
    attempt = await load_attempt(ledger, attempt_id, lock=True)
    if not attempt.is_open:
        # The first grade stands whatever this answer sheet holds.
        return await stored_result(ledger, attempt, pass_threshold=pass_threshold)

    _validate_answers(answers)

    enrollment = await load_enrollment(ledger, attempt.enrollment_id)
    if not enrollment.is_current:
        raise ConflictError(ENROLLMENT_NOT_ACTIVE)

    score, passed, _, _ = grade(
        attempt.question_set, answers, pass_threshold=pass_threshold
    )
    if not await ledger.record_grade(
        attempt_id, submitted_at=now, score=score, passed=passed
    ):
        # Lost the race to a concurrent submit; its grade stands.
        return await stored_result(
            ledger, await load_attempt(ledger, attempt_id), pass_threshold=pass_threshold
        )

    frozen_ids = {q.question_id for q in attempt.question_set}
    kept = [a for a in answers if a.question_id in frozen_ids]
    await ledger.add_answers(attempt_id, kept)

    graded = await load_attempt(ledger, attempt_id)
    logger.info(
        "Exam attempt graded: score=%d passed=%s",
        score,
        passed,
        extra={
            "enrollment_id": str(attempt.enrollment_id),
            "attempt_id": str(attempt_id),
        },
    )
    return _result(graded, kept, pass_threshold=pass_threshold, already_submitted=False)
