"""Ledger Store contract and its in-memory implementation.

Every lifecycle decision runs inside ``LedgerStore.transaction()``, which
yields a ``Ledger``: a unit of work over all lifecycle tables.  Either
everything written through it commits, or nothing does.

The conditional writes (``insert_*`` returning bool, ``consume_voucher``,
``record_grade``, ``transition_enrollment``) are where invariants are
enforced.  They report "someone got here first" instead of raising, so
callers never need a check-then-act race.

InMemoryLedgerStore serializes transactions with a per-event-loop lock
and applies them copy-on-write, which gives the same all-or-nothing,
serializable behaviour the Postgres store gets from row locks and unique
indexes.  It is used when DATABASE_URL is not configured (dev, tests).
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Protocol
from uuid import UUID

from academy.core.errors import ConflictError, DuplicateEventError
from academy.models.certificate import Certificate
from academy.models.course import Course, ExamQuestion, Lesson
from academy.models.enrollment import CURRENT_STATUSES, Enrollment, LessonProgress, Voucher
from academy.models.exam import ExamAnswer, ExamAttempt
from academy.models.payment_event import PaymentEventRecord
from academy.models.user import User


class Ledger(Protocol):
    # --- identity mirror ---
    async def upsert_user(self, user: User) -> None: ...
    async def get_user(self, user_id: str) -> User | None: ...

    # --- catalog ---
    async def add_course(self, course: Course) -> None: ...
    async def get_course(self, course_id: UUID) -> Course | None: ...
    async def list_courses(self) -> list[Course]: ...
    async def add_lesson(self, lesson: Lesson) -> None: ...
    async def get_lesson(self, lesson_id: UUID) -> Lesson | None: ...
    async def list_lessons(self, course_id: UUID) -> list[Lesson]: ...
    async def count_lessons(self, course_id: UUID) -> int: ...
    async def add_question(self, question: ExamQuestion) -> None: ...
    async def update_question(self, question: ExamQuestion) -> None: ...
    async def list_questions(self, course_id: UUID) -> list[ExamQuestion]: ...

    # --- payment events ---
    async def insert_payment_event(self, record: PaymentEventRecord) -> None:
        """Raise DuplicateEventError if the external id is already recorded."""
        ...

    async def set_payment_event_outcome(
        self, external_event_id: str, outcome: str, reason: str | None
    ) -> None: ...
    async def get_payment_event(
        self, external_event_id: str
    ) -> PaymentEventRecord | None: ...

    # --- enrollments ---
    async def insert_enrollment(self, enrollment: Enrollment) -> bool:
        """False if a current enrollment already exists for (user, course)."""
        ...

    async def get_enrollment(
        self, enrollment_id: UUID, *, lock: bool = False
    ) -> Enrollment | None: ...
    async def find_current_enrollment(
        self, user_id: str, course_id: UUID
    ) -> Enrollment | None: ...
    async def list_enrollments_for_user(self, user_id: str) -> list[Enrollment]: ...
    async def transition_enrollment(
        self,
        enrollment_id: UUID,
        *,
        from_statuses: frozenset[str],
        to_status: str,
        completed_at: int | None = None,
    ) -> bool:
        """Set status only if the current status is in ``from_statuses``."""
        ...

    # --- lesson progress ---
    async def insert_lesson_progress(self, progress: LessonProgress) -> bool:
        """False (and no change) if the fact already exists."""
        ...

    async def list_lesson_progress(self, enrollment_id: UUID) -> list[LessonProgress]: ...

    # --- vouchers ---
    async def add_voucher(self, voucher: Voucher) -> None: ...
    async def list_vouchers(self, enrollment_id: UUID) -> list[Voucher]: ...
    async def consume_voucher(self, voucher_id: UUID, attempt_id: UUID) -> bool:
        """Link voucher to attempt only if it is still unconsumed."""
        ...

    # --- exam attempts ---
    async def add_attempt(self, attempt: ExamAttempt) -> None: ...
    async def get_attempt(
        self, attempt_id: UUID, *, lock: bool = False
    ) -> ExamAttempt | None: ...
    async def list_attempts(self, enrollment_id: UUID) -> list[ExamAttempt]: ...
    async def record_grade(
        self, attempt_id: UUID, *, submitted_at: int, score: int, passed: bool
    ) -> bool:
        """Grade only if submitted_at is still NULL.  Exactly-once."""
        ...

    async def add_answers(self, attempt_id: UUID, answers: list[ExamAnswer]) -> None: ...
    async def list_answers(self, attempt_id: UUID) -> list[ExamAnswer]: ...
    async def list_graded_attempts(
        self, *, course_id: UUID | None, submitted_from: int, submitted_to: int
    ) -> list[tuple[Enrollment, ExamAttempt]]:
        """Graded attempts with their enrollment, oldest submission first."""
        ...

    async def list_answers_for(
        self, attempt_ids: list[UUID]
    ) -> dict[UUID, list[ExamAnswer]]: ...

    # --- certificates ---
    async def insert_certificate(self, certificate: Certificate) -> bool:
        """False if the enrollment or the verification id already has one."""
        ...

    async def get_certificate_for_enrollment(
        self, enrollment_id: UUID
    ) -> Certificate | None: ...
    async def get_certificate_by_verification_id(
        self, verification_id: str
    ) -> Certificate | None: ...
    async def list_certificates_for_user(self, user_id: str) -> list[Certificate]: ...


class LedgerStore(Protocol):
    def transaction(self) -> AbstractAsyncContextManager[Ledger]: ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


@dataclass
class _LedgerState:
    users: dict[str, User] = field(default_factory=dict)
    courses: dict[UUID, Course] = field(default_factory=dict)
    lessons: dict[UUID, Lesson] = field(default_factory=dict)
    questions: dict[UUID, ExamQuestion] = field(default_factory=dict)
    payment_events: dict[str, PaymentEventRecord] = field(default_factory=dict)
    enrollments: dict[UUID, Enrollment] = field(default_factory=dict)
    lesson_progress: dict[tuple[UUID, UUID], LessonProgress] = field(
        default_factory=dict
    )
    vouchers: dict[UUID, Voucher] = field(default_factory=dict)
    attempts: dict[UUID, ExamAttempt] = field(default_factory=dict)
    answers: dict[UUID, tuple[ExamAnswer, ...]] = field(default_factory=dict)
    certificates: dict[UUID, Certificate] = field(default_factory=dict)

    def copy(self) -> _LedgerState:
        # Values are frozen dataclasses, so copying the dicts is enough.
        return _LedgerState(
            users=dict(self.users),
            courses=dict(self.courses),
            lessons=dict(self.lessons),
            questions=dict(self.questions),
            payment_events=dict(self.payment_events),
            enrollments=dict(self.enrollments),
            lesson_progress=dict(self.lesson_progress),
            vouchers=dict(self.vouchers),
            attempts=dict(self.attempts),
            answers=dict(self.answers),
            certificates=dict(self.certificates),
        )


class InMemoryLedger:
    def __init__(self, state: _LedgerState) -> None:
        self._s = state

    # --- identity mirror ---

    async def upsert_user(self, user: User) -> None:
        self._s.users[user.id] = user

    async def get_user(self, user_id: str) -> User | None:
        return self._s.users.get(user_id)

    # --- catalog ---

    async def add_course(self, course: Course) -> None:
        if any(c.slug == course.slug for c in self._s.courses.values()):
            raise ValueError(f"course slug {course.slug!r} already exists")
        self._s.courses[course.id] = course

    async def get_course(self, course_id: UUID) -> Course | None:
        return self._s.courses.get(course_id)

    async def list_courses(self) -> list[Course]:
        return sorted(self._s.courses.values(), key=lambda c: c.slug)

    async def add_lesson(self, lesson: Lesson) -> None:
        self._s.lessons[lesson.id] = lesson

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        return self._s.lessons.get(lesson_id)

    async def list_lessons(self, course_id: UUID) -> list[Lesson]:
        return sorted(
            (le for le in self._s.lessons.values() if le.course_id == course_id),
            key=lambda le: (le.module_number, le.lesson_number),
        )

    async def count_lessons(self, course_id: UUID) -> int:
        return sum(1 for le in self._s.lessons.values() if le.course_id == course_id)

    async def add_question(self, question: ExamQuestion) -> None:
        self._s.questions[question.id] = question

    async def update_question(self, question: ExamQuestion) -> None:
        if question.id not in self._s.questions:
            raise KeyError("question not found")
        self._s.questions[question.id] = question

    async def list_questions(self, course_id: UUID) -> list[ExamQuestion]:
        return sorted(
            (q for q in self._s.questions.values() if q.course_id == course_id),
            key=lambda q: str(q.id),
        )

    # --- payment events ---

    async def insert_payment_event(self, record: PaymentEventRecord) -> None:
        if record.external_event_id in self._s.payment_events:
            raise DuplicateEventError(record.external_event_id)
        self._s.payment_events[record.external_event_id] = record

    async def set_payment_event_outcome(
        self, external_event_id: str, outcome: str, reason: str | None
    ) -> None:
        record = self._s.payment_events[external_event_id]
        self._s.payment_events[external_event_id] = replace(
            record, outcome=outcome, reason=reason
        )

    async def get_payment_event(
        self, external_event_id: str
    ) -> PaymentEventRecord | None:
        return self._s.payment_events.get(external_event_id)

    # --- enrollments ---

    async def insert_enrollment(self, enrollment: Enrollment) -> bool:
        if await self.find_current_enrollment(enrollment.user_id, enrollment.course_id):
            return False
        self._s.enrollments[enrollment.id] = enrollment
        return True

    async def get_enrollment(
        self, enrollment_id: UUID, *, lock: bool = False
    ) -> Enrollment | None:
        # Transactions are already serialized; nothing extra to lock.
        return self._s.enrollments.get(enrollment_id)

    async def find_current_enrollment(
        self, user_id: str, course_id: UUID
    ) -> Enrollment | None:
        for e in self._s.enrollments.values():
            if (
                e.user_id == user_id
                and e.course_id == course_id
                and e.status in CURRENT_STATUSES
            ):
                return e
        return None

    async def list_enrollments_for_user(self, user_id: str) -> list[Enrollment]:
        return sorted(
            (e for e in self._s.enrollments.values() if e.user_id == user_id),
            key=lambda e: e.enrolled_at,
        )

    async def transition_enrollment(
        self,
        enrollment_id: UUID,
        *,
        from_statuses: frozenset[str],
        to_status: str,
        completed_at: int | None = None,
    ) -> bool:
        e = self._s.enrollments.get(enrollment_id)
        if e is None or e.status not in from_statuses:
            return False
        self._s.enrollments[enrollment_id] = replace(
            e,
            status=to_status,
            completed_at=completed_at if completed_at is not None else e.completed_at,
        )
        return True

    # --- lesson progress ---

    async def insert_lesson_progress(self, progress: LessonProgress) -> bool:
        key = (progress.enrollment_id, progress.lesson_id)
        if key in self._s.lesson_progress:
            return False
        self._s.lesson_progress[key] = progress
        return True

    async def list_lesson_progress(self, enrollment_id: UUID) -> list[LessonProgress]:
        return sorted(
            (
                p
                for (eid, _), p in self._s.lesson_progress.items()
                if eid == enrollment_id
            ),
            key=lambda p: (p.completed_at, str(p.lesson_id)),
        )

    # --- vouchers ---

    async def add_voucher(self, voucher: Voucher) -> None:
        self._s.vouchers[voucher.id] = voucher

    async def list_vouchers(self, enrollment_id: UUID) -> list[Voucher]:
        return sorted(
            (v for v in self._s.vouchers.values() if v.enrollment_id == enrollment_id),
            key=lambda v: (v.purchased_at, str(v.id)),
        )

    async def consume_voucher(self, voucher_id: UUID, attempt_id: UUID) -> bool:
        v = self._s.vouchers.get(voucher_id)
        if v is None or v.is_consumed:
            return False
        if any(o.consumed_by_attempt_id == attempt_id for o in self._s.vouchers.values()):
            return False
        self._s.vouchers[voucher_id] = replace(v, consumed_by_attempt_id=attempt_id)
        return True

    # --- exam attempts ---

    async def add_attempt(self, attempt: ExamAttempt) -> None:
        for a in self._s.attempts.values():
            if a.enrollment_id != attempt.enrollment_id:
                continue
            if a.attempt_number == attempt.attempt_number:
                raise ConflictError("concurrent update conflict; please retry")
            if a.is_open:
                raise ConflictError("concurrent update conflict; please retry")
        self._s.attempts[attempt.id] = attempt

    async def get_attempt(
        self, attempt_id: UUID, *, lock: bool = False
    ) -> ExamAttempt | None:
        return self._s.attempts.get(attempt_id)

    async def list_attempts(self, enrollment_id: UUID) -> list[ExamAttempt]:
        return sorted(
            (a for a in self._s.attempts.values() if a.enrollment_id == enrollment_id),
            key=lambda a: a.attempt_number,
        )

    async def record_grade(
        self, attempt_id: UUID, *, submitted_at: int, score: int, passed: bool
    ) -> bool:
        a = self._s.attempts.get(attempt_id)
        if a is None or not a.is_open:
            return False
        self._s.attempts[attempt_id] = replace(
            a, submitted_at=submitted_at, score=score, passed=passed
        )
        return True

    async def add_answers(self, attempt_id: UUID, answers: list[ExamAnswer]) -> None:
        if attempt_id in self._s.answers:
            raise ConflictError("concurrent update conflict; please retry")
        self._s.answers[attempt_id] = tuple(answers)

    async def list_answers(self, attempt_id: UUID) -> list[ExamAnswer]:
        return list(self._s.answers.get(attempt_id, ()))

    async def list_graded_attempts(
        self, *, course_id: UUID | None, submitted_from: int, submitted_to: int
    ) -> list[tuple[Enrollment, ExamAttempt]]:
        graded = []
        for a in self._s.attempts.values():
            if a.submitted_at is None or not submitted_from <= a.submitted_at <= submitted_to:
                continue
            e = self._s.enrollments[a.enrollment_id]
            if course_id is None or e.course_id == course_id:
                graded.append((e, a))
        return sorted(graded, key=lambda pair: pair[1].submitted_at or 0)

    async def list_answers_for(
        self, attempt_ids: list[UUID]
    ) -> dict[UUID, list[ExamAnswer]]:
        return {aid: list(self._s.answers.get(aid, ())) for aid in attempt_ids}

    # --- certificates ---

    async def insert_certificate(self, certificate: Certificate) -> bool:
        for c in self._s.certificates.values():
            if (
                c.enrollment_id == certificate.enrollment_id
                or c.verification_id == certificate.verification_id
            ):
                return False
        self._s.certificates[certificate.id] = certificate
        return True

    async def get_certificate_for_enrollment(
        self, enrollment_id: UUID
    ) -> Certificate | None:
        for c in self._s.certificates.values():
            if c.enrollment_id == enrollment_id:
                return c
        return None

    async def get_certificate_by_verification_id(
        self, verification_id: str
    ) -> Certificate | None:
        for c in self._s.certificates.values():
            if c.verification_id == verification_id:
                return c
        return None

    async def list_certificates_for_user(self, user_id: str) -> list[Certificate]:
        return sorted(
            (c for c in self._s.certificates.values() if c.user_id == user_id),
            key=lambda c: c.issued_at,
        )


class InMemoryLedgerStore:
    """Satisfies the LedgerStore Protocol without a database."""

    def __init__(self) -> None:
        self._state = _LedgerState()
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    def _get_lock(self) -> asyncio.Lock:
        # asyncio.Lock binds to the loop it first waits on; the TestClient
        # and asyncio.run() each bring their own loop.
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Ledger]:
        async with self._get_lock():
            working = self._state.copy()
            yield InMemoryLedger(working)
            # Only reached when the block exited without raising.
            self._state = working

    def reset(self) -> None:
        self._state = _LedgerState()
