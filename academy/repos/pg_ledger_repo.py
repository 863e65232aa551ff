"""PostgreSQL implementation of the Ledger Store."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from sqlalchemy import func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from academy.core.errors import ConflictError, DuplicateEventError, TransientStorageError
from academy.db.tables import (
    CertificateRow,
    CourseRow,
    EnrollmentRow,
    ExamAnswerRow,
    ExamAttemptRow,
    ExamQuestionRow,
    LessonProgressRow,
    LessonRow,
    PaymentEventRow,
    UserRow,
    VoucherRow,
)
from academy.models.certificate import Certificate
from academy.models.course import OPTION_IDS, Course, ExamQuestion, Lesson, QuestionOption
from academy.models.enrollment import Enrollment, LessonProgress, Voucher
from academy.models.exam import ExamAnswer, ExamAttempt, FrozenQuestion
from academy.models.payment_event import PaymentEventRecord
from academy.models.user import User
from academy.repos.ledger_repo import Ledger

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def _is_transient(exc: DBAPIError) -> bool:
    if exc.connection_invalidated:
        return True
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    return sqlstate in _RETRYABLE_SQLSTATES


class PgLedger:
    """Satisfies the Ledger Protocol using one AsyncSession transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # --- identity mirror ---

    async def upsert_user(self, user: User) -> None:
        stmt = pg_insert(UserRow).values(
            id=user.id, email=user.email, name=user.name, role=user.role
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserRow.id],
            set_={"email": user.email, "name": user.name, "role": user.role},
        )
        await self._session.execute(stmt)

    async def get_user(self, user_id: str) -> User | None:
        row = await self._session.get(UserRow, user_id)
        if row is None:
            return None
        return User(id=row.id, email=row.email, name=row.name, role=row.role)

    # --- catalog ---

    async def add_course(self, course: Course) -> None:
        self._session.add(
            CourseRow(
                id=course.id,
                slug=course.slug,
                title=course.title,
                acronym=course.acronym,
                price_cents=course.price_cents,
                status=course.status,
            )
        )
        await self._session.flush()

    async def get_course(self, course_id: UUID) -> Course | None:
        row = await self._session.get(CourseRow, course_id)
        return _row_to_course(row) if row is not None else None

    async def list_courses(self) -> list[Course]:
        stmt = select(CourseRow).order_by(CourseRow.slug)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_course(r) for r in rows]

    async def add_lesson(self, lesson: Lesson) -> None:
        self._session.add(
            LessonRow(
                id=lesson.id,
                course_id=lesson.course_id,
                module_number=lesson.module_number,
                lesson_number=lesson.lesson_number,
                title=lesson.title,
            )
        )
        await self._session.flush()

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        row = await self._session.get(LessonRow, lesson_id)
        return _row_to_lesson(row) if row is not None else None

    async def list_lessons(self, course_id: UUID) -> list[Lesson]:
        stmt = (
            select(LessonRow)
            .where(LessonRow.course_id == course_id)
            .order_by(LessonRow.module_number, LessonRow.lesson_number)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_lesson(r) for r in rows]

    async def count_lessons(self, course_id: UUID) -> int:
        stmt = select(func.count()).select_from(LessonRow).where(
            LessonRow.course_id == course_id
        )
        return (await self._session.execute(stmt)).scalar_one()

    async def add_question(self, question: ExamQuestion) -> None:
        self._session.add(ExamQuestionRow(id=question.id, **_question_columns(question)))
        await self._session.flush()

    async def update_question(self, question: ExamQuestion) -> None:
        stmt = (
            update(ExamQuestionRow)
            .where(ExamQuestionRow.id == question.id)
            .values(**_question_columns(question))
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise KeyError("question not found")

    async def list_questions(self, course_id: UUID) -> list[ExamQuestion]:
        stmt = (
            select(ExamQuestionRow)
            .where(ExamQuestionRow.course_id == course_id)
            .order_by(ExamQuestionRow.id)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        questions = [_row_to_question(r) for r in rows]
        # Match the in-memory ordering so seeded selection is store-independent.
        return sorted(questions, key=lambda q: str(q.id))

    # --- payment events ---

    async def insert_payment_event(self, record: PaymentEventRecord) -> None:
        stmt = (
            pg_insert(PaymentEventRow)
            .values(
                external_event_id=record.external_event_id,
                event_type=record.event_type,
                processed_at=record.processed_at,
                outcome=record.outcome,
                reason=record.reason,
            )
            .on_conflict_do_nothing(index_elements=[PaymentEventRow.external_event_id])
            .returning(PaymentEventRow.external_event_id)
        )
        inserted = (await self._session.execute(stmt)).scalar_one_or_none()
        if inserted is None:
            raise DuplicateEventError(record.external_event_id)

    async def set_payment_event_outcome(
        self, external_event_id: str, outcome: str, reason: str | None
    ) -> None:
        stmt = (
            update(PaymentEventRow)
            .where(PaymentEventRow.external_event_id == external_event_id)
            .values(outcome=outcome, reason=reason)
        )
        await self._session.execute(stmt)

    async def get_payment_event(
        self, external_event_id: str
    ) -> PaymentEventRecord | None:
        row = await self._session.get(PaymentEventRow, external_event_id)
        if row is None:
            return None
        return PaymentEventRecord(
            external_event_id=row.external_event_id,
            event_type=row.event_type,
            processed_at=row.processed_at,
            outcome=row.outcome,
            reason=row.reason,
        )

    # --- enrollments ---

    async def insert_enrollment(self, enrollment: Enrollment) -> bool:
        stmt = (
            pg_insert(EnrollmentRow)
            .values(
                id=enrollment.id,
                user_id=enrollment.user_id,
                course_id=enrollment.course_id,
                status=enrollment.status,
                enrolled_at=enrollment.enrolled_at,
                completed_at=enrollment.completed_at,
                lesson_total=enrollment.lesson_total,
            )
            .on_conflict_do_nothing(
                index_elements=[EnrollmentRow.user_id, EnrollmentRow.course_id],
                # literal predicate; inference cannot match bound parameters
                index_where=text("status IN ('active', 'completed')"),
            )
            .returning(EnrollmentRow.id)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none() is not None

    async def get_enrollment(
        self, enrollment_id: UUID, *, lock: bool = False
    ) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(EnrollmentRow.id == enrollment_id)
        if lock:
            stmt = stmt.with_for_update()
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_enrollment(row) if row is not None else None

    async def find_current_enrollment(
        self, user_id: str, course_id: UUID
    ) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(
            EnrollmentRow.user_id == user_id,
            EnrollmentRow.course_id == course_id,
            EnrollmentRow.status.in_(["active", "completed"]),
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_enrollment(row) if row is not None else None

    async def list_enrollments_for_user(self, user_id: str) -> list[Enrollment]:
        stmt = (
            select(EnrollmentRow)
            .where(EnrollmentRow.user_id == user_id)
            .order_by(EnrollmentRow.enrolled_at)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_enrollment(r) for r in rows]

    async def transition_enrollment(
        self,
        enrollment_id: UUID,
        *,
        from_statuses: frozenset[str],
        to_status: str,
        completed_at: int | None = None,
    ) -> bool:
        values: dict = {"status": to_status}
        if completed_at is not None:
            values["completed_at"] = completed_at
        stmt = (
            update(EnrollmentRow)
            .where(
                EnrollmentRow.id == enrollment_id,
                EnrollmentRow.status.in_(sorted(from_statuses)),
            )
            .values(**values)
            .returning(EnrollmentRow.id)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none() is not None

    # --- lesson progress ---

    async def insert_lesson_progress(self, progress: LessonProgress) -> bool:
        stmt = (
            pg_insert(LessonProgressRow)
            .values(
                enrollment_id=progress.enrollment_id,
                lesson_id=progress.lesson_id,
                completed_at=progress.completed_at,
            )
            .on_conflict_do_nothing(
                index_elements=[
                    LessonProgressRow.enrollment_id,
                    LessonProgressRow.lesson_id,
                ]
            )
            .returning(LessonProgressRow.lesson_id)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none() is not None

    async def list_lesson_progress(self, enrollment_id: UUID) -> list[LessonProgress]:
        stmt = (
            select(LessonProgressRow)
            .where(LessonProgressRow.enrollment_id == enrollment_id)
            .order_by(LessonProgressRow.completed_at, LessonProgressRow.lesson_id)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [
            LessonProgress(
                enrollment_id=r.enrollment_id,
                lesson_id=r.lesson_id,
                completed_at=r.completed_at,
            )
            for r in rows
        ]

    # --- vouchers ---

    async def add_voucher(self, voucher: Voucher) -> None:
        self._session.add(
            VoucherRow(
                id=voucher.id,
                enrollment_id=voucher.enrollment_id,
                purchased_at=voucher.purchased_at,
                consumed_by_attempt_id=voucher.consumed_by_attempt_id,
                payment_event_id=voucher.payment_event_id,
            )
        )
        await self._session.flush()

    async def list_vouchers(self, enrollment_id: UUID) -> list[Voucher]:
        stmt = (
            select(VoucherRow)
            .where(VoucherRow.enrollment_id == enrollment_id)
            .order_by(VoucherRow.purchased_at, VoucherRow.id)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [
            Voucher(
                id=r.id,
                enrollment_id=r.enrollment_id,
                purchased_at=r.purchased_at,
                consumed_by_attempt_id=r.consumed_by_attempt_id,
                payment_event_id=r.payment_event_id,
            )
            for r in rows
        ]

    async def consume_voucher(self, voucher_id: UUID, attempt_id: UUID) -> bool:
        stmt = (
            update(VoucherRow)
            .where(
                VoucherRow.id == voucher_id,
                VoucherRow.consumed_by_attempt_id.is_(None),
            )
            .values(consumed_by_attempt_id=attempt_id)
            .returning(VoucherRow.id)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none() is not None

    # --- exam attempts ---

    async def add_attempt(self, attempt: ExamAttempt) -> None:
        self._session.add(
            ExamAttemptRow(
                id=attempt.id,
                enrollment_id=attempt.enrollment_id,
                attempt_number=attempt.attempt_number,
                frozen_question_set=[q.to_json() for q in attempt.question_set],
                started_at=attempt.started_at,
                submitted_at=attempt.submitted_at,
                score=attempt.score,
                passed=attempt.passed,
                voucher_id=attempt.voucher_id,
            )
        )
        await self._session.flush()

    async def get_attempt(
        self, attempt_id: UUID, *, lock: bool = False
    ) -> ExamAttempt | None:
        stmt = select(ExamAttemptRow).where(ExamAttemptRow.id == attempt_id)
        if lock:
            stmt = stmt.with_for_update()
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_attempt(row) if row is not None else None

    async def list_attempts(self, enrollment_id: UUID) -> list[ExamAttempt]:
        stmt = (
            select(ExamAttemptRow)
            .where(ExamAttemptRow.enrollment_id == enrollment_id)
            .order_by(ExamAttemptRow.attempt_number)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_attempt(r) for r in rows]

    async def record_grade(
        self, attempt_id: UUID, *, submitted_at: int, score: int, passed: bool
    ) -> bool:
        stmt = (
            update(ExamAttemptRow)
            .where(
                ExamAttemptRow.id == attempt_id,
                ExamAttemptRow.submitted_at.is_(None),
            )
            .values(submitted_at=submitted_at, score=score, passed=passed)
            .returning(ExamAttemptRow.id)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none() is not None

    async def add_answers(self, attempt_id: UUID, answers: list[ExamAnswer]) -> None:
        self._session.add_all(
            ExamAnswerRow(
                attempt_id=attempt_id,
                question_id=a.question_id,
                selected_option_id=a.selected_option_id,
            )
            for a in answers
        )
        await self._session.flush()

    async def list_answers(self, attempt_id: UUID) -> list[ExamAnswer]:
        stmt = select(ExamAnswerRow).where(ExamAnswerRow.attempt_id == attempt_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [
            ExamAnswer(question_id=r.question_id, selected_option_id=r.selected_option_id)
            for r in rows
        ]

    async def list_graded_attempts(
        self, *, course_id: UUID | None, submitted_from: int, submitted_to: int
    ) -> list[tuple[Enrollment, ExamAttempt]]:
        stmt = (
            select(EnrollmentRow, ExamAttemptRow)
            .join(ExamAttemptRow, ExamAttemptRow.enrollment_id == EnrollmentRow.id)
            .where(ExamAttemptRow.submitted_at.between(submitted_from, submitted_to))
            .order_by(ExamAttemptRow.submitted_at)
        )
        if course_id is not None:
            stmt = stmt.where(EnrollmentRow.course_id == course_id)
        rows = (await self._session.execute(stmt)).all()
        return [(_row_to_enrollment(e), _row_to_attempt(a)) for e, a in rows]

    async def list_answers_for(
        self, attempt_ids: list[UUID]
    ) -> dict[UUID, list[ExamAnswer]]:
        by_attempt: dict[UUID, list[ExamAnswer]] = {aid: [] for aid in attempt_ids}
        if not attempt_ids:
            return by_attempt
        stmt = select(ExamAnswerRow).where(ExamAnswerRow.attempt_id.in_(attempt_ids))
        for r in (await self._session.execute(stmt)).scalars():
            by_attempt[r.attempt_id].append(
                ExamAnswer(question_id=r.question_id, selected_option_id=r.selected_option_id)
            )
        return by_attempt

    # --- certificates ---

    async def insert_certificate(self, certificate: Certificate) -> bool:
        stmt = (
            pg_insert(CertificateRow)
            .values(
                id=certificate.id,
                enrollment_id=certificate.enrollment_id,
                user_id=certificate.user_id,
                course_id=certificate.course_id,
                issued_at=certificate.issued_at,
                verification_id=certificate.verification_id,
                student_name=certificate.student_name,
                course_name=certificate.course_name,
            )
            .on_conflict_do_nothing()
            .returning(CertificateRow.id)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none() is not None

    async def get_certificate_for_enrollment(
        self, enrollment_id: UUID
    ) -> Certificate | None:
        stmt = select(CertificateRow).where(CertificateRow.enrollment_id == enrollment_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_certificate(row) if row is not None else None

    async def get_certificate_by_verification_id(
        self, verification_id: str
    ) -> Certificate | None:
        stmt = select(CertificateRow).where(
            CertificateRow.verification_id == verification_id
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_certificate(row) if row is not None else None

    async def list_certificates_for_user(self, user_id: str) -> list[Certificate]:
        stmt = (
            select(CertificateRow)
            .where(CertificateRow.user_id == user_id)
            .order_by(CertificateRow.issued_at)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_certificate(r) for r in rows]


class PgLedgerStore:
    """Satisfies the LedgerStore Protocol.  One session per transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Ledger]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield PgLedger(session)
        except IntegrityError as exc:
            # A unique index caught a race the service-level checks missed.
            logger.warning("Ledger constraint violation: %s", exc.orig)
            raise ConflictError("concurrent update conflict; please retry") from exc
        except DBAPIError as exc:
            if _is_transient(exc):
                raise TransientStorageError("ledger temporarily unavailable") from exc
            raise
        except OSError as exc:
            raise TransientStorageError("ledger temporarily unavailable") from exc


# --- row mappers ---


def _row_to_course(row: CourseRow) -> Course:
    return Course(
        id=row.id,
        slug=row.slug,
        title=row.title,
        acronym=row.acronym or "",
        price_cents=row.price_cents,
        status=row.status,
    )


def _row_to_lesson(row: LessonRow) -> Lesson:
    return Lesson(
        id=row.id,
        course_id=row.course_id,
        module_number=row.module_number,
        lesson_number=row.lesson_number,
        title=row.title,
    )


def _question_columns(question: ExamQuestion) -> dict:
    by_id = {o.id: o.text for o in question.options}
    return {
        "course_id": question.course_id,
        "text": question.text,
        "option_a": by_id["A"],
        "option_b": by_id["B"],
        "option_c": by_id["C"],
        "option_d": by_id["D"],
        "correct_option": question.correct_option_id,
        "explanation": question.explanation,
    }


def _row_to_question(row: ExamQuestionRow) -> ExamQuestion:
    texts = (row.option_a, row.option_b, row.option_c, row.option_d)
    return ExamQuestion(
        id=row.id,
        course_id=row.course_id,
        text=row.text,
        options=tuple(
            QuestionOption(id=oid, text=t) for oid, t in zip(OPTION_IDS, texts, strict=True)
        ),
        correct_option_id=row.correct_option,
        explanation=row.explanation or "",
    )


def _row_to_enrollment(row: EnrollmentRow) -> Enrollment:
    return Enrollment(
        id=row.id,
        user_id=row.user_id,
        course_id=row.course_id,
        status=row.status,
        enrolled_at=row.enrolled_at,
        lesson_total=row.lesson_total,
        completed_at=row.completed_at,
    )


def _row_to_attempt(row: ExamAttemptRow) -> ExamAttempt:
    return ExamAttempt(
        id=row.id,
        enrollment_id=row.enrollment_id,
        attempt_number=row.attempt_number,
        question_set=tuple(FrozenQuestion.from_json(q) for q in row.frozen_question_set),
        started_at=row.started_at,
        submitted_at=row.submitted_at,
        score=row.score,
        passed=row.passed,
        voucher_id=row.voucher_id,
    )


def _row_to_certificate(row: CertificateRow) -> Certificate:
    return Certificate(
        id=row.id,
        enrollment_id=row.enrollment_id,
        user_id=row.user_id,
        course_id=row.course_id,
        issued_at=row.issued_at,
        verification_id=row.verification_id,
        student_name=row.student_name,
        course_name=row.course_name,
    )
