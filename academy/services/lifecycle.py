"""Lifecycle Orchestrator: the only entry point the API layer calls.

Each public method is one ledger transaction composed from the payment,
progress, exam and certificate components.  Nothing from a multi-step
operation is visible unless all of it commits: a voucher and the
attempt it funds, a grade and the certificate it earns.

Transient storage failures roll the transaction back and the whole
operation is re-run (up to LEDGER_MAX_RETRIES, backoff 0.1s * 2^n).
Every other LifecycleError propagates to the caller unchanged.

Side effects outside the ledger (metrics, the rendering hand-off) only
happen after commit.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from typing import TypeVar
from uuid import UUID

from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from academy.core.config import SETTINGS, Settings
from academy.core.errors import (
    ALREADY_ENROLLED,
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    TransientStorageError,
    ValidationError,
)
from academy.core.metrics import (
    CERTIFICATES_ISSUED,
    EXAM_ATTEMPTS_STARTED,
    EXAM_SUBMISSIONS,
    LEDGER_RETRIES,
    LESSONS_COMPLETED,
    PAYMENT_EVENTS,
    QUEUE_DEPTH,
)
from academy.db.engine import async_session_factory
from academy.models.certificate import Certificate
from academy.models.course import Course, Lesson
from academy.models.enrollment import Enrollment
from academy.models.exam import ExamAnswer, ExamAttempt, ExamResult
from academy.models.exam_stats import ExamStats
from academy.models.payment_event import EVENT_TYPES, PaymentOutcome
from academy.models.principal import Principal
from academy.models.progress import Eligibility, Progress
from academy.repos.ledger_repo import InMemoryLedgerStore, Ledger, LedgerStore
from academy.repos.pg_ledger_repo import PgLedgerStore
from academy.services import (
    certificates,
    exam_engine,
    exam_stats,
    payment_events,
    progress,
)
from academy.services.catalog import CourseDefinition, load_catalog
from academy.services.exam_engine import QuestionSelectionPolicy
from academy.services.payment_gateway import (
    CheckoutSession,
    PaymentGateway,
    payment_gateway,
)
from academy.services.task_queue import CERTIFICATE_RENDERING, TaskQueue, task_queue

logger = logging.getLogger(__name__)

T = TypeVar("T")
Clock = Callable[[], int]

STATS_WINDOW_SECONDS = 90 * 24 * 3600


def _epoch_now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


@dataclass(frozen=True, slots=True)
class EnrollmentOverview:
    enrollment: Enrollment
    course: Course | None
    progress: Progress
    eligibility: Eligibility
    certificate: Certificate | None = None


@dataclass(frozen=True, slots=True)
class AttemptView:
    """An attempt as its owner may see it: result only once graded."""

    attempt: ExamAttempt
    result: ExamResult | None = None


def _authorize(principal: Principal, enrollment: Enrollment) -> None:
    if not principal.can_act_for(enrollment.user_id):
        logger.warning(
            "Access denied: user=%s enrollment owner=%s",
            principal.user_id,
            enrollment.user_id,
            extra={"enrollment_id": str(enrollment.id)},
        )
        raise AccessDeniedError("not your enrollment")


class LifecycleService:
    def __init__(
        self,
        store: LedgerStore,
        *,
        settings: Settings = SETTINGS,
        queue: TaskQueue | None = None,
        gateway: PaymentGateway | None = None,
        clock: Clock = _epoch_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._settings = settings
        self._queue = queue if queue is not None else task_queue
        self._gateway = gateway if gateway is not None else payment_gateway
        self._clock = clock
        self._sleep = sleep
        self.policy = QuestionSelectionPolicy(exam_length=settings.exam_length)

    # ------------------------------------------------------------------
    # Transaction runner
    # ------------------------------------------------------------------

    async def _run(self, op: str, work: Callable[[Ledger], Awaitable[T]]) -> T:
        def log_retry(state: RetryCallState) -> None:
            LEDGER_RETRIES.inc()
            logger.warning(
                "Transient ledger failure in %s; retry %d in %.1fs",
                op,
                state.attempt_number,
                state.next_action.sleep if state.next_action else 0.0,
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientStorageError),
            stop=stop_after_attempt(self._settings.ledger_max_retries + 1),
            wait=wait_exponential(multiplier=0.1),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )
        try:
            return await retrying(self._transaction, work)
        except TransientStorageError:
            logger.exception(
                "Ledger transaction %s gave up after %d retries",
                op,
                self._settings.ledger_max_retries,
            )
            raise

    async def _transaction(self, work: Callable[[Ledger], Awaitable[T]]) -> T:
        async with self._store.transaction() as ledger:
            return await work(ledger)

    async def _owned_enrollment(
        self, ledger: Ledger, principal: Principal, enrollment_id: UUID, *, sync: bool = True
    ) -> Enrollment:
        if sync:
            await ledger.upsert_user(principal.to_user())
        enrollment = await progress.load_enrollment(ledger, enrollment_id)
        _authorize(principal, enrollment)
        return enrollment

    # ------------------------------------------------------------------
    # Payment events (webhook path)
    # ------------------------------------------------------------------

    async def process_payment_event(
        self,
        external_event_id: str,
        event_type: str,
        payload: dict,
        *,
        rejection: str | None = None,
    ) -> PaymentOutcome:
        outcome = await self._run(
            "process_payment_event",
            lambda ledger: payment_events.process_payment_event(
                ledger,
                external_event_id,
                event_type,
                payload,
                now=self._clock(),
                max_vouchers=self._settings.max_vouchers,
                rejection=rejection,
            ),
        )
        label = event_type if event_type in EVENT_TYPES else "unknown"
        PAYMENT_EVENTS.labels(event_type=label, outcome=outcome.status).inc()
        return outcome

    # ------------------------------------------------------------------
    # Checkout initiation
    # ------------------------------------------------------------------

    async def purchase_course(self, principal: Principal, course_id: UUID) -> CheckoutSession:
        async def work(ledger: Ledger) -> Course:
            await ledger.upsert_user(principal.to_user())
            course = await ledger.get_course(course_id)
            if course is None or course.status != "published":
                raise NotFoundError("course not found")
            if await ledger.find_current_enrollment(principal.user_id, course_id):
                raise ConflictError(ALREADY_ENROLLED)
            return course

        course = await self._run("purchase_course", work)
        return await self._gateway.create_checkout(
            product_name=course.title,
            amount_cents=course.price_cents,
            metadata={
                "type": "course_purchase",
                "user_id": principal.user_id,
                "course_id": str(course.id),
            },
            success_path=f"/courses/{course.slug}?checkout=success",
            cancel_path=f"/courses/{course.slug}?checkout=cancelled",
        )

    async def purchase_voucher(
        self, principal: Principal, enrollment_id: UUID
    ) -> CheckoutSession:
        async def work(ledger: Ledger) -> Course | None:
            enrollment = await self._owned_enrollment(ledger, principal, enrollment_id)
            eligibility = await self._eligibility(ledger, enrollment_id)
            if not eligibility.enrollment_current:
                raise ConflictError("enrollment is not active")
            if not eligibility.can_purchase_voucher:
                raise ConflictError("voucher limit reached for this enrollment")
            return await ledger.get_course(enrollment.course_id)

        course = await self._run("purchase_voucher", work)
        title = course.title if course else "course"
        return await self._gateway.create_checkout(
            product_name=f"Additional exam attempt: {title}",
            amount_cents=self._settings.voucher_price_cents,
            metadata={"type": "voucher_purchase", "enrollment_id": str(enrollment_id)},
            success_path=f"/enrollments/{enrollment_id}?voucher=success",
            cancel_path=f"/enrollments/{enrollment_id}?voucher=cancelled",
        )

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def mark_lesson_complete(
        self, principal: Principal, enrollment_id: UUID, lesson_id: UUID
    ) -> Progress:
        async def work(ledger: Ledger) -> tuple[Progress, bool]:
            await self._owned_enrollment(ledger, principal, enrollment_id)
            return await progress.mark_lesson_complete(
                ledger, enrollment_id, lesson_id, now=self._clock()
            )

        result, inserted = await self._run("mark_lesson_complete", work)
        if inserted:
            LESSONS_COMPLETED.inc()
        return result

    async def _eligibility(self, ledger: Ledger, enrollment_id: UUID) -> Eligibility:
        return await progress.get_eligibility(
            ledger,
            enrollment_id,
            base_attempts=self._settings.base_attempts,
            max_vouchers=self._settings.max_vouchers,
        )

    async def get_eligibility(self, principal: Principal, enrollment_id: UUID) -> Eligibility:
        async def work(ledger: Ledger) -> Eligibility:
            await self._owned_enrollment(ledger, principal, enrollment_id, sync=False)
            return await self._eligibility(ledger, enrollment_id)

        return await self._run("get_eligibility", work)

    async def _overview(self, ledger: Ledger, enrollment: Enrollment) -> EnrollmentOverview:
        return EnrollmentOverview(
            enrollment=enrollment,
            course=await ledger.get_course(enrollment.course_id),
            progress=await progress.get_progress(ledger, enrollment),
            eligibility=await self._eligibility(ledger, enrollment.id),
            certificate=await ledger.get_certificate_for_enrollment(enrollment.id),
        )

    async def get_enrollment_overview(
        self, principal: Principal, enrollment_id: UUID
    ) -> EnrollmentOverview:
        async def work(ledger: Ledger) -> EnrollmentOverview:
            enrollment = await self._owned_enrollment(
                ledger, principal, enrollment_id, sync=False
            )
            return await self._overview(ledger, enrollment)

        return await self._run("get_enrollment_overview", work)

    async def list_my_enrollments(self, principal: Principal) -> list[EnrollmentOverview]:
        async def work(ledger: Ledger) -> list[EnrollmentOverview]:
            await ledger.upsert_user(principal.to_user())
            return [
                await self._overview(ledger, e)
                for e in await ledger.list_enrollments_for_user(principal.user_id)
            ]

        return await self._run("list_my_enrollments", work)

    # ------------------------------------------------------------------
    # Exam
    # ------------------------------------------------------------------

    async def start_exam(self, principal: Principal, enrollment_id: UUID) -> ExamAttempt:
        async def work(ledger: Ledger) -> ExamAttempt:
            await self._owned_enrollment(ledger, principal, enrollment_id)
            return await exam_engine.start_attempt(
                ledger,
                enrollment_id,
                self.policy,
                now=self._clock(),
                base_attempts=self._settings.base_attempts,
            )

        attempt = await self._run("start_exam", work)
        EXAM_ATTEMPTS_STARTED.labels(
            funded_by="voucher" if attempt.voucher_id else "quota"
        ).inc()
        return attempt

    async def submit_exam(
        self, principal: Principal, attempt_id: UUID, answers: Sequence[ExamAnswer]
    ) -> ExamResult:
        async def work(ledger: Ledger) -> tuple[ExamResult, Certificate | None]:
            attempt = await exam_engine.load_attempt(ledger, attempt_id)
            await self._owned_enrollment(ledger, principal, attempt.enrollment_id)
            result = await exam_engine.submit_attempt(
                ledger,
                attempt_id,
                answers,
                now=self._clock(),
                pass_threshold=self._settings.pass_threshold,
            )
            issued = None
            if result.passed and not result.already_submitted:
                cert, created = await certificates.issue_if_eligible(
                    ledger,
                    result.enrollment_id,
                    now=self._clock(),
                    prefix=self._settings.certificate_prefix,
                )
                result = _with_certificate(result, cert)
                issued = cert if created else None
            elif result.passed:
                cert = await ledger.get_certificate_for_enrollment(result.enrollment_id)
                if cert is not None:
                    result = _with_certificate(result, cert)
            return result, issued

        result, issued = await self._run("submit_exam", work)

        if result.already_submitted:
            EXAM_SUBMISSIONS.labels(result="already_submitted").inc()
            return result
        EXAM_SUBMISSIONS.labels(result="passed" if result.passed else "failed").inc()
        if result.passed:
            CERTIFICATES_ISSUED.labels(
                result="existing" if issued is None else "created"
            ).inc()
        if issued is not None:
            await self._request_rendering(issued)
        return result

    async def get_attempt(self, principal: Principal, attempt_id: UUID) -> AttemptView:
        async def work(ledger: Ledger) -> AttemptView:
            attempt = await exam_engine.load_attempt(ledger, attempt_id)
            await self._owned_enrollment(
                ledger, principal, attempt.enrollment_id, sync=False
            )
            if attempt.is_open:
                return AttemptView(attempt=attempt)
            result = await exam_engine.stored_result(
                ledger, attempt, pass_threshold=self._settings.pass_threshold
            )
            return AttemptView(attempt=attempt, result=result)

        return await self._run("get_attempt", work)

    # ------------------------------------------------------------------
    # Certificates
    # ------------------------------------------------------------------

    async def issue_certificate(
        self, principal: Principal, enrollment_id: UUID
    ) -> Certificate:
        """Idempotent issuance for an enrollment that already has a pass."""

        async def work(ledger: Ledger) -> tuple[Certificate, bool]:
            await self._owned_enrollment(ledger, principal, enrollment_id)
            return await certificates.issue_if_eligible(
                ledger,
                enrollment_id,
                now=self._clock(),
                prefix=self._settings.certificate_prefix,
            )

        cert, created = await self._run("issue_certificate", work)
        CERTIFICATES_ISSUED.labels(result="created" if created else "existing").inc()
        if created:
            await self._request_rendering(cert)
        return cert

    async def list_my_certificates(self, principal: Principal) -> list[Certificate]:
        return await self._run(
            "list_my_certificates",
            lambda ledger: ledger.list_certificates_for_user(principal.user_id),
        )

    async def verify_certificate(self, verification_id: str) -> Certificate:
        cert = await self._run(
            "verify_certificate",
            lambda ledger: ledger.get_certificate_by_verification_id(
                verification_id.strip().upper()
            ),
        )
        if cert is None:
            raise NotFoundError("certificate not found")
        return cert

    async def _request_rendering(self, cert: Certificate) -> None:
        payload = {
            "certificate_id": str(cert.id),
            "student_name": cert.student_name,
            "course_name": cert.course_name,
            "issued_at": cert.issued_at,
            "verification_id": cert.verification_id,
        }
        try:
            task = await self._queue.enqueue(CERTIFICATE_RENDERING, payload)
            QUEUE_DEPTH.labels(queue_name=CERTIFICATE_RENDERING).set(
                await self._queue.queue_length(CERTIFICATE_RENDERING)
            )
        except (RedisError, OSError):
            # The certificate row is already committed either way.
            logger.exception("Could not enqueue rendering for %s", cert.verification_id)
            return
        logger.info("Rendering task %s queued for %s", task.id, cert.verification_id)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def list_courses(self) -> list[Course]:
        courses = await self._run("list_courses", lambda ledger: ledger.list_courses())
        return [c for c in courses if c.status == "published"]

    async def list_lessons(self, course_id: UUID) -> list[Lesson]:
        async def work(ledger: Ledger) -> list[Lesson]:
            course = await ledger.get_course(course_id)
            if course is None or course.status != "published":
                raise NotFoundError("course not found")
            return await ledger.list_lessons(course_id)

        return await self._run("list_lessons", work)

    async def load_course(self, definition: CourseDefinition) -> Course:
        return await self._run(
            "load_course", lambda ledger: load_catalog(ledger, definition)
        )

    # ------------------------------------------------------------------
    # Admin analytics
    # ------------------------------------------------------------------

    async def exam_stats(
        self,
        *,
        course_id: UUID | None = None,
        since: int | None = None,
        until: int | None = None,
    ) -> ExamStats:
        """Exam outcomes for attempts submitted in the window (default: 90 days)."""
        window_end = until if until is not None else self._clock()
        window_start = since if since is not None else window_end - STATS_WINDOW_SECONDS
        if window_start > window_end:
            raise ValidationError("since must not be after until")

        async def work(ledger: Ledger) -> ExamStats:
            if course_id is not None and await ledger.get_course(course_id) is None:
                raise NotFoundError("course not found")
            graded = await ledger.list_graded_attempts(
                course_id=course_id,
                submitted_from=window_start,
                submitted_to=window_end,
            )
            answers = await ledger.list_answers_for([a.id for _, a in graded])
            titles = {c.id: c.title for c in await ledger.list_courses()}
            return exam_stats.summarize(
                graded,
                answers,
                course_titles=titles,
                window_start=window_start,
                window_end=window_end,
                course_id=course_id,
                pass_threshold=self._settings.pass_threshold,
            )

        return await self._run("exam_stats", work)


def _with_certificate(result: ExamResult, cert: Certificate) -> ExamResult:
    return replace(result, certificate_id=cert.id, verification_id=cert.verification_id)


# ---------------------------------------------------------------------------
# Module-level singletons
# ---------------------------------------------------------------------------

if async_session_factory is not None:
    ledger_store: LedgerStore = PgLedgerStore(async_session_factory)
else:
    ledger_store = InMemoryLedgerStore()

lifecycle = LifecycleService(ledger_store)
