from __future__ import annotations

import sys
from dataclasses import dataclass, replace
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from academy import worker
from academy.core.config import SETTINGS
from academy.main import app
from academy.models.course import OPTION_IDS, Course, ExamQuestion, Lesson
from academy.models.exam import ExamAnswer, ExamAttempt
from academy.models.principal import Principal
from academy.repos.ledger_repo import InMemoryLedgerStore
from academy.services import token_service
from academy.services.catalog import build_course, parse_definition
from academy.services.lifecycle import LifecycleService, ledger_store
from academy.services.payment_gateway import OfflineGateway, payment_gateway
from academy.services.task_queue import InMemoryTaskQueue, task_queue

# Ensure repo root is on sys.path so `import academy` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TEST_SETTINGS = replace(
    SETTINGS,
    exam_length=100,
    pass_threshold=80,
    base_attempts=2,
    max_vouchers=1,
    certificate_prefix="NSBS",
    ledger_max_retries=3,
    stripe_webhook_secret=None,
)


@pytest.fixture(autouse=True)
def reset_ledger() -> None:
    """Start every test with an empty in-memory ledger."""
    if isinstance(ledger_store, InMemoryLedgerStore):
        ledger_store.reset()


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_gateway_and_renderer() -> None:
    if isinstance(payment_gateway, OfflineGateway):
        payment_gateway.sessions.clear()
    if hasattr(worker.renderer, "rendered"):
        worker.renderer.rendered.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
    name: str = "",
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles, name=name)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    """Token with default role (user)."""
    return mint_token(name="Test User")


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(username="test-admin", roles=["admin"])


# ---------------------------------------------------------------------------
# Catalog helpers
# ---------------------------------------------------------------------------


def course_definition(
    *,
    slug: str = "ai-foundations",
    title: str = "AI Foundations",
    lessons: int = 3,
    questions: int = 10,
    price_cents: int = 49900,
) -> dict:
    """A catalog document with one module per two lessons.

    Question ``i`` has correct option ``OPTION_IDS[i % 4]``.
    """
    modules = []
    for start in range(0, lessons, 2):
        modules.append(
            {
                "title": f"Module {start // 2 + 1}",
                "lessons": [
                    {"title": f"Lesson {n + 1}"}
                    for n in range(start, min(start + 2, lessons))
                ],
            }
        )
    return {
        "course": {
            "slug": slug,
            "title": title,
            "acronym": "AIF",
            "price_cents": price_cents,
        },
        "modules": modules,
        "questions": [
            {
                "text": f"Question {i}",
                "options": [f"Option {i}{x}" for x in "abcd"],
                "correct": OPTION_IDS[i % 4],
                "explanation": f"Because of reason {i}",
            }
            for i in range(questions)
        ],
    }


@dataclass(frozen=True)
class SeededCourse:
    course: Course
    lessons: list[Lesson]
    questions: list[ExamQuestion]


async def seed_course(store, data: dict | None = None) -> SeededCourse:
    """Write a course straight into a ledger store and keep the generated ids."""
    course, lessons, questions = build_course(
        parse_definition(data or course_definition())
    )
    async with store.transaction() as ledger:
        await ledger.add_course(course)
        for lesson in lessons:
            await ledger.add_lesson(lesson)
        for question in questions:
            await ledger.add_question(question)
    return SeededCourse(course=course, lessons=lessons, questions=questions)


# ---------------------------------------------------------------------------
# Service-level fixtures
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, start: int = 1_760_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def queue() -> InMemoryTaskQueue:
    return InMemoryTaskQueue()


@pytest.fixture
def gateway() -> OfflineGateway:
    return OfflineGateway("http://localhost:5173")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def service(
    store: InMemoryLedgerStore,
    queue: InMemoryTaskQueue,
    gateway: OfflineGateway,
    clock: FakeClock,
    sleeper: RecordingSleep,
) -> LifecycleService:
    return LifecycleService(
        store,
        settings=TEST_SETTINGS,
        queue=queue,
        gateway=gateway,
        clock=clock,
        sleep=sleeper,
    )


def learner(user_id: str = "learner-1", name: str = "Ada Lovelace") -> Principal:
    return Principal(user_id=user_id, roles=frozenset({"user"}), name=name)


def admin(user_id: str = "admin-1") -> Principal:
    return Principal(user_id=user_id, roles=frozenset({"admin"}))


async def enroll(
    service: LifecycleService,
    user_id: str,
    course_id: UUID,
    *,
    event_id: str | None = None,
) -> UUID:
    outcome = await service.process_payment_event(
        event_id or f"evt_{uuid4().hex}",
        "course_purchase",
        {"user_id": user_id, "course_id": str(course_id)},
    )
    assert outcome.status == "applied", outcome.reason
    return UUID(outcome.enrollment_id)


async def complete_lessons(
    service: LifecycleService,
    principal: Principal,
    enrollment_id: UUID,
    lessons: list[Lesson],
) -> None:
    for lesson in lessons:
        await service.mark_lesson_complete(principal, enrollment_id, lesson.id)


async def ready_for_exam(
    service: LifecycleService, store, principal: Principal, data: dict | None = None
) -> tuple[SeededCourse, UUID]:
    """Seed a course, enroll the principal and finish every lesson."""
    seeded = await seed_course(store, data)
    enrollment_id = await enroll(service, principal.user_id, seeded.course.id)
    await complete_lessons(service, principal, enrollment_id, seeded.lessons)
    return seeded, enrollment_id


def answers_for(attempt: ExamAttempt, correct: int) -> list[ExamAnswer]:
    """Answer the first ``correct`` questions right and the rest wrong."""
    answers = []
    for i, q in enumerate(attempt.question_set):
        if i < correct:
            choice = q.correct_option_id
        else:
            choice = next(o for o in OPTION_IDS if o != q.correct_option_id)
        answers.append(ExamAnswer(question_id=q.question_id, selected_option_id=choice))
    return answers


# ---------------------------------------------------------------------------
# API helpers (drive the app through HTTP only)
# ---------------------------------------------------------------------------


def api_load_course(client: TestClient, data: dict | None = None) -> dict:
    admin_token = mint_token(username="catalog-admin", roles=["admin"])
    resp = client.post(
        "/v1/courses", json=data or course_definition(), headers=auth(admin_token)
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def api_payment_event(
    client: TestClient, event_type: str, *, event_id: str | None = None, **fields
) -> dict:
    body = {"externalEventId": event_id or f"evt_{uuid4().hex}", "type": event_type}
    body.update(fields)
    resp = client.post("/v1/webhooks/payments", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()


def api_enroll(client: TestClient, user_id: str, course_id: str) -> str:
    outcome = api_payment_event(
        client, "course_purchase", userId=user_id, courseId=course_id
    )
    assert outcome["status"] == "applied", outcome
    return outcome["enrollment_id"]


def api_complete_course(
    client: TestClient, token: str, course_id: str, enrollment_id: str
) -> dict:
    lessons = client.get(f"/v1/courses/{course_id}/lessons", headers=auth(token)).json()
    body = {}
    for lesson in lessons:
        resp = client.post(
            "/v1/progress/lessons/complete",
            json={"enrollment_id": enrollment_id, "lesson_id": lesson["id"]},
            headers=auth(token),
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
    return body


def api_answers(
    attempt: dict, correct_by_text: dict[str, str], correct: int
) -> list[dict]:
    """Answer sheet for an AttemptOut body; question text -> correct option."""
    answers = []
    for i, q in enumerate(attempt["questions"]):
        right = correct_by_text[q["text"]]
        choice = right if i < correct else next(o for o in OPTION_IDS if o != right)
        answers.append({"question_id": q["question_id"], "selected_option_id": choice})
    return answers


def answer_key(data: dict) -> dict[str, str]:
    return {q["text"]: q["correct"] for q in data["questions"]}
