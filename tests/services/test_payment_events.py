"""Payment event processing: exactly-once per external event id."""

from __future__ import annotations

import asyncio
from uuid import UUID, uuid4

import pytest
from prometheus_client import REGISTRY

from academy.core.errors import ValidationError
from academy.repos.ledger_repo import InMemoryLedgerStore
from academy.services.lifecycle import LifecycleService
from tests.conftest import (
    answers_for,
    enroll,
    learner,
    ready_for_exam,
    seed_course,
)


def _sample(name: str, labels: dict) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels)
    return value if value is not None else 0.0


def test_course_purchase_creates_active_enrollment(
    service: LifecycleService, store: InMemoryLedgerStore
) -> None:
    async def scenario():
        seeded = await seed_course(store)
        outcome = await service.process_payment_event(
            "evt_1",
            "course_purchase",
            {"user_id": "learner-1", "course_id": str(seeded.course.id)},
        )
        overview = await service.get_enrollment_overview(
            learner(), UUID(outcome.enrollment_id)
        )
        return outcome, overview

    outcome, overview = asyncio.run(scenario())
    assert outcome.status == "applied"
    assert overview.enrollment.status == "active"
    assert overview.enrollment.lesson_total == 3
    assert overview.progress.completed == 0


def test_redelivered_event_is_a_duplicate(
    service: LifecycleService, store: InMemoryLedgerStore
) -> None:
    async def scenario():
        seeded = await seed_course(store)
        payload = {"user_id": "learner-1", "course_id": str(seeded.course.id)}
        first = await service.process_payment_event("evt_dup", "course_purchase", payload)
        second = await service.process_payment_event("evt_dup", "course_purchase", payload)
        enrollments = await service.list_my_enrollments(learner())
        return first, second, enrollments

    first, second, enrollments = asyncio.run(scenario())
    assert first.status == "applied"
    assert second.status == "duplicate"
    assert len(enrollments) == 1


def test_concurrent_duplicates_apply_once(
    service: LifecycleService, store: InMemoryLedgerStore
) -> None:
    async def scenario():
        seeded = await seed_course(store)
        payload = {"user_id": "learner-1", "course_id": str(seeded.course.id)}
        outcomes = await asyncio.gather(
            *(
                service.process_payment_event("evt_race", "course_purchase", payload)
                for _ in range(8)
            )
        )
        return outcomes, await service.list_my_enrollments(learner())

    outcomes, enrollments = asyncio.run(scenario())
    statuses = sorted(o.status for o in outcomes)
    assert statuses.count("applied") == 1
    assert statuses.count("duplicate") == 7
    assert len(enrollments) == 1


def test_duplicate_outcome_is_counted(
    service: LifecycleService, store: InMemoryLedgerStore
) -> None:
    labels = {"event_type": "course_purchase", "outcome": "duplicate"}
    before = _sample("payment_events_total", labels)

    async def scenario():
        seeded = await seed_course(store)
        payload = {"user_id": "learner-1", "course_id": str(seeded.course.id)}
        await service.process_payment_event("evt_m", "course_purchase", payload)
        await service.process_payment_event("evt_m", "course_purchase", payload)

    asyncio.run(scenario())
    assert _sample("payment_events_total", labels) - before == 1


def test_empty_event_id_is_a_validation_error(service: LifecycleService) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(service.process_payment_event("  ", "course_purchase", {}))


# ---- rejected outcomes are recorded, so re-deliveries are duplicates ----


def test_unparseable_event_is_rejected_without_applying(
    service: LifecycleService, store: InMemoryLedgerStore
) -> None:
    async def scenario():
        seeded = await seed_course(store)
        payload = {"user_id": "learner-1", "course_id": str(seeded.course.id)}
        first = await service.process_payment_event(
            "evt_garbled", "course_purchase", payload, rejection="malformed amount"
        )
        again = await service.process_payment_event(
            "evt_garbled", "course_purchase", payload
        )
        return first, again, await service.list_my_enrollments(learner())

    first, again, enrollments = asyncio.run(scenario())
    assert first.status == "rejected"
    assert first.reason == "malformed amount"
    assert again.status == "duplicate"
    assert enrollments == []


def test_unknown_course_is_rejected_then_duplicate(service: LifecycleService) -> None:
    payload = {"user_id": "learner-1", "course_id": str(uuid4())}

    async def scenario():
        first = await service.process_payment_event("evt_x", "course_purchase", payload)
        second = await service.process_payment_event("evt_x", "course_purchase", payload)
        return first, second

    first, second = asyncio.run(scenario())
    assert first.status == "rejected"
    assert first.reason == "unknown course"
    assert second.status == "duplicate"


def test_rejection_is_logged_as_warning(
    service: LifecycleService, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level("WARNING", logger="academy.services.payment_events"):
        asyncio.run(
            service.process_payment_event("evt_w", "gift_card", {"user_id": "u"})
        )
    assert any("rejected" in r.getMessage() for r in caplog.records)


def test_missing_fields_are_rejected(service: LifecycleService) -> None:
    outcome = asyncio.run(
        service.process_payment_event("evt_m2", "course_purchase", {"user_id": "u"})
    )
    assert outcome.status == "rejected"
    assert outcome.reason == "missing course_id"


def test_second_purchase_while_enrolled_is_rejected(
    service: LifecycleService, store: InMemoryLedgerStore
) -> None:
    async def scenario():
        seeded = await seed_course(store)
        await enroll(service, "learner-1", seeded.course.id)
        return await service.process_payment_event(
            "evt_again",
            "course_purchase",
            {"user_id": "learner-1", "course_id": str(seeded.course.id)},
        )

    outcome = asyncio.run(scenario())
    assert outcome.status == "rejected"
    assert outcome.reason == "already enrolled"


# ---- vouchers ----


def test_voucher_purchase_respects_limit(
    service: LifecycleService, store: InMemoryLedgerStore
) -> None:
    async def scenario():
        seeded = await seed_course(store)
        enrollment_id = await enroll(service, "learner-1", seeded.course.id)
        payload = {"enrollment_id": str(enrollment_id)}
        first = await service.process_payment_event("evt_v1", "voucher_purchase", payload)
        second = await service.process_payment_event("evt_v2", "voucher_purchase", payload)
        eligibility = await service.get_eligibility(learner(), enrollment_id)
        return first, second, eligibility

    first, second, eligibility = asyncio.run(scenario())
    assert first.status == "applied"
    assert first.voucher_id is not None
    assert second.status == "rejected"
    assert second.reason == "voucher limit reached"
    assert eligibility.vouchers_purchased == 1
    assert eligibility.attempts_available == 3


def test_voucher_for_unknown_enrollment_is_rejected(service: LifecycleService) -> None:
    outcome = asyncio.run(
        service.process_payment_event(
            "evt_v3", "voucher_purchase", {"enrollment_id": str(uuid4())}
        )
    )
    assert outcome.status == "rejected"
    assert outcome.reason == "unknown enrollment"


# ---- refunds ----


def test_refund_cancels_enrollment_and_allows_repurchase(
    service: LifecycleService, store: InMemoryLedgerStore
) -> None:
    async def scenario():
        seeded = await seed_course(store)
        enrollment_id = await enroll(service, "learner-1", seeded.course.id)
        refund = await service.process_payment_event(
            "evt_r1", "refund", {"enrollment_id": str(enrollment_id)}
        )
        again = await service.process_payment_event(
            "evt_r2", "refund", {"enrollment_id": str(enrollment_id)}
        )
        repurchase = await service.process_payment_event(
            "evt_p2",
            "course_purchase",
            {"user_id": "learner-1", "course_id": str(seeded.course.id)},
        )
        return refund, again, repurchase, await service.list_my_enrollments(learner())

    refund, again, repurchase, overviews = asyncio.run(scenario())
    assert refund.status == "applied"
    assert again.status == "rejected"
    assert again.reason == "enrollment already closed"
    assert repurchase.status == "applied"
    assert sorted(o.enrollment.status for o in overviews) == ["active", "cancelled"]


def test_refund_by_user_and_course(
    service: LifecycleService, store: InMemoryLedgerStore
) -> None:
    async def scenario():
        seeded = await seed_course(store)
        enrollment_id = await enroll(service, "learner-1", seeded.course.id)
        outcome = await service.process_payment_event(
            "evt_r3",
            "refund",
            {"user_id": "learner-1", "course_id": str(seeded.course.id)},
        )
        return enrollment_id, outcome

    enrollment_id, outcome = asyncio.run(scenario())
    assert outcome.enrollment_id == str(enrollment_id)


def test_refund_after_certificate_keeps_certificate(
    service: LifecycleService, store: InMemoryLedgerStore
) -> None:
    principal = learner()

    async def scenario():
        _, enrollment_id = await ready_for_exam(service, store, principal)
        attempt = await service.start_exam(principal, enrollment_id)
        result = await service.submit_exam(
            principal, attempt.id, answers_for(attempt, correct=10)
        )
        await service.process_payment_event(
            "evt_r4", "refund", {"enrollment_id": str(enrollment_id)}
        )
        cert = await service.verify_certificate(result.verification_id)
        overview = await service.get_enrollment_overview(principal, enrollment_id)
        return result, cert, overview

    result, cert, overview = asyncio.run(scenario())
    assert cert.id == result.certificate_id
    assert overview.enrollment.status == "cancelled"
    assert overview.certificate is not None
