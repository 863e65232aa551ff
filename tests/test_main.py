"""End-to-end: catalog load to rendered certificate, over HTTP only."""

from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from academy import worker
from academy.main import app
from academy.services.task_queue import CERTIFICATE_RENDERING
from tests.conftest import (
    api_answers,
    api_complete_course,
    api_load_course,
    api_payment_event,
    answer_key,
    auth,
    course_definition,
    mint_token,
)

client = TestClient(app)


def test_full_learner_journey() -> None:
    data = course_definition(title="Applied Ethics", lessons=4, questions=12)
    token = mint_token(username="learner-42", name="Mary Jackson")
    course = api_load_course(client, data)

    # Checkout, then the gateway confirms the purchase.
    checkout = client.post(
        "/v1/payments/course-checkout",
        json={"course_id": course["id"]},
        headers=auth(token),
    )
    assert checkout.status_code == 200
    purchase = api_payment_event(
        client, "course_purchase", userId="learner-42", courseId=course["id"]
    )
    enrollment_id = purchase["enrollment_id"]

    api_complete_course(client, token, course["id"], enrollment_id)

    # First attempt fails.
    key = answer_key(data)
    first = client.post(
        "/v1/exam/start", json={"enrollment_id": enrollment_id}, headers=auth(token)
    ).json()
    failed = client.post(
        "/v1/exam/submit",
        json={"attempt_id": first["attempt_id"], "answers": api_answers(first, key, 6)},
        headers=auth(token),
    ).json()
    assert failed["passed"] is False
    assert failed["score"] == 50

    # Second attempt passes and issues the certificate in the same call.
    second = client.post(
        "/v1/exam/start", json={"enrollment_id": enrollment_id}, headers=auth(token)
    ).json()
    assert second["attempt_number"] == 2
    passed = client.post(
        "/v1/exam/submit",
        json={"attempt_id": second["attempt_id"], "answers": api_answers(second, key, 11)},
        headers=auth(token),
    ).json()
    assert passed["passed"] is True
    assert passed["score"] == 91

    eligibility = client.get(
        f"/v1/progress/{enrollment_id}/eligibility", headers=auth(token)
    ).json()
    assert eligibility["attempts_available"] == 0
    assert eligibility["can_purchase_voucher"] is True

    # Anyone can verify it.
    verified = client.get(f"/v1/certificates/verify/{passed['verification_id']}")
    assert verified.status_code == 200
    assert verified.json()["student_name"] == "Mary Jackson"
    assert verified.json()["course_name"] == "Applied Ethics"

    # The worker picks up the rendering hand-off.
    assert asyncio.run(worker.process_one(CERTIFICATE_RENDERING)) is True
    request, filename = worker.renderer.rendered[-1]  # type: ignore[attr-defined]
    assert request.verification_id == passed["verification_id"]
    assert filename.startswith("nsbs_certificate_applied_ethics_mary_jackson_")
    assert asyncio.run(worker.process_one(CERTIFICATE_RENDERING)) is False


def test_refund_then_repurchase_starts_fresh() -> None:
    token = mint_token(username="learner-7")
    course = api_load_course(client)
    first = api_payment_event(
        client, "course_purchase", userId="learner-7", courseId=course["id"]
    )
    api_payment_event(client, "refund", userId="learner-7", courseId=course["id"])
    second = api_payment_event(
        client, "course_purchase", userId="learner-7", courseId=course["id"]
    )
    assert second["status"] == "applied"
    assert second["enrollment_id"] != first["enrollment_id"]

    mine = client.get("/v1/enrollments/me", headers=auth(token)).json()
    statuses = {e["id"]: e["status"] for e in mine}
    assert statuses == {
        first["enrollment_id"]: "cancelled",
        second["enrollment_id"]: "active",
    }
