"""Demo: walk one learner from purchase to verified certificate.

Run with:
    python scripts/demo_lifecycle.py

Runs in-process against the in-memory ledger (no DATABASE_URL), playing
the payment gateway's webhook by hand.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from fastapi.testclient import TestClient

from academy import worker
from academy.main import app
from academy.services import token_service
from academy.services.catalog import read_catalog_file
from academy.services.task_queue import CERTIFICATE_RENDERING

SAMPLE = Path(__file__).with_name("sample_course.json")


def main() -> None:
    client = TestClient(app)
    data = read_catalog_file(SAMPLE)
    key = {q["text"]: q["correct"] for q in data["questions"]}

    admin = token_service.create_access_token(sub="demo-admin", roles=["admin"])
    learner = token_service.create_access_token(sub="demo-learner", name="Ada Lovelace")
    as_admin = {"Authorization": f"Bearer {admin}"}
    as_learner = {"Authorization": f"Bearer {learner}"}

    # -- Step 1: load the catalog -------------------------------------------
    r = client.post("/v1/courses", json=data, headers=as_admin)
    course = r.json()
    print(f"1. POST /v1/courses               -> {r.status_code}  ({course['slug']})")

    # -- Step 2: checkout, then the gateway's webhook -----------------------
    r = client.post(
        "/v1/payments/course-checkout",
        json={"course_id": course["id"]},
        headers=as_learner,
    )
    print(f"2. POST /v1/payments/course-checkout -> {r.status_code}  {r.json()['url']}")
    event = {
        "externalEventId": "evt_demo_1",
        "type": "course_purchase",
        "userId": "demo-learner",
        "courseId": course["id"],
    }
    for attempt in (1, 2):
        r = client.post("/v1/webhooks/payments", json=event)
        print(f"   webhook delivery #{attempt}          -> {r.json()['status']}")
    enrollment_id = client.get("/v1/enrollments/me", headers=as_learner).json()[0]["id"]

    # -- Step 3: lessons ----------------------------------------------------
    lessons = client.get(f"/v1/courses/{course['id']}/lessons", headers=as_learner).json()
    for lesson in lessons:
        r = client.post(
            "/v1/progress/lessons/complete",
            json={"enrollment_id": enrollment_id, "lesson_id": lesson["id"]},
            headers=as_learner,
        )
    print(f"3. {len(lessons)} lessons completed          -> {r.json()['percentage']}%")

    # -- Step 4: exam -------------------------------------------------------
    r = client.post(
        "/v1/exam/start", json={"enrollment_id": enrollment_id}, headers=as_learner
    )
    attempt = r.json()
    print(f"4. POST /v1/exam/start            -> {r.status_code}  "
          f"({len(attempt['questions'])} questions)")
    answers = [
        {"question_id": q["question_id"], "selected_option_id": key[q["text"]]}
        for q in attempt["questions"]
    ]
    r = client.post(
        "/v1/exam/submit",
        json={"attempt_id": attempt["attempt_id"], "answers": answers},
        headers=as_learner,
    )
    result = r.json()
    print(f"   POST /v1/exam/submit           -> score {result['score']}  "
          f"passed={result['passed']}")

    # -- Step 5: verify and render ------------------------------------------
    r = client.get(f"/v1/certificates/verify/{result['verification_id']}")
    print(f"5. GET  /v1/certificates/verify/{result['verification_id']} -> {r.status_code}")
    asyncio.run(worker.process_one(CERTIFICATE_RENDERING))
    _, filename = worker.renderer.rendered[-1]  # type: ignore[attr-defined]
    print(f"   worker rendered                -> {filename}")


if __name__ == "__main__":
    main()
