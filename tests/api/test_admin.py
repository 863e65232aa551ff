"""Tests for the admin exam statistics endpoint."""

from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import (
    api_answers,
    api_complete_course,
    api_enroll,
    api_load_course,
    answer_key,
    auth,
    course_definition,
)

URL = "/v1/admin/exam-stats"


def _graded_attempt(client: TestClient, token: str, correct: int) -> dict:
    data = course_definition()
    course = api_load_course(client, data)
    enrollment_id = api_enroll(client, "test-user", course["id"])
    api_complete_course(client, token, course["id"], enrollment_id)
    attempt = client.post(
        "/v1/exam/start", json={"enrollment_id": enrollment_id}, headers=auth(token)
    ).json()
    client.post(
        "/v1/exam/submit",
        json={
            "attempt_id": attempt["attempt_id"],
            "answers": api_answers(attempt, answer_key(data), correct),
        },
        headers=auth(token),
    )
    return course


def test_admin_sees_course_stats(
    client: TestClient, token: str, admin_token: str
) -> None:
    course = _graded_attempt(client, token, correct=9)
    resp = client.get(URL, params={"course_id": course["id"]}, headers=auth(admin_token))
    assert resp.status_code == 200
    body = resp.json()
    assert body["course_id"] == course["id"]
    assert body["total_attempts"] == 1
    assert body["pass_rate"] == 100.0
    assert body["average_score"] == 90.0
    assert body["courses"] == [
        {
            "course_id": course["id"],
            "course_title": "AI Foundations",
            "total_attempts": 1,
            "pass_rate": 100.0,
            "average_score": 90.0,
            "average_attempts_per_user": 1.0,
        }
    ]
    worst = body["most_missed"][0]
    assert worst["failure_rate"] == 100.0
    assert worst["times_shown"] == 1
    assert [q["failure_rate"] for q in body["most_missed"][1:]] == [0.0] * 9


def test_answer_key_is_not_exposed(
    client: TestClient, token: str, admin_token: str
) -> None:
    _graded_attempt(client, token, correct=5)
    resp = client.get(URL, headers=auth(admin_token))
    assert "correct_option_id" not in resp.text
    assert "explanation" not in resp.text


def test_no_attempts_gives_zeroes(client: TestClient, admin_token: str) -> None:
    body = client.get(URL, headers=auth(admin_token)).json()
    assert body["total_attempts"] == 0
    assert body["pass_rate"] == 0.0
    assert body["courses"] == []
    assert body["most_missed"] == []


def test_unknown_course_is_404(client: TestClient, admin_token: str) -> None:
    resp = client.get(
        URL,
        params={"course_id": "00000000-0000-0000-0000-000000000000"},
        headers=auth(admin_token),
    )
    assert resp.status_code == 404


def test_inverted_window_is_422(client: TestClient, admin_token: str) -> None:
    resp = client.get(URL, params={"since": 200, "until": 100}, headers=auth(admin_token))
    assert resp.status_code == 422


def test_learner_is_403(client: TestClient, token: str) -> None:
    assert client.get(URL, headers=auth(token)).status_code == 403


def test_anonymous_is_401(client: TestClient) -> None:
    assert client.get(URL).status_code == 401
