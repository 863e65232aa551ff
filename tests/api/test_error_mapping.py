"""Lifecycle errors reach clients as status codes with a detail body."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from academy.api.errors import status_for
from academy.core.errors import (
    AccessDeniedError,
    ConflictError,
    LifecycleError,
    NotFoundError,
    PaymentGatewayError,
    TransientStorageError,
    ValidationError,
)
from academy.services.lifecycle import lifecycle
from tests.conftest import api_load_course, auth


@pytest.mark.parametrize(
    ("exc", "code"),
    [
        (ValidationError("bad"), 422),
        (NotFoundError("missing"), 404),
        (AccessDeniedError("nope"), 403),
        (ConflictError("clash"), 409),
        (PaymentGatewayError("down"), 502),
        (TransientStorageError("blip"), 503),
        (LifecycleError("other"), 500),
    ],
)
def test_status_for(exc: LifecycleError, code: int) -> None:
    assert status_for(exc) == code


def test_transient_failure_is_503_with_retry_after(
    client: TestClient, token: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def unavailable():
        raise TransientStorageError("ledger unavailable")

    monkeypatch.setattr(lifecycle, "list_courses", unavailable)
    resp = client.get("/v1/courses", headers=auth(token))
    assert resp.status_code == 503
    assert resp.headers["Retry-After"] == "1"
    assert resp.json() == {"detail": "ledger unavailable"}


def test_gateway_failure_is_502(
    client: TestClient, token: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    course = api_load_course(client)

    async def gateway_down(principal, course_id):
        raise PaymentGatewayError("payment provider unavailable")

    monkeypatch.setattr(lifecycle, "purchase_course", gateway_down)
    resp = client.post(
        "/v1/payments/course-checkout",
        json={"course_id": course["id"]},
        headers=auth(token),
    )
    assert resp.status_code == 502
