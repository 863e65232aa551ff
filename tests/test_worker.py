"""Background worker: certificate rendering hand-off."""

from __future__ import annotations

import asyncio

import pytest

from academy import worker
from academy.services.task_queue import CERTIFICATE_RENDERING, task_queue
from academy.worker import RenderRequest, certificate_filename

# 2026-03-14T12:00:00Z
ISSUED_AT = 1_773_489_600


def _payload(**overrides) -> dict:
    payload = {
        "certificate_id": "7d1f0c1e-0000-4000-8000-000000000001",
        "student_name": "Ada Lovelace",
        "course_name": "AI Foundations: Part 1",
        "issued_at": ISSUED_AT,
        "verification_id": "NSBS-ABCD-EFGH-JKLM",
    }
    payload.update(overrides)
    return payload


def test_filename_is_lowercase_and_safe() -> None:
    request = RenderRequest.from_payload(_payload())
    assert request.issued_date == "2026-03-14"
    assert (
        certificate_filename(request, "NSBS")
        == "nsbs_certificate_ai_foundations__part_1_ada_lovelace_2026-03-14.pdf"
    )


def test_malformed_payload_is_a_value_error() -> None:
    with pytest.raises(ValueError, match="malformed rendering payload"):
        RenderRequest.from_payload({"student_name": "x"})


def test_certificate_rendering_is_registered() -> None:
    assert worker.HANDLERS[CERTIFICATE_RENDERING] is worker.handle_certificate_rendering


def test_process_one_hands_task_to_renderer() -> None:
    async def run():
        await task_queue.enqueue(CERTIFICATE_RENDERING, _payload())
        return await worker.process_one(CERTIFICATE_RENDERING, timeout=0)

    assert asyncio.run(run()) is True
    ((request, filename),) = worker.renderer.rendered  # type: ignore[attr-defined]
    assert request.verification_id == "NSBS-ABCD-EFGH-JKLM"
    assert filename.endswith("_ada_lovelace_2026-03-14.pdf")


def test_process_one_on_empty_queue() -> None:
    assert asyncio.run(worker.process_one(CERTIFICATE_RENDERING, timeout=0)) is False


def test_failing_task_is_logged_and_dropped(caplog: pytest.LogCaptureFixture) -> None:
    async def run():
        await task_queue.enqueue(CERTIFICATE_RENDERING, {"bad": "payload"})
        taken = await worker.process_one(CERTIFICATE_RENDERING, timeout=0)
        return taken, await task_queue.queue_length(CERTIFICATE_RENDERING)

    with caplog.at_level("ERROR", logger="academy.worker"):
        taken, remaining = asyncio.run(run())
    assert taken is True
    assert remaining == 0
    assert any("failed" in r.getMessage() for r in caplog.records)
    assert worker.renderer.rendered == []  # type: ignore[attr-defined]
