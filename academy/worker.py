"""Background worker process.

RUN:  python -m academy.worker

Same image as the API, different command:
  api:    uvicorn academy.main:app --host 0.0.0.0 --port 8000
  worker: python -m academy.worker

The loop polls every registered queue round-robin, dequeues one task at
a time and dispatches it to the queue's handler.  A failing task is
logged and dropped (at-most-once, see services/task_queue.py).

The only queue today is ``certificate_rendering``: the orchestrator
enqueues it once a Certificate row has committed.  Turning the data
contract into file bytes is the renderer's job; this process only
builds the contract and the download filename and hands them over.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import re
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, Protocol

from academy.core.config import SETTINGS
from academy.core.logging import setup_logging
from academy.core.metrics import QUEUE_DEPTH
from academy.services.task_queue import CERTIFICATE_RENDERING, task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("academy.worker")


# ---------------------------------------------------------------------------
# Rendering contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RenderRequest:
    student_name: str
    course_name: str
    issued_at: int
    verification_id: str

    @staticmethod
    def from_payload(payload: dict) -> RenderRequest:
        try:
            return RenderRequest(
                student_name=str(payload["student_name"]),
                course_name=str(payload["course_name"]),
                issued_at=int(payload["issued_at"]),
                verification_id=str(payload["verification_id"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"malformed rendering payload: {e}") from e

    @property
    def issued_date(self) -> str:
        return datetime.datetime.fromtimestamp(self.issued_at, datetime.UTC).date().isoformat()


class CertificateRenderer(Protocol):
    async def render(self, request: RenderRequest, filename: str) -> None: ...


class LogOnlyRenderer:
    """Default renderer: records the hand-off, produces no file."""

    def __init__(self) -> None:
        self.rendered: list[tuple[RenderRequest, str]] = []

    async def render(self, request: RenderRequest, filename: str) -> None:
        self.rendered.append((request, filename))
        logger.info(
            "Certificate %s ready for rendering as %s",
            request.verification_id,
            filename,
        )


_UNSAFE = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def certificate_filename(request: RenderRequest, prefix: str) -> str:
    """``<prefix>_certificate_<course>_<student>_<YYYY-MM-DD>.pdf``."""
    course = _UNSAFE.sub("_", request.course_name).lower()
    student = _UNSAFE.sub("_", request.student_name).lower()
    return f"{prefix.lower()}_certificate_{course}_{student}_{request.issued_date}.pdf"


renderer: CertificateRenderer = LogOnlyRenderer()


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(CERTIFICATE_RENDERING)
async def handle_certificate_rendering(payload: dict) -> None:
    request = RenderRequest.from_payload(payload)
    filename = certificate_filename(request, SETTINGS.certificate_prefix)
    await renderer.render(request, filename)


# ---------------------------------------------------------------------------
# Main worker loop
# ---------------------------------------------------------------------------


async def process_one(queue_name: str, timeout: int = 1) -> bool:
    """Dequeue and handle at most one task.  True if a task was taken."""
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False

    QUEUE_DEPTH.labels(queue_name=queue_name).set(
        await task_queue.queue_length(queue_name)
    )
    handler = HANDLERS[queue_name]
    try:
        await handler(task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        # No dead-letter queue yet; the task is dropped after logging.
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return True


async def run_worker() -> None:
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)
    while True:
        taken = [await process_one(queue_name) for queue_name in queues]
        if not any(taken):
            # The in-memory queue never blocks; don't spin.
            await asyncio.sleep(0.1)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
