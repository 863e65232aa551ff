"""Prometheus scrape endpoint (text exposition format, not JSON).

Besides the HTTP request metrics this exposes the lifecycle counters
from academy.core.metrics, e.g.::

  payment_events_total{event_type="course_purchase",outcome="duplicate"} 3.0
  exam_submissions_total{result="passed"} 41.0

Restrict access at the ingress in production; counts reveal traffic
patterns.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
