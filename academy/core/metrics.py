"""Application metrics (Prometheus client library).

Single inventory of everything the service measures.  Modules import the
metric they own and increment it at the point of action; GET /metrics
exposes the current values for Prometheus to scrape.

Counters only go up, so dashboards use rate():

  rate(payment_events_total{outcome="duplicate"}[5m])
    → how often the gateway is re-delivering webhooks

  sum by (result) (rate(exam_submissions_total[1h]))
    → pass/fail mix of graded attempts

  certificates_issued_total{result="existing"}
    → issuance calls that found a certificate already on file
      (retries, concurrent submits, passing retries after a pass)
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Lifecycle metrics
# ---------------------------------------------------------------------------

PAYMENT_EVENTS = Counter(
    "payment_events_total",
    "Payment gateway events by type and processing outcome",
    ["event_type", "outcome"],  # outcome: applied|duplicate|rejected
)

LESSONS_COMPLETED = Counter(
    "lessons_completed_total",
    "Lesson completion facts recorded (repeats are not counted)",
)

EXAM_ATTEMPTS_STARTED = Counter(
    "exam_attempts_started_total",
    "Exam attempts created",
    ["funded_by"],  # "quota" or "voucher"
)

EXAM_SUBMISSIONS = Counter(
    "exam_submissions_total",
    "Exam submissions by result",
    ["result"],  # passed|failed|already_submitted
)

CERTIFICATES_ISSUED = Counter(
    "certificates_issued_total",
    "Certificate issuance calls by result",
    ["result"],  # created|existing
)

LEDGER_RETRIES = Counter(
    "ledger_transaction_retries_total",
    "Ledger transactions retried after a transient storage failure",
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],  # "certificate_rendering"
)
