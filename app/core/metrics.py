"""Application metrics using the Prometheus client library.

Every metric the service exposes is declared here, so this module is the
inventory.  Other modules import a metric and increment/observe it at the
point of action.  Prometheus scrapes them from GET /metrics.

Counters only go up (rates come from rate() in PromQL), gauges move both
ways, histograms bucket observations so percentiles can be computed
server-side.
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
# Exam metrics
# ---------------------------------------------------------------------------

ANSWER_WRITES = Counter(
    "exam_answer_writes_total",
    "Answer rows written by reconciliation",
    ["operation"],  # "insert" or "delete"
)

ATTEMPT_TRANSITIONS = Counter(
    "exam_attempt_transitions_total",
    "Attempt status transitions by target status",
    ["to_status"],  # "on-going" or "completed"
)

FINALIZE_CONFLICTS = Counter(
    "exam_finalize_conflicts_total",
    "Finalize calls that lost the race to a concurrent finalize",
)

ATTEMPT_SCORE = Histogram(
    "exam_attempt_score",
    "Scores written at finalization or backfill",
    # Scores can be negative (negative marking)
    buckets=[-20, -10, -5, 0, 5, 10, 20, 50, 100, 200],
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],  # "exam_results"
)
