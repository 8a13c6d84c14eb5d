from __future__ import annotations
from prometheus_client import Counter, Gauge, Histogram

DISPATCHED_TOTAL = Counter(
    "atsqueue_dispatched_total",
    "Messages handed to a handler",
    ["queue"],
)

RESULTS_TOTAL = Counter(
    "atsqueue_handler_results_total",
    "Handler results by kind",
    ["queue", "result"],
)

RETRIES_TOTAL = Counter(
    "atsqueue_retries_total",
    "Messages rescheduled with backoff",
    ["queue"],
)

DEAD_LETTERS_TOTAL = Counter(
    "atsqueue_dead_letters_total",
    "Messages that will not be delivered again",
    ["queue"],
)

TIMEOUTS_TOTAL = Counter(
    "atsqueue_handler_timeouts_total",
    "Handler invocations that exceeded the queue timeout",
    ["queue"],
)

HANDLER_SECONDS = Histogram(
    "atsqueue_handler_seconds",
    "Wall-clock time of one handler invocation",
    ["queue"],
    buckets=[0.1, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300, 540],
)

INFLIGHT = Gauge(
    "atsqueue_inflight",
    "Messages currently being handled by this process",
    ["queue"],
)
