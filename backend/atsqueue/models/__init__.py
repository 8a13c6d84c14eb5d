from __future__ import annotations
from atsqueue.models.batch_execution import BatchExecution, ExecutionError
from atsqueue.models.fetch_task import FetchTask
from atsqueue.models.job import Job
from atsqueue.models.metrics import EnrichmentMetrics, FetchMetrics
from atsqueue.models.queue_message import QueueMessage
from atsqueue.models.source import Source

__all__ = [
    "BatchExecution",
    "ExecutionError",
    "FetchTask",
    "Job",
    "EnrichmentMetrics",
    "FetchMetrics",
    "QueueMessage",
    "Source",
]
