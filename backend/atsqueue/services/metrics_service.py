from __future__ import annotations

import logging
from typing import Any, Optional

from atsqueue.db.store import Store
from atsqueue.dispatch.task_queue import TaskQueue
from atsqueue.models.batch_execution import BatchExecution, ExecutionError
from atsqueue.models.fetch_task import FetchTask
from atsqueue.models.job import Job
from atsqueue.models.metrics import EnrichmentMetrics, FetchMetrics
from atsqueue.models.status import EnrichmentStatus, ExecutionStatus, TaskStatus, reset_for_retry

logger = logging.getLogger(__name__)


def _execution_dict(execution: BatchExecution) -> dict[str, Any]:
    return {
        "execution_id": execution.execution_id,
        "batch_id": execution.batch_id,
        "status": execution.status.value,
        "trigger": execution.trigger,
        "total_tasks": execution.total_tasks,
        "completed_tasks": execution.completed_tasks,
        "failed_tasks": execution.failed_tasks,
        "total_jobs_fetched": execution.total_jobs_fetched,
        "total_jobs_written": execution.total_jobs_written,
        "started_at": execution.started_at,
        "finished_at": execution.finished_at,
    }


def _fetch_metrics_dict(row: FetchMetrics) -> dict[str, Any]:
    return {
        "task_id": row.task_id,
        "execution_id": row.execution_id,
        "provider": row.provider,
        "company": row.company,
        "status": row.status,
        "attempt": row.attempt,
        "jobs_fetched": row.jobs_fetched,
        "jobs_written": row.jobs_written,
        "jobs_failed": row.jobs_failed,
        "enrichment_enqueued": row.enrichment_enqueued,
        "duration_ms": row.duration_ms,
        "error": row.error,
        "recorded_at": row.recorded_at,
    }


class MetricsService:
    def __init__(self, store: Store, fetch_queue: TaskQueue, enrichment_queue: Optional[TaskQueue] = None):
        self.store = store
        self.fetch_queue = fetch_queue
        self.enrichment_queue = enrichment_queue

    def get_execution_metrics(self, execution_id: str) -> Optional[dict[str, Any]]:
        execution = self.store.get(BatchExecution, execution_id)
        if execution is None:
            return None
        data = _execution_dict(execution)
        data["tasks"] = {
            status.value: n
            for status, n in self.store.count_by(FetchTask.status, FetchTask.execution_id == execution_id).items()
        }
        data["errors"] = [
            {"provider": e.provider, "company": e.company, "error": e.error, "created_at": e.created_at}
            for e in self.store.query(
                ExecutionError, ExecutionError.execution_id == execution_id, order_by=ExecutionError.id
            )
        ]
        data["fetch_metrics"] = [
            _fetch_metrics_dict(row)
            for row in self.store.query(
                FetchMetrics, FetchMetrics.execution_id == execution_id, order_by=FetchMetrics.recorded_at
            )
        ]
        data["enrichment"] = self.store.count_by(
            EnrichmentMetrics.status, EnrichmentMetrics.execution_id == execution_id
        )
        return data

    def get_recent_metrics(self, limit: int = 50) -> dict[str, Any]:
        executions = self.store.query(BatchExecution, order_by=BatchExecution.started_at.desc(), limit=limit)
        fetches = self.store.query(FetchMetrics, order_by=FetchMetrics.recorded_at.desc(), limit=limit)
        return {
            "executions": [_execution_dict(e) for e in executions],
            "fetch_metrics": [_fetch_metrics_dict(row) for row in fetches],
        }

    def retry_failed_tasks(
        self, execution_id: Optional[str] = None, provider: Optional[str] = None, limit: int = 100
    ) -> dict[str, Any]:
        """Operator reset: failed -> pending, retry budget restored, re-enqueued once.

        Jobs whose enrichment failed are reset and re-enqueued the same way,
        matched on the execution that last wrote them.
        """
        criteria = [FetchTask.status == TaskStatus.FAILED]
        if execution_id:
            criteria.append(FetchTask.execution_id == execution_id)
        if provider:
            criteria.append(FetchTask.provider == provider)
        tasks = self.store.query(FetchTask, *criteria, order_by=FetchTask.created_at, limit=limit)

        reset: list[FetchTask] = []
        for task in tasks:
            won = self.store.update_where(
                FetchTask,
                task.task_id,
                {
                    "status": reset_for_retry(task.status),
                    "retry_count": 0,
                    "error": None,
                    "started_at": None,
                    "completed_at": None,
                },
                FetchTask.status == TaskStatus.FAILED,
            )
            if won:
                reset.append(task)

        per_execution: dict[str, int] = {}
        for task in reset:
            per_execution[task.execution_id] = per_execution.get(task.execution_id, 0) + 1
        for exec_id, n in per_execution.items():
            self.store.increment(BatchExecution, exec_id, failed_tasks=-n)
            self.store.upsert(BatchExecution, exec_id, {"status": ExecutionStatus.RUNNING, "finished_at": None})

        if reset:
            self.fetch_queue.enqueue_many(
                [{"task_id": task.task_id, "execution_id": task.execution_id} for task in reset]
            )
        job_ids = self._retry_failed_enrichments(execution_id, provider, limit)
        logger.info(
            "failed tasks reset",
            extra={
                "execution_id": execution_id,
                "provider": provider,
                "retried": len(reset),
                "jobs_retried": len(job_ids),
            },
        )
        return {
            "retried": len(reset),
            "task_ids": [task.task_id for task in reset],
            "jobs_retried": len(job_ids),
            "job_ids": job_ids,
        }

    def _retry_failed_enrichments(self, execution_id: Optional[str], provider: Optional[str], limit: int) -> list[str]:
        """Failed enrichments go back to pending and onto the enrichment queue once."""
        if self.enrichment_queue is None:
            return []
        criteria = [Job.enrichment_status == EnrichmentStatus.FAILED]
        if execution_id:
            criteria.append(Job.last_execution_id == execution_id)
        if provider:
            criteria.append(Job.provider == provider)
        jobs = self.store.query(Job, *criteria, order_by=Job.enriched_at, limit=limit)

        reset: list[Job] = []
        for job in jobs:
            won = self.store.update_where(
                Job,
                job.id,
                {"enrichment_status": EnrichmentStatus.PENDING, "enrichment_error": None},
                Job.enrichment_status == EnrichmentStatus.FAILED,
            )
            if won:
                reset.append(job)
        if reset:
            self.enrichment_queue.enqueue_many(
                [{"job_id": job.id, "execution_id": job.last_execution_id} for job in reset]
            )
        return [job.id for job in reset]

    def queue_status(self) -> dict[str, Any]:
        latest = self.store.query(BatchExecution, order_by=BatchExecution.started_at.desc(), limit=1)
        execution = _execution_dict(latest[0]) if latest else None
        tasks: dict[str, int] = {}
        if latest:
            counts = self.store.count_by(FetchTask.status, FetchTask.execution_id == latest[0].execution_id)
            tasks = {status.value: counts.get(status, 0) for status in TaskStatus}
        queues = {self.fetch_queue.name: self.fetch_queue.depth()}
        if self.enrichment_queue is not None:
            queues[self.enrichment_queue.name] = self.enrichment_queue.depth()
        return {"latest_execution": execution, "tasks": tasks, "queues": queues}
