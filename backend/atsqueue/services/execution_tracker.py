"""Execution aggregate and per-task metrics writes.

The BatchExecution row is the only record every fetch worker touches, so it
is only ever mutated through commutative increments, each committed in the
same transaction as the terminal status write of the task it counts, and
one conditional status write when the last task lands.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from atsqueue.core.config import settings
from atsqueue.db.store import Store
from atsqueue.models.batch_execution import BatchExecution, ExecutionError
from atsqueue.models.fetch_task import FetchTask
from atsqueue.models.metrics import EnrichmentMetrics, FetchMetrics
from atsqueue.models.status import ExecutionStatus, TaskStatus, final_execution_status
from atsqueue.utils.time import utcnow

logger = logging.getLogger(__name__)


def fetch_metrics_id(execution_id: str, provider: str, company: str) -> str:
    return f"{execution_id}_{provider}_{company}"


def enrichment_metrics_id(execution_id: Optional[str], job_id: str, suffix: str = "") -> str:
    key = f"{execution_id or 'adhoc'}_{job_id}"
    return f"{key}_{suffix}" if suffix else key


class ExecutionTracker:
    def __init__(self, store: Store, errors_limit: int = settings.execution_errors_limit):
        self.store = store
        self.errors_limit = errors_limit

    def complete_task(
        self, task_id: str, values: dict[str, Any], execution_id: str, jobs_fetched: int, jobs_written: int
    ) -> bool:
        """Move a processing task to completed and count it, in one transaction."""
        won = self.store.update_where_and_increment(
            FetchTask,
            task_id,
            values,
            [FetchTask.status == TaskStatus.PROCESSING],
            BatchExecution,
            execution_id,
            completed_tasks=1,
            total_jobs_fetched=jobs_fetched,
            total_jobs_written=jobs_written,
        )
        if won:
            self.finalize_if_done(execution_id)
        return won

    def fail_task(
        self, task_id: str, values: dict[str, Any], execution_id: str, provider: str, company: str, error: str
    ) -> bool:
        won = self.store.update_where_and_increment(
            FetchTask,
            task_id,
            values,
            [FetchTask.status == TaskStatus.PROCESSING],
            BatchExecution,
            execution_id,
            failed_tasks=1,
        )
        if won:
            self.append_error(execution_id, provider, company, error)
            self.finalize_if_done(execution_id)
        return won

    def append_error(self, execution_id: str, provider: str, company: str, error: str) -> None:
        # the bound is best effort: concurrent failures may overshoot by a few rows
        if self.store.count(ExecutionError, ExecutionError.execution_id == execution_id) >= self.errors_limit:
            return
        self.store.insert_all(
            [ExecutionError(execution_id=execution_id, provider=provider, company=company, error=error[:2000])]
        )

    def finalize_if_done(self, execution_id: str) -> Optional[ExecutionStatus]:
        execution = self.store.get(BatchExecution, execution_id)
        if execution is None or execution.status is not ExecutionStatus.RUNNING:
            return None
        status = final_execution_status(execution.total_tasks, execution.completed_tasks, execution.failed_tasks)
        if status is ExecutionStatus.RUNNING:
            return None
        won = self.store.update_where(
            BatchExecution,
            execution_id,
            {"status": status, "finished_at": utcnow()},
            BatchExecution.status == ExecutionStatus.RUNNING,
        )
        if won:
            logger.info(
                "execution finished",
                extra={
                    "execution_id": execution_id,
                    "status": status.value,
                    "completed_tasks": execution.completed_tasks,
                    "failed_tasks": execution.failed_tasks,
                    "total_jobs_written": execution.total_jobs_written,
                },
            )
        return status

    def record_fetch(
        self,
        *,
        execution_id: str,
        task_id: str,
        provider: str,
        company: str,
        status: str,
        attempt: int,
        jobs_fetched: int = 0,
        jobs_written: int = 0,
        jobs_failed: int = 0,
        enrichment_enqueued: int = 0,
        duration_ms: int = 0,
        error: Optional[str] = None,
    ) -> None:
        self.store.upsert(
            FetchMetrics,
            fetch_metrics_id(execution_id, provider, company),
            {
                "execution_id": execution_id,
                "task_id": task_id,
                "provider": provider,
                "company": company,
                "status": status,
                "attempt": attempt,
                "jobs_fetched": jobs_fetched,
                "jobs_written": jobs_written,
                "jobs_failed": jobs_failed,
                "enrichment_enqueued": enrichment_enqueued,
                "duration_ms": duration_ms,
                "error": error[:2000] if error else None,
                "recorded_at": utcnow(),
            },
        )

    def record_enrichment(
        self,
        *,
        job_id: str,
        execution_id: Optional[str],
        status: str,
        skills_count: int = 0,
        duration_ms: int = 0,
        error: Optional[str] = None,
        key_suffix: str = "",
    ) -> None:
        self.store.upsert(
            EnrichmentMetrics,
            enrichment_metrics_id(execution_id, job_id, key_suffix),
            {
                "job_id": job_id,
                "execution_id": execution_id,
                "status": status,
                "skills_count": skills_count,
                "duration_ms": duration_ms,
                "error": error[:2000] if error else None,
                "recorded_at": utcnow(),
            },
        )
