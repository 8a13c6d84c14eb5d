from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from atsqueue.core.config import settings
from atsqueue.db.store import Store, WriteOp
from atsqueue.dispatch.task_queue import TaskQueue
from atsqueue.models.batch_execution import BatchExecution
from atsqueue.models.fetch_task import FetchTask
from atsqueue.models.status import ExecutionStatus, TaskStatus
from atsqueue.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceEntry:
    provider: str
    company: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class CreateTasksResult:
    execution_id: Optional[str]
    batch_id: Optional[str]
    tasks_created: int
    skipped: bool = False
    reason: str = ""


def new_ids() -> tuple[str, str]:
    now = utcnow()
    stamp = now.strftime("%Y%m%d%H%M%S")
    return f"exec_{stamp}_{uuid.uuid4().hex[:8]}", f"batch_{stamp}"


class TaskCreator:
    def __init__(
        self,
        store: Store,
        fetch_queue: TaskQueue,
        chunk_size: int = settings.write_batch_size,
        max_retries: Optional[int] = None,
    ):
        self.store = store
        self.fetch_queue = fetch_queue
        self.chunk_size = min(chunk_size, store.max_batch_items)
        # the worker's retry budget matches the queue's delivery budget
        self.max_retries = max_retries if max_retries is not None else max(0, fetch_queue.config.max_attempts - 1)

    def running_execution(self) -> Optional[BatchExecution]:
        rows = self.store.query(
            BatchExecution,
            BatchExecution.status == ExecutionStatus.RUNNING,
            order_by=BatchExecution.started_at.desc(),
            limit=1,
        )
        return rows[0] if rows else None

    def expire_stale_executions(self, stale_after_hours: int = settings.execution_stale_after_hours) -> list[str]:
        """Mark executions still running after `stale_after_hours` as failed."""
        cutoff = utcnow() - timedelta(hours=stale_after_hours)
        stale = self.store.query(
            BatchExecution,
            BatchExecution.status == ExecutionStatus.RUNNING,
            BatchExecution.started_at < cutoff,
        )
        expired: list[str] = []
        for execution in stale:
            won = self.store.update_where(
                BatchExecution,
                execution.execution_id,
                {"status": ExecutionStatus.FAILED, "finished_at": utcnow()},
                BatchExecution.status == ExecutionStatus.RUNNING,
            )
            if won:
                expired.append(execution.execution_id)
                logger.warning(
                    "stale execution marked failed",
                    extra={
                        "execution_id": execution.execution_id,
                        "started_at": execution.started_at,
                        "completed_tasks": execution.completed_tasks,
                        "failed_tasks": execution.failed_tasks,
                        "total_tasks": execution.total_tasks,
                    },
                )
        return expired

    def create_all_tasks(self, sources: Sequence[SourceEntry], trigger: str = "api") -> CreateTasksResult:
        execution_id, batch_id = new_ids()
        now = utcnow()

        self.store.upsert(
            BatchExecution,
            execution_id,
            {
                "batch_id": batch_id,
                "status": ExecutionStatus.RUNNING,
                "trigger": trigger,
                "total_tasks": len(sources),
                "started_at": now,
            },
        )
        logger.info(
            "execution created",
            extra={"execution_id": execution_id, "batch_id": batch_id, "total_tasks": len(sources), "trigger": trigger},
        )

        try:
            task_ids = self._write_tasks(sources, execution_id, batch_id)
            self.fetch_queue.enqueue_many(
                [{"task_id": task_id, "execution_id": execution_id} for task_id in task_ids]
            )
        except Exception:
            self.store.upsert(BatchExecution, execution_id, {"status": ExecutionStatus.FAILED, "finished_at": utcnow()})
            logger.exception("task creation failed", extra={"execution_id": execution_id})
            raise

        if not sources:
            self.store.upsert(
                BatchExecution, execution_id, {"status": ExecutionStatus.COMPLETED, "finished_at": utcnow()}
            )
        return CreateTasksResult(execution_id=execution_id, batch_id=batch_id, tasks_created=len(task_ids))

    def _write_tasks(self, sources: Sequence[SourceEntry], execution_id: str, batch_id: str) -> list[str]:
        now = utcnow()
        task_ids: list[str] = []
        ops: list[WriteOp] = []
        for source in sources:
            task_id = uuid.uuid4().hex
            task_ids.append(task_id)
            ops.append(
                WriteOp(
                    FetchTask,
                    task_id,
                    {
                        "provider": source.provider,
                        "company": source.company,
                        "params": dict(source.params or {}),
                        "status": TaskStatus.PENDING,
                        "execution_id": execution_id,
                        "batch_id": batch_id,
                        "retry_count": 0,
                        "max_retries": self.max_retries,
                        "created_at": now,
                    },
                )
            )
        # unlike the job writer, a failed chunk here aborts the run
        for i in range(0, len(ops), self.chunk_size):
            self.store.write_batch(ops[i : i + self.chunk_size])
        return task_ids

    def run_scheduled(self, sources: Sequence[SourceEntry], trigger: str = "scheduled") -> CreateTasksResult:
        """Entry point for the cron trigger: skip while another run is in progress.

        This is a read-then-decide check, not a lock. Two triggers racing
        through it both create executions; job upserts are idempotent so the
        cost is duplicate fetching, not corrupt data. Executions running for
        longer than the staleness window are closed as failed first, so a run
        abandoned by a crashed process cannot block scheduling forever.
        """
        self.expire_stale_executions()
        running = self.running_execution()
        if running is not None:
            logger.info(
                "skipping task creation, execution still running",
                extra={"execution_id": running.execution_id, "started_at": running.started_at},
            )
            return CreateTasksResult(
                execution_id=running.execution_id,
                batch_id=running.batch_id,
                tasks_created=0,
                skipped=True,
                reason="execution_running",
            )
        return self.create_all_tasks(sources, trigger=trigger)
