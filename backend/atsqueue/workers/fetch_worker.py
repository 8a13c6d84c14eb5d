"""Fetch worker: one FetchTask (provider + company) per invocation.

Task status moves pending -> processing -> completed, or through
retrying back to processing while retries remain, or to failed. Every status
write is conditional on the status the worker last saw, so a duplicate
delivery or an abandoned (timed out) invocation can never overwrite a newer
state.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any, Optional

from atsqueue.core.config import settings
from atsqueue.core.errors import UnknownProviderError
from atsqueue.crawlers.base import NormalizedJob, ProviderAdapter
from atsqueue.crawlers.registry import get_adapter
from atsqueue.db.store import Store, WriteOp
from atsqueue.dispatch.dispatcher import QueueHandler
from atsqueue.dispatch.results import Outcome, Retryable, TaskResult, Terminal
from atsqueue.dispatch.task_queue import TaskQueue
from atsqueue.models.fetch_task import FetchTask
from atsqueue.models.job import Job
from atsqueue.models.status import EnrichmentStatus, TaskStatus, transition
from atsqueue.services.batch_writer import BatchWriteResult, write_batch
from atsqueue.services.execution_tracker import ExecutionTracker
from atsqueue.utils.hash import job_doc_id
from atsqueue.utils.time import elapsed_ms, utcnow

logger = logging.getLogger(__name__)


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    return value[:limit] if value else value


def job_values(job: NormalizedJob, execution_id: str, fetched_at: datetime) -> dict[str, Any]:
    # string fields are clipped to the column widths on Job
    values: dict[str, Any] = {
        "provider": _clip(job.provider, 64),
        "external_id": _clip(str(job.external_id), 256) if job.external_id is not None else None,
        "title": _clip(job.title or "", 512),
        "company": _clip(job.company or "", 256),
        "company_logo": _clip(job.company_logo, 1024),
        "location": _clip(job.location or "", 256),
        "description": job.description or "",
        "apply_url": _clip(job.apply_url or "", 1024),
        "posted_at": job.posted_at,
        "fetched_at": fetched_at,
        "last_execution_id": execution_id,
    }
    # an empty skills list from the adapter must not wipe enriched skills
    if job.skills:
        values["skills"] = list(job.skills)
    return values


def needs_enrichment(job: NormalizedJob) -> bool:
    return not job.skills and bool((job.description or "").strip())


class FetchWorker(QueueHandler):
    def __init__(
        self,
        store: Store,
        enrichment_queue: Optional[TaskQueue],
        tracker: Optional[ExecutionTracker] = None,
        batch_size: int = settings.write_batch_size,
        adapter_lookup: Callable[[str], ProviderAdapter] = get_adapter,
    ):
        self.store = store
        self.enrichment_queue = enrichment_queue
        self.tracker = tracker or ExecutionTracker(store)
        self.batch_size = min(batch_size, store.max_batch_items)
        self.adapter_lookup = adapter_lookup

    # -- queue entry points --------------------------------------------------

    def handle(self, payload: dict[str, Any], attempt: int) -> TaskResult:
        task_id = payload["task_id"]
        task = self.store.get(FetchTask, task_id)
        if task is None:
            return Terminal(f"task {task_id} not found")
        if task.status.is_terminal:
            logger.info("redelivered terminal task ignored", extra={"task_id": task_id, "status": task.status.value})
            # the earlier delivery may have died between counting the task and finalizing the run
            self.tracker.finalize_if_done(task.execution_id)
            return Outcome({"skipped": True, "status": task.status.value})

        task = self._start(task)
        if task is None:
            return Outcome({"skipped": True})
        started = task.started_at or utcnow()
        log_extra = {"task_id": task.task_id, "provider": task.provider, "company": task.company, "attempt": attempt}
        logger.info("fetch task started", extra=log_extra)

        try:
            adapter = self.adapter_lookup(task.provider)
        except UnknownProviderError as exc:
            return self._fail(task, str(exc), attempt, started, terminal=True)

        jobs_fetched = 0
        written = BatchWriteResult()
        try:
            jobs = adapter.fetch(task.company, **(task.params or {}))
            jobs_fetched = len(jobs)
            written, written_ids = self._write_jobs(task, jobs)
            if jobs and written.written == 0:
                raise RuntimeError(f"all {written.failed} jobs failed to write")
            enqueued = self._enqueue_enrichment(task, jobs, written_ids)
        except Exception as exc:  # noqa: BLE001
            logger.warning("fetch task failed", extra={**log_extra, "error": str(exc)})
            return self._fail(
                task,
                f"{type(exc).__name__}: {exc}",
                attempt,
                started,
                jobs_fetched=jobs_fetched,
                jobs_written=written.written,
            )

        return self._complete(task, attempt, started, jobs_fetched, written, enqueued)

    def on_timeout(self, payload: dict[str, Any], attempt: int) -> TaskResult:
        task = self.store.get(FetchTask, payload["task_id"])
        if task is None:
            return Terminal(f"task {payload['task_id']} not found")
        if task.status.is_terminal:
            return Outcome({"skipped": True, "status": task.status.value})
        if task.status is not TaskStatus.PROCESSING:
            return Retryable("handler timed out before the task started")
        error = f"timed out after {settings.fetch_timeout_seconds}s"
        return self._fail(task, error, attempt, task.started_at or utcnow())

    def on_exhausted(self, payload: dict[str, Any], error: str) -> None:
        task = self.store.get(FetchTask, payload["task_id"])
        if task is None or task.status.is_terminal:
            return
        task = self._start(task)
        if task is not None:
            self._fail(task, error, task.retry_count + 1, task.started_at or utcnow(), terminal=True)

    # -- steps ---------------------------------------------------------------

    def _start(self, task: FetchTask) -> Optional[FetchTask]:
        if task.status is TaskStatus.PROCESSING:
            # lease expired on an earlier delivery; carry on from here
            return task
        target = transition(task.status, TaskStatus.PROCESSING)
        now = utcnow()
        won = self.store.update_where(
            FetchTask,
            task.task_id,
            {"status": target, "started_at": now},
            FetchTask.status == task.status,
        )
        if not won:
            return None
        task.status = target
        task.started_at = now
        return task

    def _write_jobs(self, task: FetchTask, jobs: Sequence[NormalizedJob]) -> tuple[BatchWriteResult, set[str]]:
        fetched_at = utcnow()
        ops = [
            WriteOp(
                Job,
                job_doc_id(job.provider or task.provider, job.external_id, job.title, job.company, job.apply_url),
                job_values(job, task.execution_id, fetched_at),
            )
            for job in jobs
        ]
        written_ids: set[str] = set()

        def commit(chunk: Sequence[WriteOp]) -> None:
            self.store.write_batch(chunk)
            written_ids.update(op.key for op in chunk)

        result = write_batch(ops, commit, batch_size=self.batch_size)
        return result, written_ids

    def _enqueue_enrichment(
        self, task: FetchTask, jobs: Sequence[NormalizedJob], written_ids: set[str]
    ) -> int:
        if self.enrichment_queue is None:
            return 0
        candidates: list[str] = []
        for job in jobs:
            if not needs_enrichment(job):
                continue
            doc_id = job_doc_id(job.provider or task.provider, job.external_id, job.title, job.company, job.apply_url)
            if doc_id in written_ids and doc_id not in candidates:
                candidates.append(doc_id)

        done: set[str] = set()
        step = self.store.max_batch_items
        for i in range(0, len(candidates), step):
            rows = self.store.query(
                Job,
                Job.id.in_(candidates[i : i + step]),
                Job.enrichment_status == EnrichmentStatus.COMPLETED,
            )
            done.update(row.id for row in rows)

        payloads = [{"job_id": job_id, "execution_id": task.execution_id} for job_id in candidates if job_id not in done]
        if payloads:
            self.enrichment_queue.enqueue_many(payloads)
        return len(payloads)

    def _complete(
        self,
        task: FetchTask,
        attempt: int,
        started: datetime,
        jobs_fetched: int,
        written: BatchWriteResult,
        enqueued: int,
    ) -> TaskResult:
        target = transition(task.status, TaskStatus.COMPLETED)
        duration = elapsed_ms(started)
        won = self.tracker.complete_task(
            task.task_id,
            {
                "status": target,
                "completed_at": utcnow(),
                "duration_ms": duration,
                "jobs_fetched": jobs_fetched,
                "jobs_written": written.written,
                "error": None,
            },
            task.execution_id,
            jobs_fetched,
            written.written,
        )
        if not won:
            logger.info("stale completion ignored", extra={"task_id": task.task_id})
            return Outcome({"skipped": True})

        self.tracker.record_fetch(
            execution_id=task.execution_id,
            task_id=task.task_id,
            provider=task.provider,
            company=task.company,
            status="success",
            attempt=attempt,
            jobs_fetched=jobs_fetched,
            jobs_written=written.written,
            jobs_failed=written.failed,
            enrichment_enqueued=enqueued,
            duration_ms=duration,
        )
        logger.info(
            "fetch task completed",
            extra={
                "task_id": task.task_id,
                "provider": task.provider,
                "company": task.company,
                "jobs_fetched": jobs_fetched,
                "jobs_written": written.written,
                "enrichment_enqueued": enqueued,
                "duration_ms": duration,
            },
        )
        return Outcome({"jobs_fetched": jobs_fetched, "jobs_written": written.written, "enrichment_enqueued": enqueued})

    def _fail(
        self,
        task: FetchTask,
        error: str,
        attempt: int,
        started: datetime,
        terminal: bool = False,
        jobs_fetched: int = 0,
        jobs_written: int = 0,
    ) -> TaskResult:
        duration = elapsed_ms(started)
        retry = not terminal and task.retry_count < task.max_retries
        metrics = dict(
            execution_id=task.execution_id,
            task_id=task.task_id,
            provider=task.provider,
            company=task.company,
            attempt=attempt,
            jobs_fetched=jobs_fetched,
            jobs_written=jobs_written,
            duration_ms=duration,
            error=error,
        )

        if retry:
            target = transition(task.status, TaskStatus.RETRYING)
            won = self.store.update_where(
                FetchTask,
                task.task_id,
                {"status": target, "retry_count": task.retry_count + 1, "error": error[:2000]},
                FetchTask.status == TaskStatus.PROCESSING,
                FetchTask.retry_count == task.retry_count,
            )
            if not won:
                return Outcome({"skipped": True})
            self.tracker.record_fetch(status="retrying", **metrics)
            logger.info(
                "fetch task will retry",
                extra={"task_id": task.task_id, "retry_count": task.retry_count + 1, "max_retries": task.max_retries},
            )
            return Retryable(error)

        target = transition(task.status, TaskStatus.FAILED)
        won = self.tracker.fail_task(
            task.task_id,
            {"status": target, "error": error[:2000], "completed_at": utcnow(), "duration_ms": duration},
            task.execution_id,
            task.provider,
            task.company,
            error,
        )
        if not won:
            return Outcome({"skipped": True})
        self.tracker.record_fetch(status="failed", **metrics)
        logger.warning(
            "fetch task failed permanently",
            extra={"task_id": task.task_id, "provider": task.provider, "company": task.company, "error": error},
        )
        return Terminal(error)
