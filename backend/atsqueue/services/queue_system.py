"""Wires the store, both queues, the workers and their dispatchers together."""
from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import Any, Optional

from sqlalchemy.orm import sessionmaker

from atsqueue.core.config import Settings, settings as default_settings
from atsqueue.core.errors import TaskExistsError
from atsqueue.crawlers.base import ProviderAdapter
from atsqueue.crawlers.registry import get_adapter
from atsqueue.db.store import Store
from atsqueue.dispatch.config import enrichment_queue_config, fetch_queue_config
from atsqueue.dispatch.dispatcher import Dispatcher
from atsqueue.dispatch.results import Outcome, Retryable, TaskResult
from atsqueue.dispatch.task_queue import TaskQueue
from atsqueue.models.batch_execution import BatchExecution
from atsqueue.models.fetch_task import FetchTask
from atsqueue.models.status import ExecutionStatus, TaskStatus
from atsqueue.services.execution_tracker import ExecutionTracker
from atsqueue.services.metrics_service import MetricsService
from atsqueue.services.skill_extractor import LLMSkillExtractor, SkillExtractor
from atsqueue.services.task_creator import TaskCreator
from atsqueue.utils.time import utcnow
from atsqueue.workers.enrichment_worker import EnrichmentWorker
from atsqueue.workers.fetch_worker import FetchWorker

logger = logging.getLogger(__name__)


def result_dict(result: TaskResult) -> dict[str, Any]:
    if isinstance(result, Outcome):
        return {"success": True, **(result.detail or {})}
    kind = "retryable" if isinstance(result, Retryable) else "terminal"
    return {"success": False, "result": kind, "error": result.error}


class QueueSystem:
    def __init__(
        self,
        session_factory: sessionmaker,
        cfg: Settings = default_settings,
        extractor: Optional[SkillExtractor] = None,
        adapter_lookup: Callable[[str], ProviderAdapter] = get_adapter,
    ):
        self.cfg = cfg
        self.store = Store(session_factory)
        self.fetch_queue = TaskQueue(self.store, fetch_queue_config(cfg))
        self.enrichment_queue = TaskQueue(self.store, enrichment_queue_config(cfg))
        self.tracker = ExecutionTracker(self.store, cfg.execution_errors_limit)
        self.extractor = extractor
        self.adapter_lookup = adapter_lookup
        self.task_creator = TaskCreator(self.store, self.fetch_queue, chunk_size=cfg.write_batch_size)
        self.metrics = MetricsService(self.store, self.fetch_queue, self.enrichment_queue)

    def fetch_worker(self) -> FetchWorker:
        return FetchWorker(
            self.store,
            self.enrichment_queue,
            self.tracker,
            batch_size=self.cfg.write_batch_size,
            adapter_lookup=self.adapter_lookup,
        )

    def enrichment_worker(self) -> EnrichmentWorker:
        extractor = self.extractor or LLMSkillExtractor(self.cfg)
        return EnrichmentWorker(self.store, extractor, self.tracker)

    def fetch_dispatcher(self) -> Dispatcher:
        return Dispatcher(self.fetch_queue, self.fetch_worker())

    def enrichment_dispatcher(self) -> Dispatcher:
        return Dispatcher(self.enrichment_queue, self.enrichment_worker())

    def process_task_manual(
        self,
        provider: str,
        company: str,
        params: Optional[dict[str, Any]] = None,
        task_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Create a one-task execution and run it inline, bypassing the fetch queue.

        Raises TaskExistsError for a caller supplied `task_id` that is already
        stored; an existing task is never rewritten.
        """
        if task_id and self.store.get(FetchTask, task_id) is not None:
            raise TaskExistsError(task_id)
        execution_id = f"manual_{utcnow().strftime('%Y%m%d%H%M%S')}_{uuid.uuid4().hex[:6]}"
        task_id = task_id or uuid.uuid4().hex
        now = utcnow()
        self.store.upsert(
            BatchExecution,
            execution_id,
            {
                "batch_id": "manual",
                "status": ExecutionStatus.RUNNING,
                "trigger": "manual",
                "total_tasks": 1,
                "started_at": now,
            },
        )
        self.store.upsert(
            FetchTask,
            task_id,
            {
                "provider": provider,
                "company": company,
                "params": dict(params or {}),
                "status": TaskStatus.PENDING,
                "execution_id": execution_id,
                "batch_id": "manual",
                "retry_count": 0,
                # a manual run gets one attempt
                "max_retries": 0,
                "created_at": now,
            },
        )
        logger.info(
            "manual task started",
            extra={"task_id": task_id, "execution_id": execution_id, "provider": provider, "company": company},
        )
        result = self.fetch_worker().handle({"task_id": task_id, "execution_id": execution_id}, attempt=1)
        return {"task_id": task_id, "execution_id": execution_id, **result_dict(result)}
