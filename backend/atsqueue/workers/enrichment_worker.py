from __future__ import annotations

import logging
from typing import Any, Optional

from atsqueue.db.store import Store
from atsqueue.dispatch.dispatcher import QueueHandler
from atsqueue.dispatch.results import Outcome, TaskResult, Terminal
from atsqueue.models.job import Job
from atsqueue.models.status import EnrichmentStatus
from atsqueue.services.execution_tracker import ExecutionTracker
from atsqueue.services.skill_extractor import SkillExtractor
from atsqueue.utils.time import elapsed_ms, utcnow

logger = logging.getLogger(__name__)


class EnrichmentWorker(QueueHandler):
    """Adds extracted skills to one job.

    Only storage errors escape (and get retried by the dispatcher). An empty
    description or a failing extractor is a domain outcome: the job is marked
    failed and the message is not retried.
    """

    def __init__(self, store: Store, extractor: SkillExtractor, tracker: Optional[ExecutionTracker] = None):
        self.store = store
        self.extractor = extractor
        self.tracker = tracker or ExecutionTracker(store)

    def handle(self, payload: dict[str, Any], attempt: int) -> TaskResult:
        job_id = payload["job_id"]
        execution_id = payload.get("execution_id")
        started = utcnow()

        job = self.store.get(Job, job_id)
        if job is None:
            self.tracker.record_enrichment(job_id=job_id, execution_id=execution_id, status="skipped", error="job not found")
            return Terminal(f"job {job_id} not found")
        if job.enrichment_status is EnrichmentStatus.COMPLETED:
            # kept apart from the completed row so the redelivery cannot overwrite it
            self.tracker.record_enrichment(
                job_id=job_id,
                execution_id=execution_id,
                status="skipped",
                error="already completed",
                key_suffix="skipped",
            )
            return Outcome({"skipped": True})

        self.store.upsert(Job, job_id, {"enrichment_status": EnrichmentStatus.PENDING})

        description = (job.description or "").strip()
        if not description:
            return self._failed(job_id, execution_id, started, "empty description")

        try:
            skills = self.extractor.extract(f"{job.title}\n{description}")
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "skill extraction failed",
                extra={"job_id": job_id, "attempt": attempt, "error": f"{type(exc).__name__}: {exc}"},
            )
            return self._failed(job_id, execution_id, started, f"{type(exc).__name__}: {exc}")

        self.store.upsert(
            Job,
            job_id,
            {
                "skills": skills,
                "enrichment_status": EnrichmentStatus.COMPLETED,
                "enrichment_error": None,
                "enriched_at": utcnow(),
            },
        )
        duration = elapsed_ms(started)
        self.tracker.record_enrichment(
            job_id=job_id,
            execution_id=execution_id,
            status="completed",
            skills_count=len(skills),
            duration_ms=duration,
        )
        logger.info("job enriched", extra={"job_id": job_id, "skills": len(skills), "duration_ms": duration})
        return Outcome({"skills": len(skills)})

    def on_exhausted(self, payload: dict[str, Any], error: str) -> None:
        job = self.store.get(Job, payload["job_id"])
        if job is None or job.enrichment_status in (EnrichmentStatus.COMPLETED, EnrichmentStatus.FAILED):
            return
        logger.warning("enrichment attempts exhausted", extra={"job_id": job.id, "error": error})
        self._failed(job.id, payload.get("execution_id"), utcnow(), error)

    def _failed(self, job_id: str, execution_id: Optional[str], started, error: str) -> TaskResult:
        self.store.upsert(
            Job,
            job_id,
            {"enrichment_status": EnrichmentStatus.FAILED, "enrichment_error": error[:2000], "enriched_at": utcnow()},
        )
        self.tracker.record_enrichment(
            job_id=job_id,
            execution_id=execution_id,
            status="failed",
            duration_ms=elapsed_ms(started),
            error=error,
        )
        return Terminal(error)
