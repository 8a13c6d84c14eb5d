from __future__ import annotations
import argparse
import json
import logging

from atsqueue.core.config import settings
from atsqueue.core.logging import log_event, setup_logging
from atsqueue.db.database import SessionLocal
from atsqueue.db.init_db import init_db
from atsqueue.services.queue_system import QueueSystem
from atsqueue.services.source_registry import enabled_sources

logger = logging.getLogger("atsqueue.scheduler")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create one fetch task per enabled source (cron entry point).")
    parser.add_argument("--provider", action="append", default=[], help="limit to this provider; repeatable")
    args = parser.parse_args()

    setup_logging(settings.log_level)
    init_db()
    system = QueueSystem(SessionLocal)
    sources = enabled_sources(system.store, args.provider)
    result = system.task_creator.run_scheduled(sources)
    log_event(
        logger,
        "scheduled run",
        execution_id=result.execution_id,
        tasks_created=result.tasks_created,
        skipped=result.skipped,
    )
    print(json.dumps({"success": True, **result.__dict__}))
