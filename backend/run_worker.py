from __future__ import annotations
import argparse
import logging
import signal
import threading

from atsqueue.core.config import settings
from atsqueue.core.logging import log_event, setup_logging
from atsqueue.db.database import SessionLocal
from atsqueue.db.init_db import init_db
from atsqueue.services.queue_system import QueueSystem

logger = logging.getLogger("atsqueue.worker")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the fetch and enrichment dispatchers.")
    parser.add_argument("--queue", choices=["all", "fetch", "enrichment"], default="all")
    parser.add_argument("--drain", action="store_true", help="process everything due, then exit")
    args = parser.parse_args()

    setup_logging(settings.log_level)
    init_db()
    system = QueueSystem(SessionLocal)

    dispatchers = []
    if args.queue in ("all", "fetch"):
        dispatchers.append(system.fetch_dispatcher())
    if args.queue in ("all", "enrichment"):
        dispatchers.append(system.enrichment_dispatcher())

    if args.drain:
        for dispatcher in dispatchers:
            processed = dispatcher.drain()
            log_event(logger, "queue drained", queue=dispatcher.queue.name, processed=processed)
        return

    def shutdown(signum, frame):
        log_event(logger, "shutdown requested", signal=signum)
        for dispatcher in dispatchers:
            dispatcher.stop()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    threads = [
        threading.Thread(
            target=dispatcher.run_forever,
            kwargs={"poll_interval": settings.queue_poll_interval_seconds},
            name=f"{dispatcher.queue.name}-loop",
        )
        for dispatcher in dispatchers
    ]
    for thread in threads:
        thread.start()
    # join with a timeout so the main thread keeps receiving signals
    while any(thread.is_alive() for thread in threads):
        for thread in threads:
            thread.join(timeout=1.0)


if __name__ == "__main__":
    main()
