"""Pulls messages off a TaskQueue and feeds them to a handler.

Concurrency is bounded by a thread pool sized to the queue's
`max_concurrent_dispatches`; dispatch rate by a token bucket. Each handler
invocation runs on its own daemon thread so the queue timeout can be
enforced: a handler still running when the timeout elapses is abandoned and
its message is settled through `handler.on_timeout`.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Optional

from atsqueue.dispatch.metrics import DISPATCHED_TOTAL, HANDLER_SECONDS, INFLIGHT, RESULTS_TOTAL, TIMEOUTS_TOTAL
from atsqueue.dispatch.ratelimit import TokenBucket
from atsqueue.dispatch.results import Outcome, Retryable, TaskResult, Terminal
from atsqueue.dispatch.task_queue import TaskQueue
from atsqueue.models.queue_message import QueueMessage

logger = logging.getLogger(__name__)


class QueueHandler:
    def handle(self, payload: dict[str, Any], attempt: int) -> TaskResult:
        raise NotImplementedError

    def on_timeout(self, payload: dict[str, Any], attempt: int) -> TaskResult:
        return Retryable("handler timed out")

    def on_exhausted(self, payload: dict[str, Any], error: str) -> None:
        """Called once the queue gives up redelivering a Retryable message."""


@dataclass
class _Invocation:
    done: threading.Event = field(default_factory=threading.Event)
    result: Optional[TaskResult] = None
    error: Optional[BaseException] = None


class Dispatcher:
    def __init__(self, queue: TaskQueue, handler: QueueHandler, rate_limiter: TokenBucket | None = None):
        self.queue = queue
        self.handler = handler
        self.config = queue.config
        self.rate_limiter = rate_limiter or TokenBucket(self.config.max_dispatches_per_second)
        self._stop = threading.Event()

    # -- single message ------------------------------------------------------

    def _invoke(self, message: QueueMessage) -> TaskResult:
        box = _Invocation()

        def target() -> None:
            try:
                box.result = self.handler.handle(message.payload, message.attempts)
            except Exception as exc:  # noqa: BLE001
                box.error = exc
            finally:
                box.done.set()

        worker = threading.Thread(target=target, daemon=True, name=f"{self.queue.name}-{message.id[:8]}")
        started = time.monotonic()
        worker.start()
        finished = box.done.wait(timeout=self.config.timeout_seconds)
        HANDLER_SECONDS.labels(queue=self.queue.name).observe(time.monotonic() - started)

        if not finished:
            TIMEOUTS_TOTAL.labels(queue=self.queue.name).inc()
            logger.warning(
                "handler timed out",
                extra={"queue": self.queue.name, "message_id": message.id, "timeout": self.config.timeout_seconds},
            )
            return self.handler.on_timeout(message.payload, message.attempts)
        if box.error is not None:
            logger.error(
                "handler raised",
                exc_info=box.error,
                extra={"queue": self.queue.name, "message_id": message.id, "attempt": message.attempts},
            )
            return Retryable(f"{type(box.error).__name__}: {box.error}")
        if box.result is None:
            return Outcome()
        return box.result

    def _settle(self, message: QueueMessage, result: TaskResult) -> None:
        if isinstance(result, Outcome):
            self.queue.ack(message)
            kind = "outcome"
        elif isinstance(result, Terminal):
            self.queue.dead(message, result.error)
            kind = "terminal"
        else:
            kind = "retryable"
            if message.attempts >= self.config.max_attempts:
                # record the failure before the message stops being redelivered
                self.handler.on_exhausted(message.payload, result.error)
                self.queue.dead(message, result.error)
            else:
                self.queue.retry(message, result.error)
        RESULTS_TOTAL.labels(queue=self.queue.name, result=kind).inc()

    def _expired(self, message: QueueMessage, error: str) -> None:
        logger.warning(
            "lease expired on final attempt",
            extra={"queue": self.queue.name, "message_id": message.id, "attempts": message.attempts},
        )
        self.handler.on_exhausted(message.payload, error)

    def process(self, message: QueueMessage) -> TaskResult:
        DISPATCHED_TOTAL.labels(queue=self.queue.name).inc()
        INFLIGHT.labels(queue=self.queue.name).inc()
        try:
            result = self._invoke(message)
            try:
                self._settle(message, result)
            except Exception:  # noqa: BLE001
                # the lease will expire and the message is redelivered
                logger.exception("failed to settle message", extra={"queue": self.queue.name, "message_id": message.id})
            return result
        finally:
            INFLIGHT.labels(queue=self.queue.name).dec()

    # -- loops ---------------------------------------------------------------

    def dispatch_once(self) -> int:
        """Claim one wave of due messages, run them concurrently, wait for all."""
        messages = self.queue.claim(self.config.max_concurrent_dispatches, on_expired=self._expired)
        if not messages:
            return 0
        workers = max(1, min(self.config.max_concurrent_dispatches, len(messages)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"{self.queue.name}-dispatch") as pool:
            futures = []
            for message in messages:
                self.rate_limiter.acquire()
                futures.append(pool.submit(self.process, message))
            wait(futures)
        return len(messages)

    def drain(self, max_waves: int = 1000) -> int:
        """Dispatch until nothing is due. Returns messages processed."""
        total = 0
        for _ in range(max_waves):
            count = self.dispatch_once()
            if count == 0:
                break
            total += count
        return total

    def stop(self) -> None:
        self._stop.set()

    def run_forever(self, poll_interval: float = 1.0) -> None:
        logger.info(
            "dispatcher started",
            extra={
                "queue": self.queue.name,
                "max_concurrent": self.config.max_concurrent_dispatches,
                "max_per_second": self.config.max_dispatches_per_second,
            },
        )
        inflight: set[Future] = set()
        with ThreadPoolExecutor(
            max_workers=self.config.max_concurrent_dispatches, thread_name_prefix=f"{self.queue.name}-dispatch"
        ) as pool:
            while not self._stop.is_set():
                free = self.config.max_concurrent_dispatches - len(inflight)
                claimed: list[QueueMessage] = []
                if free > 0:
                    try:
                        claimed = self.queue.claim(free, on_expired=self._expired)
                    except Exception:  # noqa: BLE001
                        logger.exception("claim failed", extra={"queue": self.queue.name})
                for message in claimed:
                    self.rate_limiter.acquire()
                    inflight.add(pool.submit(self.process, message))
                if inflight:
                    done, inflight = wait(inflight, timeout=poll_interval, return_when=FIRST_COMPLETED)
                    inflight = set(inflight)
                elif not claimed:
                    self._stop.wait(poll_interval)
            wait(inflight)
        logger.info("dispatcher stopped", extra={"queue": self.queue.name})
