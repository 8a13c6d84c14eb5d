from __future__ import annotations
import threading
import time
from datetime import datetime, timedelta

from atsqueue.dispatch.config import QueueConfig
from atsqueue.dispatch.dispatcher import Dispatcher, QueueHandler
from atsqueue.dispatch.ratelimit import TokenBucket
from atsqueue.dispatch.results import Outcome, Retryable, Terminal
from atsqueue.dispatch.task_queue import TaskQueue
from atsqueue.models.queue_message import QueueMessage
from atsqueue.models.status import MessageStatus
from conftest import queue_config


class ScriptedHandler(QueueHandler):
    def __init__(self, results):
        self.results = list(results)
        self.calls = []
        self.exhausted = []
        self._lock = threading.Lock()

    def handle(self, payload, attempt):
        with self._lock:
            self.calls.append((payload["n"], attempt))
            result = self.results.pop(0) if self.results else Outcome()
        if isinstance(result, Exception):
            raise result
        return result

    def on_exhausted(self, payload, error):
        self.exhausted.append((payload["n"], error))


def test_backoff_is_exponential_and_capped():
    cfg = QueueConfig(
        name="fetch",
        max_concurrent_dispatches=15,
        max_attempts=3,
        min_backoff_seconds=60,
        max_backoff_seconds=3600,
        timeout_seconds=540,
    )
    assert [cfg.backoff_seconds(n) for n in (1, 2, 3, 7, 10)] == [60, 120, 240, 3600, 3600]
    assert cfg.lease_seconds == 570


def test_outcome_acks_message(store):
    queue = TaskQueue(store, queue_config())
    queue.enqueue({"n": 1})
    handler = ScriptedHandler([Outcome()])

    processed = Dispatcher(queue, handler).drain()

    assert processed == 1
    assert queue.depth()["done"] == 1
    assert handler.calls == [(1, 1)]


def test_retryable_is_redelivered_until_success(store):
    queue = TaskQueue(store, queue_config(max_attempts=3))
    queue.enqueue({"n": 1})
    handler = ScriptedHandler([Retryable("flaky"), RuntimeError("boom"), Outcome()])

    Dispatcher(queue, handler).drain()

    assert handler.calls == [(1, 1), (1, 2), (1, 3)]
    assert queue.depth()["done"] == 1
    assert handler.exhausted == []


def test_retryable_exhausts_to_dead_letter(store):
    queue = TaskQueue(store, queue_config(max_attempts=2))
    queue.enqueue({"n": 7})
    handler = ScriptedHandler([Retryable("down"), Retryable("still down")])

    Dispatcher(queue, handler).drain()

    depth = queue.depth()
    assert depth["dead"] == 1
    assert handler.exhausted == [(7, "still down")]
    message = store.query(QueueMessage)[0]
    assert message.attempts == 2
    assert message.last_error == "still down"


def test_terminal_is_never_retried(store):
    queue = TaskQueue(store, queue_config(max_attempts=3))
    queue.enqueue({"n": 1})
    handler = ScriptedHandler([Terminal("empty description")])

    Dispatcher(queue, handler).drain()

    assert handler.calls == [(1, 1)]
    assert queue.depth()["dead"] == 1


def test_handler_timeout_counts_as_failure(store):
    queue = TaskQueue(store, queue_config(max_attempts=1, timeout_seconds=0.1))
    queue.enqueue({"n": 3})

    class SlowHandler(QueueHandler):
        def __init__(self):
            self.exhausted = []

        def handle(self, payload, attempt):
            time.sleep(1)
            return Outcome()

        def on_exhausted(self, payload, error):
            self.exhausted.append(error)

    handler = SlowHandler()
    Dispatcher(queue, handler).drain()

    assert queue.depth()["dead"] == 1
    assert handler.exhausted == ["handler timed out"]


def test_backoff_delays_redelivery(store):
    now = [datetime(2024, 1, 1, 12, 0, 0)]
    queue = TaskQueue(store, queue_config(min_backoff_seconds=30, max_backoff_seconds=600), clock=lambda: now[0])
    queue.enqueue({"n": 1})

    [message] = queue.claim(5)
    assert queue.retry(message, "flaky") is True
    assert queue.claim(5) == []

    now[0] += timedelta(seconds=31)
    [again] = queue.claim(5)
    assert again.attempts == 2


def test_expired_lease_is_redelivered(store):
    now = [datetime(2024, 1, 1, 12, 0, 0)]
    queue = TaskQueue(store, queue_config(timeout_seconds=10, lease_grace_seconds=5), clock=lambda: now[0])
    queue.enqueue({"n": 1})

    [first] = queue.claim(1)
    assert queue.claim(1) == []

    now[0] += timedelta(seconds=16)
    [second] = queue.claim(1)
    assert second.id == first.id
    assert second.attempts == 2


def test_claim_never_hands_out_a_message_twice(store):
    queue = TaskQueue(store, queue_config())
    queue.enqueue_many([{"n": i} for i in range(10)])

    first = queue.claim(6)
    second = queue.claim(6)

    assert len(first) == 6
    assert len(second) == 4
    assert {m.id for m in first}.isdisjoint({m.id for m in second})
    assert store.count(QueueMessage, QueueMessage.status == MessageStatus.INFLIGHT) == 10


def test_token_bucket_limits_rate():
    clock = [0.0]
    bucket = TokenBucket(2, clock=lambda: clock[0], sleep=lambda s: None)

    assert bucket.try_acquire()
    assert bucket.try_acquire()
    assert not bucket.try_acquire()
    clock[0] += 0.5
    assert bucket.try_acquire()
    assert TokenBucket(0).try_acquire()


def test_lease_expired_on_final_attempt_reports_exhaustion(store):
    now = [datetime(2024, 1, 1, 12, 0, 0)]
    queue = TaskQueue(store, queue_config(max_attempts=2, timeout_seconds=10, lease_grace_seconds=5), clock=lambda: now[0])
    queue.enqueue({"n": 4})
    handler = ScriptedHandler([])

    # two deliveries whose worker died before settling
    for _ in range(2):
        assert len(queue.claim(1)) == 1
        now[0] += timedelta(seconds=16)

    assert Dispatcher(queue, handler).dispatch_once() == 0

    assert handler.calls == []
    assert handler.exhausted == [(4, "lease expired after final attempt")]
    assert queue.depth()["dead"] == 1
    assert queue.claim(1) == []


def test_failed_exhaustion_hook_keeps_message_for_another_try(store):
    now = [datetime(2024, 1, 1, 12, 0, 0)]
    queue = TaskQueue(store, queue_config(max_attempts=1, timeout_seconds=10, lease_grace_seconds=5), clock=lambda: now[0])
    queue.enqueue({"n": 5})

    class FlakyHook(ScriptedHandler):
        def on_exhausted(self, payload, error):
            if not self.exhausted:
                self.exhausted.append("lost")
                raise RuntimeError("database unavailable")
            super().on_exhausted(payload, error)

    handler = FlakyHook([Retryable("down")])
    dispatcher = Dispatcher(queue, handler)

    dispatcher.dispatch_once()
    assert queue.depth()["inflight"] == 1
    assert queue.depth()["dead"] == 0

    now[0] += timedelta(seconds=16)
    dispatcher.dispatch_once()

    assert handler.exhausted == ["lost", (5, "lease expired after final attempt")]
    assert queue.depth()["dead"] == 1
