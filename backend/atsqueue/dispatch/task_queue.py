from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, or_

from atsqueue.db.store import Store, WriteOp
from atsqueue.dispatch.config import QueueConfig
from atsqueue.dispatch.metrics import DEAD_LETTERS_TOTAL, RETRIES_TOTAL
from atsqueue.models.queue_message import QueueMessage
from atsqueue.models.status import MessageStatus
from atsqueue.utils.time import utcnow

logger = logging.getLogger(__name__)


class TaskQueue:
    """Durable at-least-once queue backed by the `queue_messages` table."""

    def __init__(self, store: Store, config: QueueConfig, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.config = config
        self.clock = clock

    @property
    def name(self) -> str:
        return self.config.name

    def _new_values(self, payload: dict[str, Any], delay_seconds: float = 0) -> dict[str, Any]:
        now = self.clock()
        return {
            "queue": self.name,
            "payload": payload,
            "status": MessageStatus.QUEUED,
            "attempts": 0,
            "available_at": now + timedelta(seconds=delay_seconds),
            "created_at": now,
            "updated_at": now,
        }

    def enqueue(self, payload: dict[str, Any], delay_seconds: float = 0) -> str:
        message_id = uuid.uuid4().hex
        self.store.upsert(QueueMessage, message_id, self._new_values(payload, delay_seconds))
        return message_id

    def enqueue_many(self, payloads: Sequence[dict[str, Any]]) -> list[str]:
        ids: list[str] = []
        ops: list[WriteOp] = []
        for payload in payloads:
            message_id = uuid.uuid4().hex
            ids.append(message_id)
            ops.append(WriteOp(QueueMessage, message_id, self._new_values(payload)))
            if len(ops) == self.store.max_batch_items:
                self.store.write_batch(ops)
                ops = []
        if ops:
            self.store.write_batch(ops)
        return ids

    def claim(
        self, limit: int, on_expired: Optional[Callable[[QueueMessage, str], None]] = None
    ) -> list[QueueMessage]:
        """Lease up to `limit` due messages. Expired leases are redelivered.

        A message whose lease expired on its final attempt is dead-lettered
        instead, after `on_expired` has been called with it so the owner of
        the payload can record the failure. The callback may run more than
        once for one message and must be idempotent.
        """
        if limit <= 0:
            return []
        now = self.clock()
        candidates = self.store.query(
            QueueMessage,
            QueueMessage.queue == self.name,
            or_(
                and_(QueueMessage.status == MessageStatus.QUEUED, QueueMessage.available_at <= now),
                and_(QueueMessage.status == MessageStatus.INFLIGHT, QueueMessage.leased_until < now),
            ),
            order_by=QueueMessage.available_at,
            limit=limit,
        )
        claimed: list[QueueMessage] = []
        for message in candidates:
            if message.status is MessageStatus.INFLIGHT and message.attempts >= self.config.max_attempts:
                error = message.last_error or "lease expired after final attempt"
                if on_expired is not None:
                    try:
                        on_expired(message, error)
                    except Exception:  # noqa: BLE001
                        # left inflight so the next claim tries again
                        logger.exception("expired lease not recorded", extra={"queue": self.name, "message_id": message.id})
                        continue
                self._expire(message, error)
                continue
            values = {
                "status": MessageStatus.INFLIGHT,
                "attempts": message.attempts + 1,
                "leased_until": now + timedelta(seconds=self.config.lease_seconds),
                "updated_at": now,
            }
            won = self.store.update_where(
                QueueMessage,
                message.id,
                values,
                QueueMessage.status == message.status,
                QueueMessage.attempts == message.attempts,
            )
            if won:
                message.status = values["status"]
                message.attempts = values["attempts"]
                message.leased_until = values["leased_until"]
                claimed.append(message)
        return claimed

    def ack(self, message: QueueMessage) -> None:
        self.store.upsert(
            QueueMessage,
            message.id,
            {"status": MessageStatus.DONE, "leased_until": None, "updated_at": self.clock()},
        )

    def retry(self, message: QueueMessage, error: str) -> bool:
        """Reschedule with backoff. Returns False when attempts are exhausted."""
        if message.attempts >= self.config.max_attempts:
            self._mark_dead(message, error)
            return False
        delay = self.config.backoff_seconds(message.attempts)
        now = self.clock()
        self.store.upsert(
            QueueMessage,
            message.id,
            {
                "status": MessageStatus.QUEUED,
                "available_at": now + timedelta(seconds=delay),
                "leased_until": None,
                "last_error": error[:2000],
                "updated_at": now,
            },
        )
        RETRIES_TOTAL.labels(queue=self.name).inc()
        logger.info(
            "message rescheduled",
            extra={"queue": self.name, "message_id": message.id, "attempt": message.attempts, "delay_seconds": delay},
        )
        return True

    def dead(self, message: QueueMessage, error: str) -> None:
        self._mark_dead(message, error)

    def _expire(self, message: QueueMessage, error: str) -> bool:
        # only one claimer may dead-letter a given expired lease
        won = self.store.update_where(
            QueueMessage,
            message.id,
            {"status": MessageStatus.DEAD, "leased_until": None, "last_error": error[:2000], "updated_at": self.clock()},
            QueueMessage.status == MessageStatus.INFLIGHT,
            QueueMessage.attempts == message.attempts,
        )
        if won:
            DEAD_LETTERS_TOTAL.labels(queue=self.name).inc()
            logger.warning(
                "expired lease dead-lettered",
                extra={"queue": self.name, "message_id": message.id, "attempts": message.attempts, "error": error},
            )
        return won

    def _mark_dead(self, message: QueueMessage, error: str) -> None:
        self.store.upsert(
            QueueMessage,
            message.id,
            {
                "status": MessageStatus.DEAD,
                "leased_until": None,
                "last_error": error[:2000],
                "updated_at": self.clock(),
            },
        )
        DEAD_LETTERS_TOTAL.labels(queue=self.name).inc()
        logger.warning(
            "message dead-lettered",
            extra={"queue": self.name, "message_id": message.id, "attempts": message.attempts, "error": error},
        )

    def depth(self) -> dict[str, int]:
        counts = self.store.count_by(QueueMessage.status, QueueMessage.queue == self.name)
        return {status.value: counts.get(status, 0) for status in MessageStatus}

    def pending_payloads(self) -> list[dict[str, Any]]:
        rows = self.store.query(
            QueueMessage,
            QueueMessage.queue == self.name,
            QueueMessage.status.in_([MessageStatus.QUEUED, MessageStatus.INFLIGHT]),
            order_by=QueueMessage.created_at,
        )
        return [row.payload for row in rows]
