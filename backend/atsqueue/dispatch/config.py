from __future__ import annotations
from dataclasses import dataclass

from atsqueue.core.config import Settings, settings as default_settings

FETCH_QUEUE = "fetch"
ENRICHMENT_QUEUE = "enrichment"


@dataclass(frozen=True)
class QueueConfig:
    name: str
    max_concurrent_dispatches: int
    max_attempts: int
    min_backoff_seconds: float
    max_backoff_seconds: float
    timeout_seconds: float
    max_dispatches_per_second: float = 0.0
    lease_grace_seconds: float = 30.0

    def backoff_seconds(self, attempt: int) -> float:
        """Delay before redelivering after failed attempt number `attempt` (1-based)."""
        delay = self.min_backoff_seconds * (2 ** max(0, attempt - 1))
        return min(delay, self.max_backoff_seconds)

    @property
    def lease_seconds(self) -> float:
        return self.timeout_seconds + self.lease_grace_seconds


def fetch_queue_config(cfg: Settings = default_settings) -> QueueConfig:
    return QueueConfig(
        name=FETCH_QUEUE,
        max_concurrent_dispatches=cfg.fetch_max_concurrent_dispatches,
        max_dispatches_per_second=cfg.fetch_max_dispatches_per_second,
        max_attempts=cfg.fetch_max_attempts,
        min_backoff_seconds=cfg.fetch_min_backoff_seconds,
        max_backoff_seconds=cfg.fetch_max_backoff_seconds,
        timeout_seconds=cfg.fetch_timeout_seconds,
        lease_grace_seconds=cfg.queue_lease_grace_seconds,
    )


def enrichment_queue_config(cfg: Settings = default_settings) -> QueueConfig:
    return QueueConfig(
        name=ENRICHMENT_QUEUE,
        max_concurrent_dispatches=cfg.enrichment_max_concurrent_dispatches,
        max_dispatches_per_second=cfg.enrichment_max_dispatches_per_second,
        max_attempts=cfg.enrichment_max_attempts,
        min_backoff_seconds=cfg.enrichment_min_backoff_seconds,
        max_backoff_seconds=cfg.enrichment_max_backoff_seconds,
        timeout_seconds=cfg.enrichment_timeout_seconds,
        lease_grace_seconds=cfg.queue_lease_grace_seconds,
    )
