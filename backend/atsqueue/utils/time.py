from __future__ import annotations
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def elapsed_ms(start: datetime, end: datetime | None = None) -> int:
    return int(((end or utcnow()) - start).total_seconds() * 1000)
