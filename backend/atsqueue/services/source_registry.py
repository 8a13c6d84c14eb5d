from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Optional

from atsqueue.core.config import settings
from atsqueue.db.store import Store
from atsqueue.models.source import Source
from atsqueue.services.task_creator import SourceEntry

logger = logging.getLogger(__name__)

DEFAULT_SOURCES_FILE = Path(__file__).resolve().parent.parent / "data" / "sources.json"


def load_source_file(path: str = "") -> list[SourceEntry]:
    """Read the source list from `path`, or the bundled default list."""
    if path:
        raw = Path(path).read_text(encoding="utf-8")
    else:
        raw = DEFAULT_SOURCES_FILE.read_text(encoding="utf-8")
    items: list[dict[str, Any]] = json.loads(raw)
    return [
        SourceEntry(provider=item["provider"], company=item["company"], params=dict(item.get("params") or {}))
        for item in items
    ]


def seed_sources_if_empty(store: Store, path: Optional[str] = None) -> int:
    """Insert sources from the source file that the table does not have yet."""
    entries = load_source_file(settings.sources_file if path is None else path)
    existing = {(s.provider, s.company) for s in store.query(Source)}
    fresh = [
        Source(provider=entry.provider, company=entry.company, params=entry.params, enabled=True)
        for entry in entries
        if (entry.provider, entry.company) not in existing
    ]
    if fresh:
        store.insert_all(fresh)
        logger.info("sources seeded", extra={"count": len(fresh)})
    return len(fresh)


def enabled_sources(store: Store, providers: Optional[Iterable[str]] = None) -> list[SourceEntry]:
    criteria = [Source.enabled.is_(True)]
    wanted = [p for p in (providers or []) if p]
    if wanted:
        criteria.append(Source.provider.in_(wanted))
    rows = store.query(Source, *criteria, order_by=Source.id)
    return [SourceEntry(provider=row.provider, company=row.company, params=dict(row.params or {})) for row in rows]
