from __future__ import annotations
from sqlalchemy.engine import Engine

from atsqueue import models  # noqa: F401  registers every table on Base.metadata
from atsqueue.db.database import Base, SessionLocal, engine as default_engine, make_session_factory
from atsqueue.db.store import Store
from atsqueue.services.source_registry import seed_sources_if_empty


def init_db(engine: Engine | None = None, seed: bool = True) -> None:
    engine = engine or default_engine
    Base.metadata.create_all(bind=engine)
    if seed:
        factory = SessionLocal if engine is default_engine else make_session_factory(engine)
        seed_sources_if_empty(Store(factory))
