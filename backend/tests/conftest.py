from __future__ import annotations
import os

# must be set before atsqueue.core.config builds its Settings
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest

from atsqueue import models  # noqa: E402,F401
from atsqueue.db.database import Base, make_engine, make_session_factory
from atsqueue.db.store import Store
from atsqueue.dispatch.config import QueueConfig
from atsqueue.dispatch.task_queue import TaskQueue
from atsqueue.models.batch_execution import BatchExecution
from atsqueue.models.fetch_task import FetchTask
from atsqueue.models.status import ExecutionStatus, TaskStatus
from atsqueue.utils.time import utcnow


@pytest.fixture
def session_factory(tmp_path):
    # file backed so worker threads share one database
    engine = make_engine(f"sqlite+pysqlite:///{tmp_path / 'queue.db'}")
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return Store(session_factory)


def queue_config(name: str = "fetch", **overrides) -> QueueConfig:
    values = dict(
        name=name,
        max_concurrent_dispatches=4,
        max_attempts=3,
        min_backoff_seconds=0,
        max_backoff_seconds=0,
        timeout_seconds=5,
        lease_grace_seconds=1,
    )
    values.update(overrides)
    return QueueConfig(**values)


@pytest.fixture
def fetch_queue(store):
    return TaskQueue(store, queue_config("fetch"))


@pytest.fixture
def enrichment_queue(store):
    return TaskQueue(store, queue_config("enrichment", max_attempts=2))


def add_execution(store: Store, execution_id: str = "exec_1", total: int = 1) -> None:
    store.upsert(
        BatchExecution,
        execution_id,
        {"batch_id": "batch_1", "status": ExecutionStatus.RUNNING, "total_tasks": total, "started_at": utcnow()},
    )


def add_task(
    store: Store,
    task_id: str = "task_1",
    execution_id: str = "exec_1",
    provider: str = "fake",
    company: str = "acme",
    status: TaskStatus = TaskStatus.PENDING,
    max_retries: int = 2,
    retry_count: int = 0,
) -> None:
    store.upsert(
        FetchTask,
        task_id,
        {
            "provider": provider,
            "company": company,
            "params": {},
            "status": status,
            "execution_id": execution_id,
            "batch_id": "batch_1",
            "retry_count": retry_count,
            "max_retries": max_retries,
        },
    )
