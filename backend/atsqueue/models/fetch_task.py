from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from atsqueue.db.database import Base
from atsqueue.models._types import enum_column
from atsqueue.models.status import TaskStatus
from atsqueue.utils.time import utcnow


class FetchTask(Base):
    __tablename__ = "fetch_tasks"
    __table_args__ = (
        CheckConstraint("retry_count >= 0 AND retry_count <= max_retries", name="ck_fetch_tasks_retry_bound"),
    )

    task_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    company: Mapped[str] = mapped_column(String(256), nullable=False)
    params: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    status: Mapped[TaskStatus] = mapped_column(
        enum_column(TaskStatus), default=TaskStatus.PENDING, nullable=False, index=True
    )
    execution_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    batch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    jobs_fetched: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    jobs_written: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
