from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from atsqueue.db.database import Base
from atsqueue.models._types import enum_column
from atsqueue.models.status import EnrichmentStatus
from atsqueue.utils.time import utcnow


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(270), primary_key=True)
    provider: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)

    title: Mapped[str] = mapped_column(String(512), default="", nullable=False)
    company: Mapped[str] = mapped_column(String(256), default="", nullable=False)
    company_logo: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    location: Mapped[str] = mapped_column(String(256), default="", nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    apply_url: Mapped[str] = mapped_column(String(1024), default="", nullable=False)
    posted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    skills: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    enrichment_status: Mapped[Optional[EnrichmentStatus]] = mapped_column(
        enum_column(EnrichmentStatus), nullable=True, index=True
    )
    enrichment_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    enriched_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    fetched_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
    last_execution_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
