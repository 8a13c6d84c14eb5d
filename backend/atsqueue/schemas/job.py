from __future__ import annotations
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from atsqueue.models.status import EnrichmentStatus


class JobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider: str
    external_id: str | None
    title: str
    company: str
    company_logo: str | None
    location: str
    description: str
    apply_url: str
    posted_at: datetime | None
    skills: list[str]
    enrichment_status: EnrichmentStatus | None
    enrichment_error: str | None
    enriched_at: datetime | None
    fetched_at: datetime
    last_execution_id: str | None
