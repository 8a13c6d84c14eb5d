from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class NormalizedJob:
    provider: str
    external_id: str | None
    title: str
    company: str = ""
    location: str = ""
    description: str = ""
    apply_url: str = ""
    posted_at: datetime | None = None
    skills: list[str] = field(default_factory=list)
    company_logo: str | None = None


class ProviderAdapter:
    """One ATS dialect. `fetch` raises on unrecoverable errors; [] means no postings."""

    provider_name: str

    def fetch(self, company: str, **params: Any) -> list[NormalizedJob]:
        raise NotImplementedError
