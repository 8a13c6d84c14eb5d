from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from atsqueue.core.errors import AdapterError
from atsqueue.crawlers.adapters.common import logo_from_url, parse_posted_at, title_case_company
from atsqueue.crawlers.base import NormalizedJob, ProviderAdapter
from atsqueue.crawlers.http_helpers import fetch_json
from atsqueue.crawlers.registry import register_adapter

logger = logging.getLogger(__name__)


def _build_jobs(postings: list[dict[str, Any]], company: str) -> list[NormalizedJob]:
    jobs: list[NormalizedJob] = []
    for item in postings:
        title = str(item.get("text") or "").strip()
        if not title:
            continue
        apply_url = str(item.get("hostedUrl") or item.get("applyUrl") or "").strip()
        categories = item.get("categories") or {}
        jobs.append(
            NormalizedJob(
                provider="lever",
                external_id=item.get("id"),
                title=title,
                company=title_case_company(company),
                location=str(categories.get("location") or "").strip(),
                description=str(item.get("descriptionPlain") or "").strip(),
                apply_url=apply_url,
                posted_at=parse_posted_at(item.get("createdAt")),
                company_logo=logo_from_url(apply_url),
            )
        )
    return jobs


@register_adapter
class LeverAdapter(ProviderAdapter):
    provider_name = "lever"

    def fetch(self, company: str, **params: Any) -> list[NormalizedJob]:
        payload = fetch_json(f"https://api.lever.co/v0/postings/{quote(company)}?mode=json")
        if not isinstance(payload, list):
            raise AdapterError(f"unexpected lever payload for company={company}")
        jobs = _build_jobs(payload, company)
        logger.info("lever fetched", extra={"company": company, "jobs": len(jobs)})
        return jobs
