from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from atsqueue.crawlers.adapters.common import parse_posted_at, title_case_company
from atsqueue.crawlers.base import NormalizedJob, ProviderAdapter
from atsqueue.crawlers.http_helpers import clean_html, fetch_json
from atsqueue.crawlers.registry import register_adapter

logger = logging.getLogger(__name__)


def _location(item: dict[str, Any]) -> str:
    if item.get("location"):
        return str(item["location"]).strip()
    address = (item.get("address") or {}).get("postalAddress") or item.get("address") or {}
    parts = [address.get("addressLocality") or address.get("city"), address.get("addressCountry") or address.get("country")]
    return ", ".join(str(p) for p in parts if p)


def _build_jobs(payload: dict[str, Any], company: str) -> list[NormalizedJob]:
    jobs: list[NormalizedJob] = []
    for item in payload.get("jobs") or []:
        title = str(item.get("title") or "").strip()
        if not title:
            continue
        description = item.get("descriptionPlain") or clean_html(str(item.get("descriptionHtml") or ""))
        jobs.append(
            NormalizedJob(
                provider="ashby",
                external_id=item.get("id"),
                title=title,
                company=title_case_company(company),
                location=_location(item),
                description=str(description or "").strip(),
                apply_url=str(item.get("applyUrl") or item.get("jobUrl") or "").strip(),
                posted_at=parse_posted_at(item.get("publishedAt")),
                company_logo=f"https://logo.clearbit.com/{company}.com",
            )
        )
    return jobs


@register_adapter
class AshbyAdapter(ProviderAdapter):
    provider_name = "ashby"

    def fetch(self, company: str, **params: Any) -> list[NormalizedJob]:
        url = f"https://api.ashbyhq.com/posting-api/job-board/{quote(company)}?includeCompensation=true"
        jobs = _build_jobs(fetch_json(url), company)
        logger.info("ashby fetched", extra={"company": company, "jobs": len(jobs)})
        return jobs
