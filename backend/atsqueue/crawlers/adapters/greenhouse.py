from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from atsqueue.crawlers.adapters.common import logo_from_url, parse_posted_at, title_case_company
from atsqueue.crawlers.base import NormalizedJob, ProviderAdapter
from atsqueue.crawlers.http_helpers import clean_html, fetch_json
from atsqueue.crawlers.registry import register_adapter

logger = logging.getLogger(__name__)


def _build_jobs(payload: dict[str, Any], company: str) -> list[NormalizedJob]:
    jobs: list[NormalizedJob] = []
    for item in payload.get("jobs") or []:
        title = str(item.get("title") or "").strip()
        if not title:
            continue
        apply_url = str(item.get("absolute_url") or "").strip()
        company_info = item.get("company") if isinstance(item.get("company"), dict) else {}
        offices = item.get("offices") or []
        location = (item.get("location") or {}).get("name") or (offices[0].get("name") if offices else "")
        jobs.append(
            NormalizedJob(
                provider="greenhouse",
                external_id=str(item["id"]) if item.get("id") is not None else None,
                title=title,
                company=title_case_company(company_info.get("name"), company),
                location=str(location or "").strip(),
                description=clean_html(str(item.get("content") or "")),
                apply_url=apply_url,
                posted_at=parse_posted_at(item.get("updated_at")),
                company_logo=company_info.get("logo_url") or logo_from_url(apply_url),
            )
        )
    return jobs


@register_adapter
class GreenhouseAdapter(ProviderAdapter):
    provider_name = "greenhouse"

    def fetch(self, company: str, **params: Any) -> list[NormalizedJob]:
        url = f"https://boards-api.greenhouse.io/v1/boards/{quote(company)}/jobs?content=true"
        jobs = _build_jobs(fetch_json(url), company)
        logger.info("greenhouse fetched", extra={"company": company, "jobs": len(jobs)})
        return jobs
