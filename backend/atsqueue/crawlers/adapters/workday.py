from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from atsqueue.core.errors import AdapterError
from atsqueue.crawlers.adapters.common import logo_from_url, parse_posted_at, title_case_company
from atsqueue.crawlers.base import NormalizedJob, ProviderAdapter
from atsqueue.crawlers.http_helpers import make_client
from atsqueue.crawlers.registry import register_adapter

logger = logging.getLogger(__name__)

PAGE_SIZE = 20
MAX_JOBS = 2000
RATE_LIMIT_RETRIES = 3


def _build_job(item: dict[str, Any], company: str, domain: str, site: str) -> NormalizedJob:
    base_url = f"https://{company}.{domain}.myworkdayjobs.com"
    apply_url = item.get("externalUrl") or ""
    if not apply_url and item.get("externalPath"):
        apply_url = f"{base_url}/en-US/{site}{item['externalPath']}"
    locations = item.get("locations")
    location = item.get("locationsText") or (", ".join(locations) if isinstance(locations, list) else "")
    bullets = item.get("bulletFields") or []
    return NormalizedJob(
        provider="workday",
        external_id=item.get("id") or item.get("jobPostingId") or item.get("externalPath"),
        title=str(item.get("title") or "Untitled Position").strip(),
        company=title_case_company(item.get("company"), company),
        location=str(location).strip(),
        description="\n".join(str(b.get("value", b)) if isinstance(b, dict) else str(b) for b in bullets),
        apply_url=apply_url or base_url,
        posted_at=parse_posted_at(item.get("postingDate")),
        company_logo=logo_from_url(apply_url or base_url),
    )


def _post_page(client: httpx.Client, url: str, offset: int) -> dict[str, Any]:
    body = {"appliedFacets": {}, "limit": PAGE_SIZE, "offset": offset, "searchText": ""}
    for attempt in range(1, RATE_LIMIT_RETRIES + 1):
        resp = client.post(url, json=body)
        if resp.status_code == 429 and attempt < RATE_LIMIT_RETRIES:
            time.sleep(2**attempt)
            continue
        if resp.status_code >= 400:
            raise AdapterError(f"HTTP {resp.status_code} for {url} offset={offset}")
        return resp.json()
    raise AdapterError(f"rate limited by {url}")


@register_adapter
class WorkdayAdapter(ProviderAdapter):
    provider_name = "workday"

    def fetch(self, company: str, **params: Any) -> list[NormalizedJob]:
        domain = params.get("workday_domain") or "wd5"
        site = params.get("workday_site_id") or company
        url = f"https://{company}.{domain}.myworkdayjobs.com/wday/cxs/{company}/{site}/jobs"

        jobs: list[NormalizedJob] = []
        with make_client() as client:
            first = _post_page(client, url, 0)
            total = min(int(first.get("total") or 0), MAX_JOBS)
            jobs.extend(_build_job(j, company, domain, site) for j in first.get("jobPostings") or [])
            for offset in range(PAGE_SIZE, total, PAGE_SIZE):
                try:
                    page = _post_page(client, url, offset)
                except (AdapterError, httpx.HTTPError) as exc:
                    # keep what we have; the next scheduled run picks up the rest
                    logger.warning(
                        "workday page fetch failed",
                        extra={"company": company, "offset": offset, "error": str(exc)},
                    )
                    break
                postings = page.get("jobPostings") or []
                if not postings:
                    break
                jobs.extend(_build_job(j, company, domain, site) for j in postings)

        logger.info("workday fetched", extra={"company": company, "jobs": len(jobs)})
        return jobs
