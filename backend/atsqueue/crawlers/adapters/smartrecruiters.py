from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from atsqueue.core.errors import AdapterError
from atsqueue.crawlers.adapters.common import logo_from_url, parse_posted_at, title_case_company
from atsqueue.crawlers.base import NormalizedJob, ProviderAdapter
from atsqueue.crawlers.http_helpers import clean_html, fetch_json, make_client
from atsqueue.crawlers.registry import register_adapter

logger = logging.getLogger(__name__)

API = "https://api.smartrecruiters.com/v1/companies"
SECTION_KEYS = ("companyDescription", "jobDescription", "qualifications", "additionalInformation")


def _description(detail: dict[str, Any]) -> str:
    sections = (detail.get("jobAd") or {}).get("sections")
    if isinstance(sections, list):
        parts = [s.get("text") for s in sections if isinstance(s, dict)]
    elif isinstance(sections, dict):
        parts = [(sections.get(key) or {}).get("text") for key in SECTION_KEYS]
    else:
        parts = []
    return clean_html("\n\n".join(p for p in parts if isinstance(p, str) and p))


def _build_job(posting: dict[str, Any], detail: dict[str, Any], company: str) -> NormalizedJob | None:
    title = str(detail.get("name") or posting.get("name") or "").strip()
    if not title:
        return None
    apply_url = str(detail.get("applyUrl") or posting.get("applyUrl") or posting.get("postingUrl") or "").strip()
    company_info = detail.get("company") or posting.get("company") or {}
    location = detail.get("location") or posting.get("location") or {}
    return NormalizedJob(
        provider="smartrecruiters",
        external_id=str(posting.get("id") or posting.get("uuid") or "") or None,
        title=title,
        company=title_case_company(company_info.get("name") or company_info.get("identifier"), company),
        location=str(location.get("city") or "").strip(),
        description=_description(detail),
        apply_url=apply_url,
        posted_at=parse_posted_at(detail.get("releasedDate") or posting.get("releasedDate")),
        company_logo=(company_info.get("logo") or {}).get("url") or logo_from_url(apply_url),
    )


@register_adapter
class SmartRecruitersAdapter(ProviderAdapter):
    provider_name = "smartrecruiters"

    def fetch(self, company: str, **params: Any) -> list[NormalizedJob]:
        jobs: list[NormalizedJob] = []
        with make_client() as client:
            listing = fetch_json(f"{API}/{quote(company)}/postings", client=client)
            if not isinstance(listing, dict):
                raise AdapterError(f"unexpected smartrecruiters payload for company={company}")
            for posting in listing.get("content") or []:
                posting_id = posting.get("id") or posting.get("uuid")
                try:
                    detail = fetch_json(f"{API}/{quote(company)}/postings/{posting_id}", client=client)
                except (AdapterError, httpx.HTTPError) as exc:
                    # listing data alone is still a usable posting
                    logger.warning(
                        "smartrecruiters detail fetch failed",
                        extra={"company": company, "posting_id": posting_id, "error": str(exc)},
                    )
                    detail = {}
                job = _build_job(posting, detail, company)
                if job:
                    jobs.append(job)
        logger.info("smartrecruiters fetched", extra={"company": company, "jobs": len(jobs)})
        return jobs
