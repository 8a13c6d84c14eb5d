from __future__ import annotations
import hashlib
import re

_UNSAFE_ID_CHARS = re.compile(r'[/\\:*?"<>|]')
MAX_EXTERNAL_ID_LEN = 200


def clean_external_id(external_id: object) -> str:
    if external_id is None:
        return ""
    text = str(external_id).strip()
    return _UNSAFE_ID_CHARS.sub("_", text)[:MAX_EXTERNAL_ID_LEN]


def job_content_hash(title: str, company: str, apply_url: str) -> str:
    raw = f"{(title or '').strip()}|{(company or '').strip()}|{(apply_url or '').strip()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:24]


def job_doc_id(provider: str, external_id: object, title: str, company: str, apply_url: str) -> str:
    """Deterministic job identity so repeated fetches merge into one record."""
    clean = clean_external_id(external_id)
    if clean:
        return f"{provider}_{clean}"
    return f"{provider}_{job_content_hash(title, company, apply_url)}"
