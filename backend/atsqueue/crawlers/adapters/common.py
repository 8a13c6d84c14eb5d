from __future__ import annotations
from datetime import datetime, timezone
from urllib.parse import urlparse


def title_case_company(name: str | None, fallback: str = "") -> str:
    text = (name or fallback or "").strip()
    if not text:
        return ""
    return " ".join(w[:1].upper() + w[1:] for w in text.lower().replace("-", " ").split())


def logo_from_url(url: str | None) -> str | None:
    if not url:
        return None
    host = urlparse(url).netloc
    if not host:
        return None
    return f"https://logo.clearbit.com/{host}"


def parse_posted_at(value: object) -> datetime | None:
    """Accepts epoch millis or ISO-8601 strings. Returns naive UTC, or None."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
