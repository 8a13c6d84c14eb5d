from __future__ import annotations
import re
from typing import Any

import httpx
from bs4 import BeautifulSoup

from atsqueue.core.errors import AdapterError

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Accept": "application/json",
}


def make_client(timeout: int = 30) -> httpx.Client:
    return httpx.Client(timeout=timeout, follow_redirects=True, headers=DEFAULT_HEADERS)


def _decode(resp: httpx.Response) -> Any:
    if resp.status_code >= 400:
        raise AdapterError(f"HTTP {resp.status_code} for {resp.request.url} -> {resp.text[:200]}")
    try:
        return resp.json()
    except ValueError as exc:
        raise AdapterError(f"invalid JSON from {resp.request.url}") from exc


def fetch_json(url: str, timeout: int = 30, client: httpx.Client | None = None) -> Any:
    if client is not None:
        return _decode(client.get(url))
    with make_client(timeout) as own:
        return _decode(own.get(url))


_BLANK_LINES = re.compile(r"\n\s*\n+")


def clean_html(html: str) -> str:
    """Strip markup from an ATS description, keeping paragraph breaks."""
    if not html:
        return ""
    if "<" not in html and "&" not in html:
        return html.strip()
    # some providers double-escape their HTML payloads
    text = BeautifulSoup(html, "html.parser").get_text("\n")
    if "<" in text and ">" in text:
        text = BeautifulSoup(text, "html.parser").get_text("\n")
    text = "\n".join(" ".join(line.split()) for line in text.splitlines())
    return _BLANK_LINES.sub("\n\n", text).strip()
