from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from atsqueue.core.config import Settings, settings as default_settings
from atsqueue.core.errors import ExtractionError

logger = logging.getLogger(__name__)

PROMPT = (
    "Extract the concrete professional skills (languages, frameworks, tools, methods, domain skills) "
    "required by the job posting below. Respond with JSON only: "
    '{{"skills": ["skill", ...]}}. Use short canonical names, at most 25 items.\n\n{text}'
)


class SkillExtractor(Protocol):
    def extract(self, text: str) -> list[str]: ...


def parse_skills(content: str) -> list[str]:
    """Parse the model's JSON reply. An empty list is a valid answer."""
    text = (content or "").strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        data: Any = json.loads(text)
    except ValueError as exc:
        raise ExtractionError(f"model returned non-JSON content: {content[:120]!r}") from exc

    raw = data.get("skills") if isinstance(data, dict) else data
    if not isinstance(raw, list):
        raise ExtractionError("model reply has no skills list")

    skills: list[str] = []
    seen: set[str] = set()
    for item in raw:
        name = " ".join(str(item).split())
        if name and name.lower() not in seen:
            seen.add(name.lower())
            skills.append(name)
    return skills


class LLMSkillExtractor:
    """Skill extraction through an OpenAI-compatible chat completions API."""

    def __init__(self, cfg: Settings = default_settings, client: Any = None):
        self.model = cfg.llm_model
        self.timeout = cfg.llm_timeout_seconds
        self.max_chars = cfg.llm_max_input_chars
        self._cfg = cfg
        self._client = client

    @property
    def client(self):
        if self._client is None:
            from openai import OpenAI

            kwargs: dict[str, Any] = {"api_key": self._cfg.llm_api_key or None}
            if self._cfg.llm_api_base:
                kwargs["base_url"] = self._cfg.llm_api_base
            self._client = OpenAI(**kwargs)
        return self._client

    def extract(self, text: str) -> list[str]:
        prompt = PROMPT.format(text=text[: self.max_chars])
        resp = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": "You extract skills from job postings. Output JSON only."},
                {"role": "user", "content": prompt},
            ],
            temperature=0,
            timeout=self.timeout,
            response_format={"type": "json_object"},
        )
        content = resp.choices[0].message.content or ""
        return parse_skills(content)
