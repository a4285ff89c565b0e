from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from postsoma.services.merge import merge_tags, normalize_tag

logger = logging.getLogger(__name__)

GEMINI_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
MAX_SUMMARY_CHARS = 160
MAX_HIGHLIGHTS = 2
MAX_HIGHLIGHT_CHARS = 60
MAX_TAGS = 3

PROMPT_TEMPLATE = """You are writing an English knowledge-base entry for a "Web Intel" library.

Return strictly VALID JSON with keys:
- summary: exactly ONE sentence, <=160 chars
- highlights: array of 2 short bullet phrases (<=60 chars each)
- tags: array of 1-3 hierarchical tags using / (lowercase). Examples: ai/agents, dev/cli, dev/open-source, security/privacy, data/etl, ops/infra, design/ui, productivity/automation

Rules:
- Do NOT include any other keys.
- Do NOT wrap in markdown.
- Do NOT include URLs.

Input:
URL: {url}
Title hint: {title}
Description hint: {description}
"""


@dataclass(slots=True)
class Enrichment:
    summary: str | None = None
    highlights: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


def parse_enrichment(text: str) -> Enrichment | None:
    """Extract the outermost JSON object from a model reply and clamp its fields."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None

    summary = payload.get("summary")
    summary = summary.strip()[:MAX_SUMMARY_CHARS] if isinstance(summary, str) else None
    raw_highlights = payload.get("highlights")
    highlights = [str(value).strip() for value in raw_highlights] if isinstance(raw_highlights, list) else []
    raw_tags = payload.get("tags")
    tags = [normalize_tag(value) for value in raw_tags] if isinstance(raw_tags, list) else []

    return Enrichment(
        summary=summary or None,
        highlights=[value[:MAX_HIGHLIGHT_CHARS] for value in highlights if value][:MAX_HIGHLIGHTS],
        tags=merge_tags(tags, limit=MAX_TAGS),
    )


class GeminiClient:
    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gemini-1.5-flash",
        timeout_seconds: float = 15.0,
        base_url: str = GEMINI_API_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.base_url = base_url.rstrip("/")
        self.transport = transport

    async def enrich(self, *, url: str, title: str, description: str | None) -> Enrichment | None:
        prompt = PROMPT_TEMPLATE.format(url=url, title=title, description=description or "")
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0.4, "maxOutputTokens": 256},
        }
        endpoint = f"{self.base_url}/models/{self.model}:generateContent"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.post(endpoint, params={"key": self.api_key}, json=body)
        except httpx.HTTPError as exc:
            logger.warning("gemini enrichment request failed url=%s: %s", url, exc.__class__.__name__)
            return None

        if not response.is_success:
            logger.warning("gemini enrichment returned status=%s url=%s", response.status_code, url)
            return None
        try:
            data = response.json()
        except json.JSONDecodeError:
            logger.warning("gemini enrichment returned invalid JSON url=%s", url)
            return None
        return parse_enrichment(_response_text(data))


def _response_text(data: Any) -> str:
    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    if not isinstance(parts, list):
        return ""
    return "".join(part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str))
