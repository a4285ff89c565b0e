from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

MAX_HTML_CHARS = 180_000

_TITLE_RE = re.compile(r"<title[^>]*>([^<]{1,300})</title>", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


def _meta_patterns(attr: str, name: str) -> tuple[re.Pattern[str], re.Pattern[str]]:
    return (
        re.compile(
            rf"<meta[^>]+{attr}=[\"']{re.escape(name)}[\"'][^>]+content=[\"']([^\"']{{1,400}})[\"'][^>]*>",
            re.IGNORECASE,
        ),
        re.compile(
            rf"<meta[^>]+content=[\"']([^\"']{{1,400}})[\"'][^>]+{attr}=[\"']{re.escape(name)}[\"'][^>]*>",
            re.IGNORECASE,
        ),
    )


# og, then twitter, then the plain description tag
_DESCRIPTION_PATTERNS = (
    _meta_patterns("property", "og:description"),
    _meta_patterns("name", "twitter:description"),
    _meta_patterns("name", "description"),
)


@dataclass(slots=True)
class PageMeta:
    title: str | None = None
    description: str | None = None


def parse_page_meta(document: str) -> PageMeta:
    document = document[:MAX_HTML_CHARS]
    title_match = _TITLE_RE.search(document)
    title = _clean(title_match.group(1)) if title_match else None

    description = None
    for patterns in _DESCRIPTION_PATTERNS:
        match = next((found for found in (pattern.search(document) for pattern in patterns) if found), None)
        if match:
            description = _clean(match.group(1))
            if description:
                break
    return PageMeta(title=title, description=description)


async def fetch_page_meta(
    url: str,
    *,
    timeout_seconds: float = 7.0,
    user_agent: str = "PostSomaBot/1.0",
    transport: httpx.AsyncBaseTransport | None = None,
) -> PageMeta:
    """Best-effort title/description scrape; any failure yields empty metadata."""
    try:
        async with httpx.AsyncClient(
            timeout=timeout_seconds,
            follow_redirects=True,
            transport=transport,
        ) as client:
            response = await client.get(url, headers={"User-Agent": user_agent})
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.info("page metadata fetch failed url=%s: %s", url, exc.__class__.__name__)
        return PageMeta()

    if not response.is_success:
        logger.info("page metadata fetch returned status=%s url=%s", response.status_code, url)
        return PageMeta()
    return parse_page_meta(response.text)


def _clean(value: str) -> str | None:
    cleaned = _WHITESPACE_RE.sub(" ", html.unescape(value)).strip()
    return cleaned or None
