from __future__ import annotations

import html
from collections.abc import Awaitable, Callable

from postsoma.core.urls import display_host_path, link_url
from postsoma.schemas.items import Item
from postsoma.services.page_meta import PageMeta

FALLBACK_SUMMARY = "A useful web find worth saving."
BASE_HASHTAG = "#webintel"
MAX_SUMMARY_CHARS = 160
MAX_BEST_FOR_CHARS = 120
MAX_HASHTAGS = 5

PageMetaFetcher = Callable[[str], Awaitable[PageMeta]]


def escape(value: str) -> str:
    return html.escape(value, quote=False)


def safe_title(item: Item) -> str:
    title = (item.title or "").strip()
    if title and title not in {item.canonical_url, item.url}:
        return title
    target = item_link(item)
    return display_host_path(target) or (target or "Unknown")[:120]


def item_link(item: Item) -> str:
    """The URL to post for ``item``: the submitted link, cleaned of tracking noise."""
    return link_url(item.url) if item.url else item.canonical_url


def format_tags(tags: list[str] | None) -> str:
    hashtags = [f"#{tag.strip().replace('/', '_')}" for tag in (tags or [])[:MAX_HASHTAGS] if tag.strip()]
    return " ".join([BASE_HASHTAG, *hashtags])


async def build_message(item: Item, *, fetch_meta: PageMetaFetcher | None = None) -> str:
    """Render the HTML channel post for ``item``.

    When the stored title is only a URL or the summary is missing, page
    metadata is fetched to fill the gaps; a failed fetch keeps the fallbacks.
    """
    url = item_link(item)
    title = safe_title(item)
    summary = (item.summary or "").strip()
    description: str | None = None

    title_is_placeholder = not (item.title or "").strip() or item.title in {item.canonical_url, item.url}
    if fetch_meta is not None and url and (title_is_placeholder or not summary):
        meta = await fetch_meta(url)
        if title_is_placeholder and meta.title:
            title = meta.title
        if not summary and meta.description:
            description = meta.description

    summary_line = (summary or description or FALLBACK_SUMMARY)[:MAX_SUMMARY_CHARS]

    content = item.content or {}
    body_lines: list[str] = []
    highlights = content.get("highlights")
    if isinstance(highlights, list) and highlights:
        body_lines.append(f"• Highlights: {'; '.join(str(value) for value in highlights[:2])}")
    best_for = content.get("best_for") or content.get("use_case")
    if best_for:
        body_lines.append(f"• Best for: {str(best_for)[:MAX_BEST_FOR_CHARS]}")

    parts = [f"<b>{escape(title)}</b>", escape(summary_line)]
    if body_lines:
        body = "\n".join(body_lines)
        parts.append(f"\n{escape(body)}")
    parts.append(f"\n{escape(format_tags(item.tags))}")
    parts.append(f"\n🔗 {escape(url)}")
    return "\n".join(parts)
