from __future__ import annotations

import re
from typing import Any

from postsoma.core.lifecycle import Status, can_transition, require_transition
from postsoma.core.timestamps import iso_now, latest
from postsoma.core.urls import derive_id
from postsoma.schemas.items import Item
from postsoma.services.collection import ItemCollection

MAX_TAGS = 5
SOURCE_TRUST = {"tg": 1, "github": 2, "manual": 3}

_TAG_INVALID_RE = re.compile(r"[^a-z0-9/-]+")
_TAG_SLASHES_RE = re.compile(r"/+")


def normalize_tag(raw: Any) -> str:
    tag = _TAG_INVALID_RE.sub("-", str(raw or "").strip().lower())
    tag = _TAG_SLASHES_RE.sub("/", tag.strip("-"))
    return tag.strip("/")


def merge_tags(*tag_lists: list[str] | None, limit: int = MAX_TAGS) -> list[str]:
    merged: dict[str, None] = {}
    for tags in tag_lists:
        for raw in tags or []:
            tag = normalize_tag(raw)
            if tag:
                merged.setdefault(tag, None)
    return list(merged)[:limit]


def merge_content(existing: dict[str, Any] | None, incoming: dict[str, Any] | None) -> dict[str, Any] | None:
    if existing is None and incoming is None:
        return None
    merged = dict(existing or {})
    for key, value in (incoming or {}).items():
        if _is_empty(value):
            continue
        current = merged.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            merged[key] = {**current, **{k: v for k, v in value.items() if v is not None}}
        else:
            merged[key] = value
    return merged


def merge_items(existing: Item, candidate: Item, *, now: str) -> Item:
    """Fold ``candidate`` onto ``existing`` without discarding accepted fields."""
    if existing.id != candidate.id:
        raise ValueError(f"cannot merge {candidate.id} into {existing.id}")

    merged = existing.model_copy(deep=True)

    if not existing.url and candidate.url:
        merged.url = candidate.url
    if existing.source is None and candidate.source is not None:
        merged.source = candidate.source.model_copy(deep=True)
    if existing.published is None and candidate.published is not None:
        merged.published = candidate.published.model_copy(deep=True)
    if "language" not in existing.model_fields_set and "language" in candidate.model_fields_set:
        merged.language = candidate.language

    if candidate.status != existing.status and can_transition(existing.status, candidate.status):
        merged.status = candidate.status

    outranks = _trust(candidate) > _trust(existing)
    for field_name in ("title", "summary"):
        incoming = getattr(candidate, field_name)
        if _take_text(getattr(existing, field_name), incoming, existing=existing, outranks=outranks):
            setattr(merged, field_name, incoming)

    tags = merge_tags(existing.tags, candidate.tags)
    if tags != existing.tags:
        merged.tags = tags

    content = merge_content(existing.content, candidate.content)
    if content != existing.content:
        merged.content = content

    for key, value in (candidate.model_extra or {}).items():
        if key not in (existing.model_extra or {}):
            setattr(merged, key, value)

    merged.created_at = existing.created_at or candidate.created_at or now
    merged.updated_at = latest(existing.updated_at, now)
    return merged


def upsert(items: ItemCollection, candidate: Item, *, now: str | None = None) -> tuple[Item, bool]:
    """Insert ``candidate`` or merge it into the stored item with the same id.

    Returns the stored item and whether an existing item was updated.
    """
    expected_id = derive_id(candidate.canonical_url)
    if candidate.id != expected_id:
        raise ValueError(f"item id {candidate.id} does not match canonical url (expected {expected_id})")

    timestamp = now or iso_now()
    existing = items.match(candidate.id, candidate.canonical_url)
    if existing is None:
        stored = candidate.model_copy(deep=True)
        if stored.created_at is None:
            stored.created_at = timestamp
        tags = merge_tags(stored.tags)
        if tags != stored.tags:
            stored.tags = tags
        items.add(stored)
        return stored, False

    if existing.id != candidate.id:
        # ids never change; the stored legacy id wins
        candidate = candidate.model_copy(deep=True)
        candidate.id = existing.id
    merged = merge_items(existing, candidate, now=timestamp)
    items.replace(merged)
    return merged, True


def _trust(item: Item) -> int:
    return SOURCE_TRUST.get(item.source_type or "", 0)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict, tuple, set)):
        return len(value) == 0
    return False


def _is_placeholder(value: str | None, item: Item) -> bool:
    text = (value or "").strip()
    return not text or text in {item.url, item.canonical_url}


def _take_text(current: str | None, incoming: str | None, *, existing: Item, outranks: bool) -> bool:
    if not (incoming or "").strip() or incoming == current:
        return False
    if not (current or "").strip():
        return True
    incoming_placeholder = _is_placeholder(incoming, existing)
    if _is_placeholder(current, existing):
        return not incoming_placeholder
    return outranks and not incoming_placeholder


def transition(item: Item, status: Status | str, *, now: str, **updates: Any) -> Item:
    """Return a copy of ``item`` moved to ``status``; invalid edges raise."""
    target = require_transition(item.status, status)
    changed = item.model_copy(deep=True)
    changed.status = target.value
    changed.updated_at = latest(item.updated_at, now)
    for key, value in updates.items():
        setattr(changed, key, value)
    return changed
