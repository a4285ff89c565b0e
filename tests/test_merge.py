from __future__ import annotations

from typing import Any

import pytest

from postsoma.core.lifecycle import InvalidTransitionError, Status
from postsoma.core.urls import canonicalize, derive_id
from postsoma.schemas.items import Item, Published
from postsoma.services.collection import ItemCollection
from postsoma.services.merge import merge_content, merge_tags, normalize_tag, transition, upsert


def _item(url: str, source: dict[str, Any] | None = None, **fields: Any) -> Item:
    canonical = canonicalize(url)
    payload: dict[str, Any] = {
        "id": derive_id(canonical),
        "url": url,
        "canonical_url": canonical,
        "title": canonical,
        "summary": None,
        "tags": [],
        "language": "en",
        "source": source or {"type": "tg", "chat_id": "-100", "message_id": "1", "author": None},
        "status": "inbox",
        "created_at": "2025-01-01T00:00:00.000Z",
        "updated_at": None,
    }
    payload.update(fields)
    return Item.model_validate(payload)


GITHUB_SOURCE = {"type": "github", "owner": "owner", "repo": "repo", "issue": 3}
MANUAL_SOURCE = {"type": "manual", "author": "editor"}


def test_normalize_tag_lowercases_trims_and_sanitizes() -> None:
    assert normalize_tag("AI/Agents ") == "ai/agents"
    assert normalize_tag("  Dev Tools//CLI!") == "dev-tools/cli"
    assert normalize_tag("---") == ""


def test_merge_tags_unions_normalized_and_caps() -> None:
    assert merge_tags(["AI/Agents "], ["ai/agents", "dev//cli"]) == ["ai/agents", "dev/cli"]
    assert merge_tags([f"t{index}" for index in range(8)]) == ["t0", "t1", "t2", "t3", "t4"]


def test_merge_content_is_additive_and_ignores_empty_values() -> None:
    existing = {"highlights": ["a"], "metrics": {"stars": 1, "forks": 2}}
    merged = merge_content(existing, {"metrics": {"stars": 5}, "highlights": [], "best_for": "teams"})

    assert merged == {"highlights": ["a"], "metrics": {"stars": 5, "forks": 2}, "best_for": "teams"}
    assert existing == {"highlights": ["a"], "metrics": {"stars": 1, "forks": 2}}


def test_upsert_inserts_new_item_and_fills_created_at() -> None:
    items = ItemCollection()
    candidate = _item("https://example.com/new", created_at=None, tags=["AI/Agents "])

    stored, was_update = upsert(items, candidate, now="2025-03-01T00:00:00.000Z")

    assert was_update is False
    assert stored.created_at == "2025-03-01T00:00:00.000Z"
    assert stored.tags == ["ai/agents"]
    assert items.ids() == [candidate.id]


def test_upsert_twice_only_advances_updated_at() -> None:
    candidate = _item(
        "https://example.com/tool",
        source=GITHUB_SOURCE,
        title="owner/repo",
        summary="A tool.",
        tags=["dev/cli"],
        content={"highlights": ["quick"], "metrics": {"stars": 1}},
    )
    once = ItemCollection()
    upsert(once, candidate, now="2025-03-01T00:00:00.000Z")
    twice = ItemCollection()
    upsert(twice, candidate, now="2025-03-01T00:00:00.000Z")
    upsert(twice, candidate, now="2025-03-02T00:00:00.000Z")

    first = once.get(candidate.id).to_record()
    second = twice.get(candidate.id).to_record()
    assert second.pop("updated_at") == "2025-03-02T00:00:00.000Z"
    first.pop("updated_at")
    assert second == first


def test_reingest_never_changes_created_at_or_id() -> None:
    items = ItemCollection([_item("https://example.com/page", created_at="2024-05-05T00:00:00.000Z")])
    candidate = _item("http://EXAMPLE.com/page/?utm_source=feed", created_at="2025-05-05T00:00:00.000Z")

    stored, was_update = upsert(items, candidate, now="2025-06-01T00:00:00.000Z")

    assert was_update is True
    assert stored.id == derive_id("https://example.com/page")
    assert stored.created_at == "2024-05-05T00:00:00.000Z"
    assert stored.url == "https://example.com/page"
    assert len(items) == 1


def test_merge_with_subset_of_fields_keeps_existing_content() -> None:
    items = ItemCollection([_item("https://example.com/x", content={"highlights": ["keep me"]}, summary="Curated.")])
    candidate = _item("https://example.com/x", tags=["x"], summary=None)

    stored, _ = upsert(items, candidate, now="2025-06-01T00:00:00.000Z")

    assert stored.content == {"highlights": ["keep me"]}
    assert stored.summary == "Curated."
    assert stored.tags == ["x"]


def test_higher_trust_source_replaces_placeholder_and_inbox_text() -> None:
    items = ItemCollection([_item("https://github.com/owner/repo", summary="posted from chat")])
    candidate = _item(
        "https://github.com/owner/repo",
        source=GITHUB_SOURCE,
        title="owner/repo",
        summary="Structured repo description.",
        status="enriched",
    )

    stored, _ = upsert(items, candidate, now="2025-06-01T00:00:00.000Z")

    assert stored.title == "owner/repo"
    assert stored.summary == "Structured repo description."
    assert stored.status == "enriched"
    assert stored.source.type == "tg"


def test_lower_trust_source_never_degrades_curated_text() -> None:
    items = ItemCollection(
        [_item("https://example.com/curated", source=MANUAL_SOURCE, title="Editor's pick", summary="Hand written.")]
    )
    candidate = _item("https://example.com/curated", source=GITHUB_SOURCE, title="owner/repo", summary="Auto text.")

    stored, _ = upsert(items, candidate, now="2025-06-01T00:00:00.000Z")

    assert stored.title == "Editor's pick"
    assert stored.summary == "Hand written."
    assert stored.source.type == "manual"


def test_merge_never_moves_status_backwards() -> None:
    published = {"channel": "telegram", "post_id": "4", "posted_at": "2025-02-01T00:00:00.000Z"}
    items = ItemCollection([_item("https://example.com/done", status="posted", published=published)])
    candidate = _item("https://example.com/done", source=GITHUB_SOURCE, status="enriched")

    stored, _ = upsert(items, candidate, now="2025-06-01T00:00:00.000Z")

    assert stored.status == "posted"
    assert stored.published is not None and stored.published.post_id == "4"


def test_updated_at_never_moves_backwards() -> None:
    items = ItemCollection([_item("https://example.com/late", updated_at="2030-01-01T00:00:00.000Z")])
    stored, _ = upsert(items, _item("https://example.com/late"), now="2025-06-01T00:00:00.000Z")
    assert stored.updated_at == "2030-01-01T00:00:00.000Z"


def test_upsert_rejects_id_not_derived_from_canonical_url() -> None:
    candidate = _item("https://example.com/a", id="tool_000000000000")
    with pytest.raises(ValueError):
        upsert(ItemCollection(), candidate)


def test_transition_marks_posted_and_rejects_reversal() -> None:
    item = _item("https://example.com/pub")
    published = Published(channel="telegram", post_id="12", posted_at="2025-06-01T00:00:00.000Z")

    posted = transition(item, Status.POSTED, now="2025-06-01T00:00:00.000Z", published=published)

    assert posted.status == "posted"
    assert posted.updated_at == "2025-06-01T00:00:00.000Z"
    assert posted.to_record()["published"] == {
        "channel": "telegram",
        "post_id": "12",
        "posted_at": "2025-06-01T00:00:00.000Z",
    }
    assert item.status == "inbox"
    with pytest.raises(InvalidTransitionError):
        transition(posted, Status.INBOX, now="2025-06-02T00:00:00.000Z")


def test_upsert_matches_item_stored_under_a_legacy_id() -> None:
    published = {"channel": "telegram", "post_id": "8", "posted_at": "2024-12-01T00:00:00.000Z"}
    legacy = _item("https://github.com/Foo/Bar", status="posted", published=published).model_copy(
        update={"id": "tool_1a2b3c4d5e6f", "canonical_url": "https://github.com/Foo/Bar"}
    )
    items = ItemCollection([legacy])
    candidate = _item("https://github.com/Foo/Bar/?utm_source=chat")

    stored, was_update = upsert(items, candidate, now="2025-06-01T00:00:00.000Z")

    assert was_update is True
    assert len(items) == 1
    assert stored.id == "tool_1a2b3c4d5e6f"
    assert stored.canonical_url == "https://github.com/Foo/Bar"
    assert stored.status == "posted"
    assert items.ids() == ["tool_1a2b3c4d5e6f"]
