from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import httpx

from postsoma.core.outcome import RunOutcome
from postsoma.core.urls import canonicalize, derive_id
from postsoma.jobs.inbox_ingest import candidates_from_update
from postsoma.jobs.issue_ingest import NO_LINKS_COMMENT, run_issue_ingest
from postsoma.services.collection import ItemCollection
from postsoma.services.gemini import GeminiClient
from postsoma.services.github import GitHubClient
from postsoma.services.merge import upsert
from postsoma.services.store import InMemoryItemStore, render_lines

REPO_SLUG = "acme/postsoma-data"
ISSUE_NUMBER = 7

REPOS = {
    "owner/repo": {
        "full_name": "Owner/Repo",
        "description": "A repo for agents.",
        "stargazers_count": 10,
        "forks_count": 2,
        "language": "Python",
        "license": {"spdx_id": "MIT"},
        "updated_at": "2025-04-01T00:00:00Z",
        "pushed_at": "2025-04-02T00:00:00Z",
        "topics": ["agents"],
    },
    "other/lib": {
        "full_name": "other/lib",
        "description": None,
        "stargazers_count": 1,
        "forks_count": 0,
        "language": None,
        "license": None,
        "updated_at": "2025-04-03T00:00:00Z",
        "pushed_at": "2025-04-03T00:00:00Z",
    },
}


class FakeGitHub:
    def __init__(self, issue: dict[str, Any], *, repo_status: int = 200) -> None:
        self.issue = issue
        self.repo_status = repo_status
        self.comments: list[str] = []
        self.patches: list[dict[str, Any]] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "GET" and path == f"/repos/{REPO_SLUG}/issues/{ISSUE_NUMBER}":
            return httpx.Response(status_code=200, json=self.issue, request=request)
        if request.method == "POST" and path == f"/repos/{REPO_SLUG}/issues/{ISSUE_NUMBER}/comments":
            self.comments.append(json.loads(request.content)["body"])
            return httpx.Response(status_code=201, json={"id": len(self.comments)}, request=request)
        if request.method == "PATCH" and path == f"/repos/{REPO_SLUG}/issues/{ISSUE_NUMBER}":
            self.patches.append(json.loads(request.content))
            return httpx.Response(status_code=200, json={"state": "closed"}, request=request)
        if request.method == "GET" and path.startswith("/repos/"):
            key = path.removeprefix("/repos/")
            if self.repo_status != 200 or key not in REPOS:
                return httpx.Response(status_code=self.repo_status or 404, text="Not Found", request=request)
            return httpx.Response(status_code=200, json=REPOS[key], request=request)
        return httpx.Response(status_code=404, request=request)

    def client(self) -> GitHubClient:
        return GitHubClient("gh-token", transport=httpx.MockTransport(self.handler))


def _run(
    store: InMemoryItemStore,
    github: FakeGitHub,
    notes_dir: Path,
    enricher: GeminiClient | None = None,
) -> RunOutcome:
    return asyncio.run(
        run_issue_ingest(
            store=store,
            github=github.client(),
            repo_slug=REPO_SLUG,
            issue_number=ISSUE_NUMBER,
            notes_dir=notes_dir,
            enricher=enricher,
        )
    )


def _inbox_log(text: str) -> InMemoryItemStore:
    items = ItemCollection()
    update = {
        "update_id": 1,
        "message": {"message_id": 5, "date": 1735689600, "chat": {"id": -1001}, "text": text},
    }
    for candidate in candidates_from_update(update, inbox_chat_id="-1001")[0]:
        upsert(items, candidate)
    return InMemoryItemStore(render_lines(items))


def test_issue_ingest_merges_into_inbox_item_and_inserts_new_repo(tmp_path: Path) -> None:
    store = _inbox_log("https://github.com/Owner/Repo/?utm_source=chat")
    github = FakeGitHub(
        {"title": "Add https://github.com/Owner/Repo/tree/main", "body": "and https://github.com/other/lib please"}
    )

    outcome = _run(store, github, tmp_path / "notes")

    assert outcome.status == "ok"
    results = outcome.summary["items"]
    assert [(row["repo"], row["updated"]) for row in results] == [("Owner/Repo", True), ("other/lib", False)]
    assert store.saves == 1

    lines = {line["id"]: line for line in map(json.loads, store.text.splitlines())}
    merged = lines[derive_id("https://github.com/owner/repo")]
    assert merged["status"] == "enriched"
    assert merged["title"] == "Owner/Repo"
    assert merged["summary"] == "A repo for agents."
    assert merged["source"]["type"] == "tg"
    assert merged["created_at"] == "2025-01-01T00:00:00.000Z"
    assert merged["url"] == "https://github.com/Owner/Repo/?utm_source=chat"
    assert merged["tags"] == ["dev/open-source"]
    assert merged["content"]["metrics"]["stars"] == 10
    assert merged["content"]["metrics"]["license"] == "MIT"

    created = lines[derive_id("https://github.com/other/lib")]
    assert created["source"] == {"type": "github", "owner": "other", "repo": "lib", "issue": ISSUE_NUMBER}
    assert created["summary"] is None
    assert created["created_at"] == created["updated_at"]

    assert len(github.comments) == 1
    assert github.comments[0].startswith("Saved to database:")
    assert "(updated)" in github.comments[0] and "(new)" in github.comments[0]
    assert github.patches == [{"state": "closed"}]
    assert sorted(path.name for path in (tmp_path / "notes").iterdir()) == sorted(
        f"{item_id}.md" for item_id in lines
    )
    note = (tmp_path / "notes" / f"{merged['id']}.md").read_text(encoding="utf-8")
    assert note.startswith("# Owner/Repo\n\n**Summary:** A repo for agents.")


def test_equivalent_links_from_separate_messages_resolve_to_one_item() -> None:
    inbox_store = _inbox_log("https://Example.com/Page/?utm_source=x")
    items = inbox_store.load()
    second_candidate = candidates_from_update(
        {"update_id": 2, "message": {"message_id": 6, "chat": {"id": -1001}, "text": "https://example.com/page"}},
        inbox_chat_id="-1001",
    )[0][0]

    _, was_update = upsert(items, second_candidate)

    assert second_candidate.id == derive_id(canonicalize("https://Example.com/Page/?utm_source=x"))
    assert was_update is True
    assert len(items) == 1


def test_issue_without_repo_links_comments_and_stops(tmp_path: Path) -> None:
    store = InMemoryItemStore()
    github = FakeGitHub({"title": "Nice site", "body": "https://example.com only"})

    outcome = _run(store, github, tmp_path / "notes")

    assert outcome.status == "noop"
    assert outcome.summary["reason"] == "no_repo_links"
    assert github.comments == [NO_LINKS_COMMENT]
    assert github.patches == []
    assert store.saves == 0


def test_issue_ingest_aborts_when_repo_metadata_fails(tmp_path: Path) -> None:
    store = InMemoryItemStore()
    github = FakeGitHub({"title": "https://github.com/owner/repo", "body": None}, repo_status=500)

    outcome = _run(store, github, tmp_path / "notes")

    assert outcome.status == "fatal"
    assert "GitHub API GET repos/owner/repo failed: 500" in outcome.summary["error"]
    assert store.saves == 0
    assert github.comments == []
    assert not (tmp_path / "notes").exists()


def test_issue_ingest_uses_llm_enrichment_when_available(tmp_path: Path) -> None:
    reply = {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {
                            "text": '```json\n{"summary": "Agent toolkit.", "highlights": ["Fast", "Typed"], '
                            '"tags": ["AI/Agents ", "dev/cli"]}\n```'
                        }
                    ]
                }
            }
        ]
    }

    async def gemini_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=200, json=reply, request=request)

    store = InMemoryItemStore()
    github = FakeGitHub({"title": "https://github.com/owner/repo", "body": ""})
    enricher = GeminiClient("gemini-key", transport=httpx.MockTransport(gemini_handler))

    outcome = _run(store, github, tmp_path / "notes", enricher=enricher)

    assert outcome.status == "ok"
    line = json.loads(store.text.splitlines()[0])
    assert line["summary"] == "Agent toolkit."
    assert line["tags"] == ["ai/agents", "dev/cli"]
    assert line["content"]["highlights"] == ["Fast", "Typed"]
