from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from opentelemetry import trace

from postsoma.core.lifecycle import Status
from postsoma.core.outcome import RunOutcome
from postsoma.core.timestamps import iso_now
from postsoma.core.urls import canonicalize, derive_id, extract_github_repo_urls, parse_github_repo
from postsoma.schemas.items import DEFAULT_LANGUAGE, IssueSource, Item
from postsoma.services.gemini import Enrichment, GeminiClient
from postsoma.services.github import GitHubApiError, GitHubClient, RepoMeta
from postsoma.services.merge import upsert
from postsoma.services.notes import render_repo_note, write_note
from postsoma.services.store import ItemStore, StoreConflictError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_REPO_TAGS = ["dev/open-source"]
NO_LINKS_COMMENT = "No GitHub repo links found in this issue."


def build_repo_item(
    *,
    url: str,
    canonical_url: str,
    owner: str,
    repo: str,
    issue_number: int,
    meta: RepoMeta,
    enrichment: Enrichment | None,
    now: str,
) -> Item:
    return Item(
        id=derive_id(canonical_url),
        url=url,
        canonical_url=canonical_url,
        title=meta.full_name or f"{owner}/{repo}",
        summary=(enrichment.summary if enrichment else None) or meta.description or None,
        tags=(enrichment.tags if enrichment and enrichment.tags else list(DEFAULT_REPO_TAGS)),
        language=DEFAULT_LANGUAGE,
        source=IssueSource(type="github", owner=owner, repo=repo, issue=issue_number),
        status=Status.ENRICHED,
        created_at=now,
        updated_at=now,
        content={
            "highlights": enrichment.highlights if enrichment else [],
            "repo": url,
            "metrics": meta.metrics(),
        },
    )


def render_results_comment(results: list[dict[str, Any]]) -> str:
    lines = [
        f"- {row['repo']} → {row['id']} {'(updated)' if row['updated'] else '(new)'}\n  {row['url']}"
        for row in results
    ]
    return "Saved to database:\n\n" + "\n".join(lines)


async def run_issue_ingest(
    *,
    store: ItemStore,
    github: GitHubClient,
    repo_slug: str,
    issue_number: int,
    notes_dir: Path,
    enricher: GeminiClient | None = None,
) -> RunOutcome:
    with tracer.start_as_current_span("driver.issue_ingest") as span:
        span.set_attribute("issue.number", issue_number)
        try:
            issue = await github.get_issue(repo_slug, issue_number)
        except GitHubApiError as exc:
            logger.error("issue fetch failed: %s", exc)
            return RunOutcome.fatal(str(exc), stage="get_issue", issue=issue_number)

        text = f"{issue.get('title') or ''}\n\n{issue.get('body') or ''}"
        urls = extract_github_repo_urls(text)
        if not urls:
            try:
                await github.create_comment(repo_slug, issue_number, NO_LINKS_COMMENT)
            except GitHubApiError as exc:
                return RunOutcome.fatal(str(exc), stage="comment", issue=issue_number)
            return RunOutcome.noop("no_repo_links", issue=issue_number)

        items = store.load()
        now = iso_now()
        results: list[dict[str, Any]] = []
        notes: list[tuple[str, str]] = []

        for url in urls:
            canonical = canonicalize(url)
            owner, repo = parse_github_repo(canonical)
            with tracer.start_as_current_span("issue_ingest.repo") as repo_span:
                repo_span.set_attribute("repo", f"{owner}/{repo}")
                try:
                    meta = await github.get_repo_meta(owner, repo)
                except GitHubApiError as exc:
                    logger.error("repo metadata fetch failed repo=%s/%s: %s", owner, repo, exc)
                    return RunOutcome.fatal(str(exc), stage="get_repo", issue=issue_number, repo=f"{owner}/{repo}")

                enrichment = None
                if enricher is not None:
                    enrichment = await enricher.enrich(url=url, title=meta.full_name, description=meta.description)

                candidate = build_repo_item(
                    url=url,
                    canonical_url=canonical,
                    owner=owner,
                    repo=repo,
                    issue_number=issue_number,
                    meta=meta,
                    enrichment=enrichment,
                    now=now,
                )
                stored, was_update = upsert(items, candidate, now=now)

            notes.append((stored.id, render_repo_note(meta=meta, enrichment=enrichment, url=url)))
            results.append({"id": stored.id, "repo": meta.full_name, "url": url, "updated": was_update})

        try:
            store.save(items)
        except StoreConflictError as exc:
            logger.error("issue ingest lost the log race: %s", exc)
            return RunOutcome.fatal(str(exc), stage="save", issue=issue_number)

        for item_id, note in notes:
            write_note(notes_dir, item_id, note)

        try:
            await github.create_comment(repo_slug, issue_number, render_results_comment(results))
            await github.close_issue(repo_slug, issue_number)
        except GitHubApiError as exc:
            logger.error("issue follow-up failed after save: %s", exc)
            return RunOutcome.fatal(str(exc), stage="comment", issue=issue_number, items=results)

        logger.info("issue ingest issue=%s items=%s", issue_number, len(results))
        return RunOutcome.ok(issue=issue_number, items=results, skipped_lines=items.skipped_lines)
