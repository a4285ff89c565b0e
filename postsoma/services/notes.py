from __future__ import annotations

from pathlib import Path

from postsoma.services.gemini import Enrichment
from postsoma.services.github import RepoMeta


def render_repo_note(*, meta: RepoMeta, enrichment: Enrichment | None, url: str) -> str:
    highlights = enrichment.highlights if enrichment else []
    tags = enrichment.tags if enrichment else []
    summary = (enrichment.summary if enrichment else None) or meta.description or ""
    highlight_lines = "\n".join(f"- {value}" for value in highlights) if highlights else "- (auto)"

    return (
        f"# {meta.full_name}\n\n"
        f"**Summary:** {summary}\n\n"
        f"## Highlights\n{highlight_lines}\n\n"
        "## Metadata\n"
        f"- Stars: {meta.stars}\n"
        f"- Forks: {meta.forks}\n"
        f"- Language: {meta.language or 'unknown'}\n"
        f"- License: {meta.license or 'unknown'}\n"
        f"- Updated: {meta.updated_at}\n\n"
        f"## Tags\n{', '.join(tags) if tags else '(none)'}\n\n"
        f"## Link\n{url}\n"
    )


def write_note(notes_dir: Path, item_id: str, text: str) -> Path:
    notes_dir.mkdir(parents=True, exist_ok=True)
    path = notes_dir / f"{item_id}.md"
    path.write_text(text, encoding="utf-8")
    return path
