from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any

import httpx

from postsoma.services.upstream import UpstreamError, response_failure

GITHUB_API_BASE_URL = "https://api.github.com"


class GitHubApiError(UpstreamError):
    """Raised when a GitHub REST call answers with a non-success status."""


@dataclass(slots=True)
class RepoMeta:
    full_name: str
    description: str | None
    stars: int | None
    forks: int | None
    language: str | None
    license: str | None
    updated_at: str | None
    pushed_at: str | None
    topics: list[str] = field(default_factory=list)
    homepage: str | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> RepoMeta:
        license_info = payload.get("license") if isinstance(payload.get("license"), dict) else {}
        topics = payload.get("topics")
        return cls(
            full_name=str(payload.get("full_name") or ""),
            description=payload.get("description"),
            stars=payload.get("stargazers_count"),
            forks=payload.get("forks_count"),
            language=payload.get("language"),
            license=license_info.get("spdx_id") or license_info.get("key"),
            updated_at=payload.get("updated_at"),
            pushed_at=payload.get("pushed_at"),
            topics=[str(topic) for topic in topics] if isinstance(topics, list) else [],
            homepage=payload.get("homepage") or None,
        )

    def metrics(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            key: data[key]
            for key in ("stars", "forks", "language", "license", "updated_at", "pushed_at")
        }


class GitHubClient:
    def __init__(
        self,
        token: str,
        *,
        timeout_seconds: float = 15.0,
        user_agent: str = "PostSomaBot/1.0",
        base_url: str = GITHUB_API_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": user_agent,
        }

    async def get_issue(self, repo_slug: str, issue_number: int) -> dict[str, Any]:
        return await self._request("GET", f"repos/{repo_slug}/issues/{issue_number}")

    async def get_repo_meta(self, owner: str, repo: str) -> RepoMeta:
        return RepoMeta.from_api(await self._request("GET", f"repos/{owner}/{repo}"))

    async def create_comment(self, repo_slug: str, issue_number: int, body: str) -> dict[str, Any]:
        return await self._request("POST", f"repos/{repo_slug}/issues/{issue_number}/comments", body={"body": body})

    async def close_issue(self, repo_slug: str, issue_number: int) -> dict[str, Any]:
        return await self._request("PATCH", f"repos/{repo_slug}/issues/{issue_number}", body={"state": "closed"})

    async def _request(self, method: str, path: str, *, body: dict[str, Any] | None = None) -> dict[str, Any]:
        label = f"GitHub API {method} {path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.request(method, f"{self.base_url}/{path}", json=body, headers=self.headers)
        except httpx.HTTPError as exc:
            raise GitHubApiError(f"{label} request failed: {exc.__class__.__name__}") from exc

        if not response.is_success:
            raise GitHubApiError(response_failure(label, response), status_code=response.status_code)
        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise GitHubApiError(f"{label} returned invalid JSON") from exc
        return payload if isinstance(payload, dict) else {}
