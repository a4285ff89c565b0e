from __future__ import annotations

import httpx


class UpstreamError(Exception):
    """A required call to an external API failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def response_failure(label: str, response: httpx.Response, *, limit: int = 500) -> str:
    try:
        body = response.text[:limit]
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        body = ""
    return f"{label} failed: {response.status_code} {body}".rstrip()
