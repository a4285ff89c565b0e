from __future__ import annotations

import hashlib
import re
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

TRACKING_KEYS = {"ref", "ref_src", "fbclid", "gclid", "igshid"}
ITEM_ID_PREFIX = "tool_"
ITEM_ID_LENGTH = 12

_URL_RE = re.compile(r"https?://[^\s)\]}>\"']+")
_GITHUB_REPO_RE = re.compile(r"https?://github\.com/[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+(?:/[A-Za-z0-9_./-]+)?")


def _is_tracking_param(key: str) -> bool:
    lowered = key.lower()
    return lowered.startswith("utm_") or lowered in TRACKING_KEYS


def canonicalize(raw_url: str) -> str:
    """Normalize a URL into the dedup key used for item identity.

    Unparseable input is returned unchanged so one bad link never aborts a run.
    """
    return _normalize(raw_url, fold_path_case=True)


def link_url(raw_url: str) -> str:
    """Normalize a URL for posting and fetching, keeping the case of its path."""
    return _normalize(raw_url, fold_path_case=False)


def _normalize(raw_url: str, *, fold_path_case: bool) -> str:
    candidate = raw_url.strip()
    try:
        parsed = urlparse(candidate)
        port = parsed.port
    except ValueError:
        return raw_url
    if not parsed.scheme or not parsed.netloc:
        return raw_url

    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "").lower()
    if not host:
        return raw_url
    if scheme == "http":
        scheme = "https"
        if port == 80:
            port = None
    if scheme == "https" and port == 443:
        port = None

    netloc = host if port is None else f"{host}:{port}"
    if ":" in host:
        netloc = f"[{host}]" if port is None else f"[{host}]:{port}"
    if parsed.username or parsed.password:
        userinfo = parsed.username or ""
        if parsed.password:
            userinfo = f"{userinfo}:{parsed.password}"
        netloc = f"{userinfo}@{netloc}"

    path = (parsed.path.lower() if fold_path_case else parsed.path) or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    filtered_query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    filtered_query_pairs.sort(key=lambda pair: pair[0])
    query = urlencode(filtered_query_pairs, doseq=True)

    return urlunparse((scheme, netloc, path, parsed.params, query, ""))


def derive_id(canonical_url: str) -> str:
    digest = hashlib.sha1(canonical_url.encode("utf-8")).hexdigest()
    return f"{ITEM_ID_PREFIX}{digest[:ITEM_ID_LENGTH]}"


def item_id_for(raw_url: str) -> str:
    return derive_id(canonicalize(raw_url))


def extract_urls(text: str | None) -> list[str]:
    if not text:
        return []
    found: dict[str, None] = {}
    for match in _URL_RE.finditer(text):
        found.setdefault(match.group(0), None)
    return list(found)


def extract_github_repo_urls(text: str | None) -> list[str]:
    """Return ``https://github.com/OWNER/REPO`` roots for every repo link in ``text``."""
    found: dict[str, None] = {}
    for match in _GITHUB_REPO_RE.finditer(text or ""):
        parts = [part for part in urlparse(match.group(0)).path.split("/") if part]
        if len(parts) >= 2:
            found.setdefault(f"https://github.com/{parts[0]}/{parts[1]}", None)
    return list(found)


def parse_github_repo(url: str) -> tuple[str, str]:
    parsed = urlparse(url)
    if (parsed.hostname or "").lower() != "github.com":
        raise ValueError(f"not a github.com URL: {url}")
    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) < 2:
        raise ValueError(f"expected github.com/OWNER/REPO, got: {url}")
    return parts[0], parts[1]


def display_host_path(url: str) -> str | None:
    parsed = urlparse(url)
    if not parsed.hostname:
        return None
    host = parsed.hostname.removeprefix("www.")
    path = parsed.path if parsed.path and parsed.path != "/" else ""
    return f"{host}{path}"


def is_web_url(raw_url: str) -> bool:
    try:
        parsed = urlparse(raw_url.strip())
        parsed.port
    except ValueError:
        return False
    return parsed.scheme.lower() in {"http", "https"} and bool(parsed.hostname)
