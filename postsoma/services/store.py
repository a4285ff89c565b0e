from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from postsoma.core.timestamps import iso_now
from postsoma.schemas.items import Item
from postsoma.services.collection import ItemCollection
from postsoma.services.merge import merge_items

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base record store error."""


class StoreConflictError(StoreError):
    """Raised when the log changed on disk between load and save."""


class ItemStore(Protocol):
    def load(self) -> ItemCollection: ...

    def save(self, items: ItemCollection) -> None: ...


def parse_lines(data: str | bytes) -> ItemCollection:
    """Parse JSONL into a collection.

    Lines that cannot be decoded or are not JSON objects are dropped; JSON
    objects that fail item validation are kept verbatim. Both are counted in
    ``skipped_lines``.
    """
    items = ItemCollection()
    raw_lines = data.split(b"\n") if isinstance(data, bytes) else data.split("\n")
    for line_number, raw in enumerate(raw_lines, start=1):
        try:
            line = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        except UnicodeDecodeError as exc:
            items.skipped_lines += 1
            logger.warning("dropping undecodable log line=%s: %s", line_number, exc.reason)
            continue
        if not line.strip():
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as exc:
            items.skipped_lines += 1
            logger.warning("dropping unparseable log line=%s: %s", line_number, exc.msg)
            continue
        if not isinstance(payload, dict):
            items.skipped_lines += 1
            logger.warning("dropping non-object log line=%s", line_number)
            continue
        try:
            item = Item.model_validate(payload)
        except ValidationError as exc:
            items.skipped_lines += 1
            items.add_opaque(payload)
            logger.warning("keeping invalid item verbatim line=%s: %s", line_number, _first_line(exc))
            continue

        existing = items.get(item.id)
        if existing is None:
            items.add(item)
            continue
        logger.warning("collapsing duplicate item id=%s at line=%s", item.id, line_number)
        merged_at = item.updated_at or existing.updated_at or existing.created_at or iso_now()
        items.replace(merge_items(existing, item, now=merged_at))
    return items


def render_lines(items: ItemCollection) -> str:
    lines = [json.dumps(record, ensure_ascii=False, separators=(",", ":")) for record in items.records()]
    return "\n".join(lines) + "\n" if lines else ""


class JsonlItemStore:
    """The append-only tools log, read whole and rewritten whole on every save."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._loaded_digest: str | None = None

    def load(self) -> ItemCollection:
        raw = self._read_bytes()
        self._loaded_digest = _digest(raw)
        if raw is None:
            return ItemCollection()
        items = parse_lines(raw)
        logger.info(
            "loaded items=%s skipped_lines=%s kept_verbatim=%s path=%s",
            len(items),
            items.skipped_lines,
            items.opaque_count,
            self.path,
        )
        return items

    def save(self, items: ItemCollection) -> None:
        current_digest = _digest(self._read_bytes())
        if current_digest != self._loaded_digest:
            raise StoreConflictError(f"{self.path} changed on disk since it was loaded; rerun to pick up the new state")

        content = render_lines(items).encode("utf-8")
        _atomic_write(self.path, content)
        self._loaded_digest = _digest(content)
        logger.info("saved items=%s path=%s", len(items), self.path)

    def _read_bytes(self) -> bytes | None:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None


class InMemoryItemStore:
    """Store backed by a string buffer, used by tests and dry runs."""

    def __init__(self, text: str = "") -> None:
        self.text = text
        self.saves = 0

    def load(self) -> ItemCollection:
        return parse_lines(self.text)

    def save(self, items: ItemCollection) -> None:
        self.text = render_lines(items)
        self.saves += 1


class CursorStore:
    """Persists the last acknowledged inbox update id."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> int | None:
        try:
            payload: Any = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("ignoring unreadable cursor state path=%s: %s", self.path, exc)
            return None
        value = payload.get("last_update_id") if isinstance(payload, dict) else None
        return value if isinstance(value, int) and not isinstance(value, bool) else None

    def save(self, last_update_id: int) -> None:
        content = json.dumps({"last_update_id": last_update_id}, indent=2) + "\n"
        _atomic_write(self.path, content.encode("utf-8"))


def _atomic_write(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(tmp_fd, "wb") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _digest(raw: bytes | None) -> str | None:
    if raw is None:
        return None
    return hashlib.sha256(raw).hexdigest()


def _first_line(exc: Exception) -> str:
    return str(exc).splitlines()[0] if str(exc) else exc.__class__.__name__
