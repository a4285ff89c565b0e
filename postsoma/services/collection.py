from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

from postsoma.core.urls import canonicalize
from postsoma.schemas.items import Item


class ItemCollection:
    """Ordered, id-keyed view of the log held in memory for one run.

    Log lines that are JSON objects but not valid items are kept as opaque
    rows in their log position so a save writes them back unchanged.
    """

    def __init__(self, items: Iterable[Item] = (), *, skipped_lines: int = 0) -> None:
        self._items: dict[str, Item] = {}
        self._rows: list[str | dict[str, Any]] = []
        self._by_canonical: dict[str, str] = {}
        self._opaque_ids: set[str] = set()
        self._opaque_canonicals: set[str] = set()
        self.skipped_lines = skipped_lines
        for item in items:
            self.add(item)

    def __iter__(self) -> Iterator[Item]:
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items or item_id in self._opaque_ids

    def get(self, item_id: str) -> Item | None:
        return self._items.get(item_id)

    def match(self, item_id: str, canonical_url: str) -> Item | None:
        """Find the stored item for ``item_id``, or one whose URL canonicalizes the same.

        Older logs hold ids derived from an earlier canonical form; those items
        keep their ids and are matched through their canonical URL instead.
        """
        item = self._items.get(item_id)
        if item is not None:
            return item
        equivalent = self._by_canonical.get(canonicalize(canonical_url))
        return self._items.get(equivalent) if equivalent else None

    def add(self, item: Item) -> None:
        if item.id in self._items:
            raise KeyError(f"duplicate item id: {item.id}")
        self._items[item.id] = item
        self._rows.append(item.id)
        self._by_canonical.setdefault(canonicalize(item.canonical_url or item.url), item.id)

    def add_opaque(self, record: dict[str, Any]) -> None:
        self._rows.append(record)
        if isinstance(record.get("id"), str):
            self._opaque_ids.add(record["id"])
        url = record.get("canonical_url") or record.get("url")
        if isinstance(url, str) and url:
            self._opaque_canonicals.add(canonicalize(url))

    def knows(self, item_id: str, canonical_url: str) -> bool:
        """Whether any row, valid or opaque, already stands for this link."""
        if item_id in self or self.match(item_id, canonical_url) is not None:
            return True
        return canonicalize(canonical_url) in self._opaque_canonicals

    def replace(self, item: Item) -> None:
        if item.id not in self._items:
            raise KeyError(f"unknown item id: {item.id}")
        self._items[item.id] = item

    def first(self, *, statuses: Iterable[str]) -> Item | None:
        wanted = set(statuses)
        return next((item for item in self._items.values() if item.status in wanted), None)

    def ids(self) -> list[str]:
        return list(self._items)

    def records(self) -> Iterator[dict[str, Any]]:
        """Every row in log order: items as records, opaque rows verbatim."""
        for row in self._rows:
            yield self._items[row].to_record() if isinstance(row, str) else row

    @property
    def opaque_count(self) -> int:
        return sum(1 for row in self._rows if isinstance(row, dict))
