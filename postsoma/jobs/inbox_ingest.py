from __future__ import annotations

import logging
from typing import Any

from opentelemetry import trace

from postsoma.core.lifecycle import Status
from postsoma.core.outcome import RunOutcome
from postsoma.core.timestamps import from_unix
from postsoma.core.urls import canonicalize, derive_id, extract_urls, is_web_url
from postsoma.schemas.items import DEFAULT_LANGUAGE, InboxSource, Item
from postsoma.services.merge import upsert
from postsoma.services.store import CursorStore, ItemStore, StoreConflictError
from postsoma.services.telegram import TelegramApiError, TelegramClient, message_author, update_message

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def candidates_from_update(update: dict[str, Any], *, inbox_chat_id: str) -> tuple[list[Item], int]:
    """Build inbox items for every link in one update.

    Returns the candidates plus the number of links skipped as unparseable.
    Messages from any chat other than the inbox are ignored.
    """
    message = update_message(update)
    if message is None:
        return [], 0
    chat_id = str(message["chat"].get("id"))
    if chat_id != str(inbox_chat_id):
        return [], 0

    text = message.get("text") or message.get("caption") or ""
    date = message.get("date")
    created_at = from_unix(date if isinstance(date, (int, float)) else None)
    source = InboxSource(
        type="tg",
        chat_id=chat_id,
        message_id=str(message.get("message_id") or ""),
        author=message_author(message),
    )

    candidates: list[Item] = []
    skipped = 0
    for raw_url in extract_urls(text):
        if not is_web_url(raw_url):
            skipped += 1
            logger.warning("skipping unparseable url=%r in message_id=%s", raw_url, source.message_id)
            continue
        canonical = canonicalize(raw_url)
        candidates.append(
            Item(
                id=derive_id(canonical),
                url=raw_url,
                canonical_url=canonical,
                title=canonical,
                summary=None,
                tags=[],
                language=DEFAULT_LANGUAGE,
                source=source.model_copy(),
                status=Status.INBOX,
                created_at=created_at,
                updated_at=None,
            )
        )
    return candidates, skipped


async def run_inbox_ingest(
    *,
    store: ItemStore,
    cursor: CursorStore,
    client: TelegramClient,
    inbox_chat_id: str,
) -> RunOutcome:
    with tracer.start_as_current_span("driver.inbox_ingest") as span:
        items = store.load()
        last_update_id = cursor.load()
        offset = last_update_id + 1 if last_update_id else None

        try:
            updates = await client.get_updates(offset)
        except TelegramApiError as exc:
            logger.error("inbox poll failed: %s", exc)
            return RunOutcome.fatal(str(exc), stage="getUpdates")

        max_update_id = last_update_id or 0
        new_ids: list[str] = []
        already_known = 0
        skipped_urls = 0
        for update in updates:
            update_id = update.get("update_id")
            if isinstance(update_id, int):
                max_update_id = max(max_update_id, update_id)

            candidates, skipped = candidates_from_update(update, inbox_chat_id=inbox_chat_id)
            skipped_urls += skipped
            for candidate in candidates:
                if items.knows(candidate.id, candidate.canonical_url):
                    already_known += 1
                    continue
                upsert(items, candidate)
                new_ids.append(candidate.id)

        span.set_attribute("inbox.updates", len(updates))
        span.set_attribute("inbox.new_items", len(new_ids))

        if new_ids:
            try:
                store.save(items)
            except StoreConflictError as exc:
                logger.error("inbox ingest lost the log race: %s", exc)
                return RunOutcome.fatal(str(exc), stage="save", new_items=len(new_ids))
        # cursor only advances after the log is on disk
        if updates:
            cursor.save(max_update_id)

        summary = {
            "updates": len(updates),
            "new_items": len(new_ids),
            "new_ids": new_ids,
            "already_known": already_known,
            "skipped_urls": skipped_urls,
            "skipped_lines": items.skipped_lines,
            "last_update_id": max_update_id if updates else last_update_id,
        }
        logger.info("inbox ingest updates=%s new_items=%s", len(updates), len(new_ids))
        if not updates:
            return RunOutcome.noop("no_updates", **summary)
        return RunOutcome.ok(**summary)
