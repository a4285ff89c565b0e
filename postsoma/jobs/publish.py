from __future__ import annotations

import logging
from collections.abc import Sequence

from opentelemetry import trace

from postsoma.core.lifecycle import Status, can_transition
from postsoma.core.outcome import RunOutcome
from postsoma.core.timestamps import iso_now
from postsoma.schemas.items import Published
from postsoma.services.formatting import PageMetaFetcher, build_message
from postsoma.services.merge import transition
from postsoma.services.store import ItemStore, StoreConflictError
from postsoma.services.telegram import TelegramApiError, TelegramClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_publish(
    *,
    store: ItemStore,
    client: TelegramClient,
    channel_chat_id: str,
    publish_statuses: Sequence[str] = (Status.INBOX.value,),
    channel: str = "telegram",
    fetch_meta: PageMetaFetcher | None = None,
) -> RunOutcome:
    """Post the first pending item to the channel and mark it posted.

    The log is rewritten only after the send is confirmed, so a failed send
    leaves the item pending and the run can be retried.
    """
    with tracer.start_as_current_span("driver.publish") as span:
        items = store.load()
        item = items.first(statuses=publish_statuses)
        if item is None:
            logger.info("nothing to publish items=%s", len(items))
            return RunOutcome.noop(
                "no_inbox_items",
                posted=False,
                items=len(items),
                skipped_lines=items.skipped_lines,
            )
        span.set_attribute("item.id", item.id)

        if not can_transition(item.status, Status.POSTED):
            return RunOutcome.fatal(f"item {item.id} in status {item.status!r} cannot be posted", id=item.id)

        text = await build_message(item, fetch_meta=fetch_meta)
        try:
            result = await client.send_message(channel_chat_id, text)
        except TelegramApiError as exc:
            logger.error("publish send failed id=%s: %s", item.id, exc)
            return RunOutcome.fatal(str(exc), stage="sendMessage", posted=False, id=item.id)

        message_id = result.get("message_id")
        posted_at = iso_now()
        posted = transition(
            item,
            Status.POSTED,
            now=posted_at,
            published=Published(channel=channel, post_id=str(message_id or ""), posted_at=posted_at),
        )
        items.replace(posted)

        try:
            store.save(items)
        except StoreConflictError as exc:
            # the message is already out; surface its id so the log can be reconciled by hand
            logger.error("posted id=%s message_id=%s but could not save the log: %s", item.id, message_id, exc)
            return RunOutcome.fatal(str(exc), stage="save", posted=True, id=item.id, message_id=message_id)

        logger.info("published id=%s message_id=%s", item.id, message_id)
        return RunOutcome.ok(posted=True, id=item.id, message_id=message_id, posted_at=posted_at)
