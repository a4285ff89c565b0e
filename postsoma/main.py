from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from functools import partial

from pydantic import ValidationError

from postsoma.core.config import ConfigError, Settings, get_settings
from postsoma.core.outcome import RunOutcome
from postsoma.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from postsoma.jobs.inbox_ingest import run_inbox_ingest
from postsoma.jobs.issue_ingest import run_issue_ingest
from postsoma.jobs.publish import run_publish
from postsoma.services.gemini import GeminiClient
from postsoma.services.github import GitHubClient
from postsoma.services.page_meta import fetch_page_meta
from postsoma.services.store import CursorStore, JsonlItemStore
from postsoma.services.telegram import TelegramClient

logger = logging.getLogger(__name__)

Driver = Callable[[Settings], Awaitable[RunOutcome]]


async def inbox_ingest(settings: Settings) -> RunOutcome:
    settings.require("tg_bot_token", "inbox_chat_id")
    return await run_inbox_ingest(
        store=JsonlItemStore(settings.tools_path),
        cursor=CursorStore(settings.inbox_state_path),
        client=TelegramClient(settings.tg_bot_token, timeout_seconds=settings.http_timeout_seconds),
        inbox_chat_id=settings.inbox_chat_id,
    )


async def publish(settings: Settings) -> RunOutcome:
    settings.require("tg_bot_token", "channel_chat_id")
    return await run_publish(
        store=JsonlItemStore(settings.tools_path),
        client=TelegramClient(settings.tg_bot_token, timeout_seconds=settings.http_timeout_seconds),
        channel_chat_id=settings.channel_chat_id,
        publish_statuses=settings.publish_statuses,
        channel=settings.publish_channel,
        fetch_meta=partial(
            fetch_page_meta,
            timeout_seconds=settings.page_meta_timeout_seconds,
            user_agent=settings.user_agent,
        ),
    )


async def issue_ingest(settings: Settings) -> RunOutcome:
    settings.require("github_token", "github_repository", "issue_number")
    enricher = None
    if settings.gemini_api_key:
        enricher = GeminiClient(
            settings.gemini_api_key,
            model=settings.gemini_model,
            timeout_seconds=settings.http_timeout_seconds,
        )
    return await run_issue_ingest(
        store=JsonlItemStore(settings.tools_path),
        github=GitHubClient(
            settings.github_token,
            timeout_seconds=settings.http_timeout_seconds,
            user_agent=settings.user_agent,
        ),
        repo_slug=settings.github_repository,
        issue_number=settings.issue_number,
        notes_dir=settings.notes_dir,
        enricher=enricher,
    )


def run_driver(name: str, driver: Driver) -> int:
    """Run one driver, print its summary to stdout and return the exit status."""
    configure_logging()
    try:
        settings = get_settings()
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        outcome = RunOutcome.fatal(f"invalid configuration {location}: {first.get('msg')}", driver=name)
    else:
        runtime = setup_telemetry(settings, driver=name)
        try:
            outcome = asyncio.run(driver(settings))
        except ConfigError as exc:
            outcome = RunOutcome.fatal(str(exc), driver=name)
        finally:
            shutdown_telemetry(runtime)

    if outcome.status == "fatal":
        logger.error("%s failed: %s", name, outcome.summary.get("error"))
    print(json.dumps(outcome.as_dict(), indent=2, ensure_ascii=False))
    return outcome.exit_code


def inbox_ingest_main() -> None:
    sys.exit(run_driver("inbox_ingest", inbox_ingest))


def publish_main() -> None:
    sys.exit(run_driver("publish", publish))


def issue_ingest_main() -> None:
    sys.exit(run_driver("issue_ingest", issue_ingest))
