from __future__ import annotations

import json
from typing import Any

import httpx

from postsoma.services.upstream import UpstreamError, response_failure

TELEGRAM_API_BASE_URL = "https://api.telegram.org"
MESSAGE_KEYS = ("message", "edited_message", "channel_post", "edited_channel_post")


class TelegramApiError(UpstreamError):
    """Raised when a Bot API call fails or answers ``ok: false``."""


class TelegramClient:
    def __init__(
        self,
        token: str,
        *,
        timeout_seconds: float = 15.0,
        base_url: str = TELEGRAM_API_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = f"{base_url.rstrip('/')}/bot{token}"
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def get_updates(self, offset: int | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"timeout": 0}
        if offset is not None:
            params["offset"] = offset
        result = await self._call("getUpdates", params=params)
        return result if isinstance(result, list) else []

    async def send_message(self, chat_id: str, text: str) -> dict[str, Any]:
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        result = await self._call("sendMessage", json_body=payload)
        return result if isinstance(result, dict) else {}

    async def _call(
        self,
        method: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}/{method}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                if json_body is None:
                    response = await client.get(url, params=params)
                else:
                    response = await client.post(url, json=json_body)
        except httpx.HTTPError as exc:
            raise TelegramApiError(f"Telegram {method} request failed: {exc.__class__.__name__}") from exc

        if response.status_code != 200:
            raise TelegramApiError(
                response_failure(f"Telegram {method}", response),
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise TelegramApiError(f"Telegram {method} returned invalid JSON") from exc
        if not isinstance(data, dict) or not data.get("ok"):
            raise TelegramApiError(f"Telegram {method} not ok: {json.dumps(data)[:500]}")
        return data.get("result")


def update_message(update: dict[str, Any]) -> dict[str, Any] | None:
    for key in MESSAGE_KEYS:
        message = update.get(key)
        if isinstance(message, dict) and isinstance(message.get("chat"), dict):
            return message
    return None


def message_author(message: dict[str, Any]) -> str | None:
    sender = message.get("from")
    if not isinstance(sender, dict):
        return None
    return sender.get("username") or sender.get("first_name") or None
