"""Minimal Telegram Bot API client: one ``sendMessage`` call per message."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx

# Bot API hard limit is 4096; leave headroom for entity escaping.
TELEGRAM_MAX_MESSAGE_LEN = 3900


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    chat_id: str
    api_base_url: str = "https://api.telegram.org"
    timeout_seconds: float = 15.0

    @property
    def send_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/bot{self.bot_token}/sendMessage"

    def redact(self, text: str) -> str:
        if self.bot_token:
            return text.replace(self.bot_token, "<redacted>")
        return text


async def send_telegram_message(
    client: httpx.AsyncClient, config: TelegramConfig, text: str
) -> tuple[bool, dict[str, Any]]:
    """Post ``text`` to the configured chat.

    Never raises for transport or decoding failures; the token is scrubbed from
    any error text since httpx includes the request URL in its messages.
    """
    try:
        resp = await client.post(
            config.send_url,
            json={"chat_id": config.chat_id, "text": text},
            timeout=config.timeout_seconds,
        )
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        return False, {"ok": False, "error": config.redact(f"{type(e).__name__}: {e}")}
    if not isinstance(data, dict):
        return False, {"ok": False, "error": f"unexpected response: {type(data).__name__}"}
    return bool(data.get("ok")), data


def redact_telegram_response(data: dict[str, Any]) -> str:
    """Reduce an API response to the fields worth logging."""
    keep = {k: data[k] for k in ("ok", "error_code", "description", "error") if data.get(k) is not None}
    result = data.get("result")
    if isinstance(result, dict) and "message_id" in result:
        keep["message_id"] = result["message_id"]
    return json.dumps(keep, ensure_ascii=False, sort_keys=True)
