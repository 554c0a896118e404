from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass

import httpx

from endpoint_checks.alerting import build_status_text


LOGGER = logging.getLogger("endpoint-monitor")

TELEGRAM_API_BASE_URL = "https://api.telegram.org"
TELEGRAM_MAX_MESSAGE_LEN = 3900

ALERT_PREFIX = "Endpoint monitor:"


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    chat_id: str

    @classmethod
    def from_env(cls) -> TelegramConfig | None:
        token = str(os.getenv("TELEGRAM_BOT_TOKEN") or "").strip()
        chat_id = str(os.getenv("TELEGRAM_CHAT_ID") or "").strip()
        if not token or not chat_id:
            return None
        return cls(bot_token=token, chat_id=chat_id)


def split_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    """Split on line boundaries where possible, hard-cut otherwise."""
    remaining = (text or "").strip()
    if not remaining:
        return [""]

    max_len = max(1, int(max_len))
    chunks: list[str] = []
    while len(remaining) > max_len:
        cut = remaining.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        chunks.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip()
    if remaining:
        chunks.append(remaining)
    return chunks


def _redact(text: str, config: TelegramConfig) -> str:
    if config.bot_token:
        return text.replace(config.bot_token, "<redacted>")
    return text


async def send_message(client: httpx.AsyncClient, config: TelegramConfig, text: str) -> tuple[bool, dict]:
    url = f"{TELEGRAM_API_BASE_URL}/bot{config.bot_token}/sendMessage"
    try:
        resp = await client.post(url, json={"chat_id": config.chat_id, "text": text}, timeout=15.0)
        data = resp.json()
    except Exception as e:
        return False, {"ok": False, "error": _redact(f"{type(e).__name__}: {e}", config)}
    if not isinstance(data, dict):
        return False, {"ok": False, "error": f"unexpected response type {type(data).__name__}"}
    return bool(data.get("ok")), data


def redact_response(data: dict) -> str:
    safe: dict = {"ok": data.get("ok")}
    result = data.get("result")
    if isinstance(result, dict):
        safe["message_id"] = result.get("message_id")
    if data.get("error"):
        safe["error"] = data.get("error")
    if data.get("description"):
        safe["description"] = data.get("description")
    return json.dumps(safe, ensure_ascii=False)


def alert_text(failed_checks: int, stale_checks: int) -> str:
    return f"{ALERT_PREFIX} {build_status_text(failed_checks, stale_checks)} ❌"


def recovery_text() -> str:
    return f"{ALERT_PREFIX} all checks recovered ✅"


class TelegramNotificationSink:
    """
    Pushes alert and recovery messages to one Telegram chat. Status updates
    are only logged; the chat sees a message when an alert is raised and one
    when it clears.
    """

    def __init__(self, client: httpx.AsyncClient, config: TelegramConfig) -> None:
        self.client = client
        self.config = config
        self._alert_sent = False

    @classmethod
    def from_env(cls, client: httpx.AsyncClient) -> TelegramNotificationSink | None:
        config = TelegramConfig.from_env()
        if config is None:
            return None
        return cls(client, config)

    async def _send(self, text: str) -> tuple[bool, str]:
        ok_all = True
        last: dict = {}
        for chunk in split_message(text):
            ok, last = await send_message(self.client, self.config, chunk)
            ok_all = ok_all and ok
        return ok_all, redact_response(last)

    async def raise_alert(self, failed_checks: int, stale_checks: int) -> None:
        ok, telegram = await self._send(alert_text(failed_checks, stale_checks))
        self._alert_sent = True
        LOGGER.warning(
            "Alert sent_ok=%s failed=%s stale=%s telegram=%s",
            ok,
            failed_checks,
            stale_checks,
            telegram,
        )

    async def clear(self) -> None:
        # Cleared every healthy cycle; only announce the recovery once.
        if not self._alert_sent:
            return
        ok, telegram = await self._send(recovery_text())
        self._alert_sent = False
        LOGGER.info("Recovery notice sent_ok=%s telegram=%s", ok, telegram)

    async def update_status(self, failed_checks: int | None, stale_checks: int | None) -> None:
        LOGGER.info("Status %s", build_status_text(failed_checks, stale_checks))
