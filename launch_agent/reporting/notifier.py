"""Notification sinks: Telegram Bot API, or nothing."""

import asyncio
import logging
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class Notifier(Protocol):
    def post(self, text: str) -> None: ...

    async def notify(self, text: str) -> None: ...

    async def close(self) -> None: ...


class NullNotifier:
    def __init__(self) -> None:
        self.sent: list[str] = []

    def post(self, text: str) -> None:
        self.sent.append(text)

    async def notify(self, text: str) -> None:
        self.sent.append(text)

    async def close(self) -> None:
        return None


class TelegramNotifier:
    """Sends Markdown messages to one chat. Failures are logged, never raised."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        base_url: str = TELEGRAM_API_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._pending: set[asyncio.Task] = set()

    def post(self, text: str) -> None:
        """Fire-and-forget send from inside a running event loop."""
        task = asyncio.get_running_loop().create_task(self.notify(text))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def notify(self, text: str) -> None:
        url = f"{self.base_url}/bot{self.bot_token}/sendMessage"
        payload = {"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"}
        try:
            resp = await self._client.post(url, json=payload)
        except httpx.RequestError as e:
            logger.error("Telegram send failed: %s", e)
            return
        if resp.status_code >= 400:
            logger.error("Telegram API error %d: %s", resp.status_code, resp.text[:200])

    async def close(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self._client.aclose()


def build_notifier(enabled: bool, bot_token: str, chat_id: str) -> Notifier:
    if enabled and bot_token and chat_id:
        return TelegramNotifier(bot_token, chat_id)
    if enabled:
        logger.warning("Alerts enabled but Telegram token/chat id missing; notifications off")
    return NullNotifier()
