from __future__ import annotations

import asyncio
import logging

import httpx

from .errors import NotificationError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 2.0


class TelegramNotifier:
    """Posts settlement alerts to the operator's Telegram chat."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        timeout: float = 15.0,
        retries: int = 4,
        backoff: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.chat_id = chat_id
        self.retries = retries
        self.backoff = backoff
        self._url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, text: str) -> None:
        """Deliver one HTML alert, retrying transport errors and rate limits.

        Raises ``NotificationError`` once every attempt is used up so the
        dispatcher can leave the request unnotified for the next tick.
        """
        delay = self.backoff
        last_error = "rate limited on every attempt"

        for attempt in range(1, self.retries + 1):
            try:
                response = await self._client.post(
                    self._url,
                    json={
                        "chat_id": self.chat_id,
                        "text": text,
                        "parse_mode": "HTML",
                        "disable_web_page_preview": True,
                    },
                )
                if response.status_code == 429:
                    wait = _retry_after(response)
                    logger.warning("Alert to chat %s rate limited; waiting %.1fs", self.chat_id, wait)
                    await asyncio.sleep(wait)
                    continue
                response.raise_for_status()
                data = response.json()
                if not isinstance(data, dict) or not data.get("ok", False):
                    raise NotificationError(f"Telegram rejected alert: {response.text}")
                return
            except (httpx.HTTPError, ValueError, NotificationError) as exc:
                last_error = str(exc)
                if attempt == self.retries:
                    break
                logger.warning("Alert to chat %s failed (attempt %d/%d): %s", self.chat_id, attempt, self.retries, exc)
                await asyncio.sleep(delay)
                delay *= 2

        raise NotificationError(f"Alert to chat {self.chat_id} not delivered: {last_error}")


def _retry_after(response: httpx.Response) -> float:
    try:
        payload = response.json()
    except ValueError:
        return DEFAULT_RETRY_AFTER
    parameters = payload.get("parameters") if isinstance(payload, dict) else None
    value = parameters.get("retry_after") if isinstance(parameters, dict) else None
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0:
        return float(value)
    return DEFAULT_RETRY_AFTER
