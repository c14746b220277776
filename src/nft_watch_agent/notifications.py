from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from .formatting import format_match_alert, format_match_message
from .types import ChainId, WatchRequest

logger = logging.getLogger(__name__)


class SubscriberRegistry:
    """Connected client sessions that want server-side notifications.

    Created once at startup and handed to whatever pushes messages; the
    transport adds a session on connect and removes it on disconnect.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._sessions: dict[str, asyncio.Queue[dict[str, Any]]] = {}

    def add(self, session_id: str) -> asyncio.Queue[dict[str, Any]]:
        queue = self._sessions.get(session_id)
        if queue is None:
            queue = asyncio.Queue(maxsize=self.queue_size)
            self._sessions[session_id] = queue
            logger.info("Session %s subscribed to notifications", session_id)
        return queue

    def remove(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.info("Session %s unsubscribed", session_id)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def broadcast(self, text: str) -> int:
        message = {"method": "notifications/message", "params": {"text": text}}
        delivered = 0
        for session_id, queue in list(self._sessions.items()):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Notification queue full for session %s; dropping message", session_id)
        return delivered


class _EmailSender(Protocol):
    async def send(self, recipient: str, subject: str, body: str) -> None: ...


class _AlertSender(Protocol):
    async def send(self, text: str) -> None: ...


class NotificationDispatcher:
    """Fan a filled-watch message out to every configured channel.

    Delivery is best effort: failures are logged and the return value says
    whether at least one channel accepted the message.
    """

    def __init__(
        self,
        registry: SubscriberRegistry | None = None,
        email: _EmailSender | None = None,
        telegram: _AlertSender | None = None,
        chain: ChainId = ChainId.APECHAIN,
    ) -> None:
        self.registry = registry
        self.email = email
        self.telegram = telegram
        self.chain = chain

    async def notify(self, request: WatchRequest) -> bool:
        text = format_match_message(request, self.chain)
        delivered = False

        if self.email is not None and request.notify_email:
            try:
                await self.email.send(
                    request.notify_email,
                    f"Offer accepted: {request.collection_name}",
                    text,
                )
                delivered = True
            except Exception as exc:
                logger.error("Email notification for %s failed: %s", request.id, exc)

        if self.telegram is not None:
            try:
                await self.telegram.send(format_match_alert(request, self.chain))
                delivered = True
            except Exception as exc:
                logger.error("Telegram notification for %s failed: %s", request.id, exc)

        if self.registry is not None and self.registry.broadcast(text) > 0:
            delivered = True

        if not delivered:
            logger.warning("No channel confirmed notification for %s", request.id)
        return delivered
