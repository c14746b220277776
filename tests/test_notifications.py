import asyncio
from datetime import datetime, timezone
from decimal import Decimal

from nft_watch_agent.notifications import NotificationDispatcher, SubscriberRegistry
from nft_watch_agent.types import WatchRequest


class DummyEmail:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent = []

    async def send(self, recipient: str, subject: str, body: str) -> None:
        if self.fail:
            raise OSError("smtp down")
        self.sent.append((recipient, subject, body))


class DummyTelegram:
    def __init__(self) -> None:
        self.messages = []

    async def send(self, text: str) -> None:
        self.messages.append(text)


def _matched(email: str | None = "me@example.com") -> WatchRequest:
    return WatchRequest(
        id="req-1",
        owner_address="0xowner",
        collection_name="Apes",
        floor_price_usd=Decimal("10"),
        asset_ids=["a:1"],
        notify_email=email,
        is_offer_accepted=True,
        matched_maker="0x1234567890abcdef1234",
        matched_amount_usd=Decimal("12"),
        settlement_receipt="0xabc",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


def test_registry_lifecycle_and_broadcast() -> None:
    registry = SubscriberRegistry()
    queue = registry.add("s1")
    registry.add("s2")
    registry.remove("s2")

    assert "s1" in registry and "s2" not in registry
    assert registry.broadcast("hello") == 1
    assert queue.get_nowait()["params"]["text"] == "hello"


def test_full_session_queue_drops_message() -> None:
    registry = SubscriberRegistry(queue_size=1)
    registry.add("s1")

    assert registry.broadcast("one") == 1
    assert registry.broadcast("two") == 0


def test_dispatch_to_email_and_telegram() -> None:
    email = DummyEmail()
    telegram = DummyTelegram()
    dispatcher = NotificationDispatcher(email=email, telegram=telegram)

    delivered = asyncio.run(dispatcher.notify(_matched()))

    assert delivered is True
    recipient, subject, body = email.sent[0]
    assert recipient == "me@example.com"
    assert "Apes" in subject
    assert "$12.00" in body
    assert "https://apescan.io/tx/0xabc" in body
    assert "Offer accepted" in telegram.messages[0]


def test_email_failure_is_swallowed_and_reported() -> None:
    dispatcher = NotificationDispatcher(email=DummyEmail(fail=True))

    assert asyncio.run(dispatcher.notify(_matched())) is False


def test_no_channels_means_not_delivered() -> None:
    dispatcher = NotificationDispatcher(registry=SubscriberRegistry(), email=DummyEmail())

    assert asyncio.run(dispatcher.notify(_matched(email=None))) is False
