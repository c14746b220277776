import asyncio
import json
from decimal import Decimal

import httpx

from nft_watch_agent.marketplace import MarketplaceClient
from nft_watch_agent.matcher import BidMatcher, rank_bids
from nft_watch_agent.types import Bid, SettlementSteps, TransactionPlan

SALE = TransactionPlan(to="0x" + "ab" * 20, data="0x01")


def _bid(bid_id: str, price: str, asset: str = "0xc:1") -> Bid:
    return Bid(
        bid_id=bid_id,
        maker_address=f"0xmaker{bid_id}",
        price_usd=Decimal(price),
        asset_id=asset,
        created_at=None,
    )


class DummyMarketplace:
    def __init__(self, missing: set[str] | None = None) -> None:
        self.missing = missing or set()
        self.requested: list[str] = []

    async def sell_steps(self, bid_id: str, asset_id: str, taker_address: str):
        self.requested.append(bid_id)
        if bid_id in self.missing:
            return None
        return SettlementSteps(sale=SALE)


def test_rank_bids_is_descending_and_stable() -> None:
    bids = [_bid("a", "5"), _bid("b", "9"), _bid("c", "9"), _bid("d", "1")]

    assert [b.bid_id for b in rank_bids(bids)] == ["b", "c", "a", "d"]


def test_matches_highest_bid_above_floor() -> None:
    market = DummyMarketplace()
    bids = [_bid("a", "5"), _bid("b", "12"), _bid("c", "9")]

    outcome = asyncio.run(BidMatcher(market).match(bids, Decimal("10"), "0xowner"))

    assert outcome.matched is True
    assert outcome.bid.bid_id == "b"
    assert outcome.amount_usd == Decimal("12")
    assert outcome.maker == "0xmakerb"
    assert [b.price_usd for b in outcome.ranked_bids] == [Decimal("12"), Decimal("9"), Decimal("5")]
    assert market.requested == ["b"]


def test_floor_is_inclusive() -> None:
    outcome = asyncio.run(BidMatcher(DummyMarketplace()).match([_bid("a", "10")], Decimal("10"), "0xo"))

    assert outcome.matched is True


def test_no_qualifying_bid_still_returns_ranked_alternatives() -> None:
    market = DummyMarketplace()

    outcome = asyncio.run(BidMatcher(market).match([_bid("a", "5"), _bid("b", "8")], Decimal("10"), "0xo"))

    assert outcome.matched is False
    assert [b.price_usd for b in outcome.ranked_bids] == [Decimal("8"), Decimal("5")]
    assert market.requested == []


def test_missing_sale_step_is_a_non_match() -> None:
    market = DummyMarketplace(missing={"a"})

    outcome = asyncio.run(BidMatcher(market).match([_bid("a", "15")], Decimal("10"), "0xo"))

    assert outcome.matched is False
    assert outcome.steps is None
    assert len(outcome.ranked_bids) == 1


def test_missing_sale_step_falls_through_to_next_qualifying_bid() -> None:
    market = DummyMarketplace(missing={"top"})
    bids = [_bid("top", "20"), _bid("next", "15"), _bid("low", "3")]

    outcome = asyncio.run(BidMatcher(market).match(bids, Decimal("10"), "0xo"))

    assert outcome.matched is True
    assert outcome.bid.bid_id == "next"
    assert market.requested == ["top", "next"]


def test_bids_across_assets_are_ranked_together() -> None:
    market = DummyMarketplace()
    bids = [_bid("a", "11", asset="0xc:1"), _bid("b", "30", asset="0xc:2")]

    outcome = asyncio.run(BidMatcher(market).match(bids, Decimal("10"), "0xo"))

    assert outcome.bid.asset_id == "0xc:2"


def test_malformed_sale_step_falls_through_to_next_qualifying_bid() -> None:
    sale = {"to": "0x" + "22" * 20, "data": "0x5a"}

    def handler(request: httpx.Request) -> httpx.Response:
        order_id = json.loads(request.content)["items"][0]["orderId"]
        data = {"to": "bad", "data": "0x"} if order_id == "top" else sale
        return httpx.Response(200, json={"steps": [{"id": "sale", "items": [{"status": "incomplete", "data": data}]}]})

    market = MarketplaceClient(
        "https://api.example.com",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    bids = [_bid("top", "20"), _bid("next", "15")]

    outcome = asyncio.run(BidMatcher(market).match(bids, Decimal("10"), "0xo"))

    assert outcome.matched is True
    assert outcome.bid.bid_id == "next"
    assert outcome.steps.sale.data == "0x5a"
