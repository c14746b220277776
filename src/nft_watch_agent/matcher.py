from __future__ import annotations

import logging
from decimal import Decimal
from typing import Protocol

from .types import Bid, SettlementOutcome, SettlementSteps

logger = logging.getLogger(__name__)


class SellStepSource(Protocol):
    async def sell_steps(self, bid_id: str, asset_id: str, taker_address: str) -> SettlementSteps | None: ...


def rank_bids(bids: list[Bid]) -> list[Bid]:
    """Highest price first; equal prices keep arrival order."""
    return sorted(bids, key=lambda bid: bid.price_usd, reverse=True)


def qualifying_bids(ranked: list[Bid], floor_price_usd: Decimal) -> list[Bid]:
    return [bid for bid in ranked if bid.price_usd >= floor_price_usd]


class BidMatcher:
    def __init__(self, marketplace: SellStepSource) -> None:
        self.marketplace = marketplace

    async def match(
        self, bids: list[Bid], floor_price_usd: Decimal, taker_address: str
    ) -> SettlementOutcome:
        """Pick the best bid at or above the floor that can be settled.

        Bids for every asset of a request are ranked together, so the first
        qualifying bid wins regardless of which asset it targets.
        """
        ranked = rank_bids(bids)
        for bid in qualifying_bids(ranked, floor_price_usd):
            steps = await self.marketplace.sell_steps(bid.bid_id, bid.asset_id, taker_address)
            if steps is None:
                logger.warning("No sale step for bid %s on %s; trying next bid", bid.bid_id, bid.asset_id)
                continue
            logger.info(
                "Matched bid %s at $%s for %s (floor $%s)",
                bid.bid_id,
                bid.price_usd,
                bid.asset_id,
                floor_price_usd,
            )
            return SettlementOutcome(matched=True, ranked_bids=ranked, bid=bid, steps=steps)

        return SettlementOutcome(matched=False, ranked_bids=ranked)
