from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class ChainId(str, Enum):
    ARBITRUM = "arbitrum"
    APECHAIN = "apechain"

    @property
    def numeric_id(self) -> int:
        return _NUMERIC_CHAIN_IDS[self]


_NUMERIC_CHAIN_IDS = {
    ChainId.ARBITRUM: 42161,
    ChainId.APECHAIN: 33139,
}


@dataclass(frozen=True)
class TransactionPlan:
    to: str
    data: str
    value: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def value_wei(self) -> int:
        if not self.value:
            return 0
        return int(self.value, 16) if self.value.lower().startswith("0x") else int(self.value)


@dataclass(frozen=True)
class Listing:
    asset_id: str
    floor_price_usd: Decimal | None
    order_id: str | None
    name: str | None = None
    contract: str | None = None
    token_id: str | None = None
    marketplace: str | None = None
    collection_name: str | None = None
    currency: str | None = None
    attributes: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class Bid:
    bid_id: str
    maker_address: str
    price_usd: Decimal
    asset_id: str
    created_at: datetime | None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class SettlementSteps:
    sale: TransactionPlan
    approval: TransactionPlan | None = None

    def plans(self) -> list[TransactionPlan]:
        if self.approval is None:
            return [self.sale]
        return [self.approval, self.sale]


@dataclass(frozen=True)
class SettlementOutcome:
    matched: bool
    ranked_bids: list[Bid]
    bid: Bid | None = None
    steps: SettlementSteps | None = None
    receipt: str | None = None
    skipped: bool = False

    @property
    def maker(self) -> str | None:
        return self.bid.maker_address if self.bid else None

    @property
    def amount_usd(self) -> Decimal | None:
        return self.bid.price_usd if self.bid else None


@dataclass(frozen=True)
class AcquisitionSelection:
    selected: list[Listing]
    total_usd: Decimal
    listings_available: int

    @property
    def order_ids(self) -> list[str]:
        return [listing.order_id for listing in self.selected if listing.order_id]


@dataclass
class WatchRequest:
    owner_address: str
    collection_name: str
    floor_price_usd: Decimal
    asset_ids: list[str]
    created_at: datetime
    id: str = ""
    notify_email: str | None = None
    is_offer_accepted: bool = False
    matched_maker: str | None = None
    matched_amount_usd: Decimal | None = None
    settlement_receipt: str | None = None
    is_notified: bool = False
