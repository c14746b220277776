from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from .types import AcquisitionSelection, Listing


def _price_key(listing: Listing) -> tuple[int, Decimal]:
    # Unknown prices sort after every known price.
    if listing.floor_price_usd is None:
        return (1, Decimal(0))
    return (0, listing.floor_price_usd)


def sort_listings(listings: Iterable[Listing]) -> list[Listing]:
    return sorted(listings, key=_price_key)


def select_listings(listings: list[Listing], budget_usd: Decimal) -> AcquisitionSelection:
    """Greedily fill ``budget_usd`` from listings sorted cheapest first.

    Stops at the first listing that would overshoot the budget or that has
    no order id to buy against. No later, cheaper-fitting listing is tried.
    """
    selected: list[Listing] = []
    total = Decimal(0)
    for listing in listings:
        price = listing.floor_price_usd
        if price is None or not listing.order_id:
            break
        if total + price > budget_usd:
            break
        selected.append(listing)
        total += price

    return AcquisitionSelection(selected=selected, total_usd=total, listings_available=len(listings))
