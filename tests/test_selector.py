from decimal import Decimal

from nft_watch_agent.selector import select_listings, sort_listings
from nft_watch_agent.types import Listing


def _listing(asset: str, price: str | None, order_id: str | None = "order") -> Listing:
    return Listing(
        asset_id=asset,
        floor_price_usd=Decimal(price) if price is not None else None,
        order_id=f"{order_id}-{asset}" if order_id else None,
    )


def test_sorted_listings_fill_budget_greedily() -> None:
    listings = sort_listings([_listing("a", "10"), _listing("b", "25"), _listing("c", "8")])
    assert [l.floor_price_usd for l in listings] == [Decimal("8"), Decimal("10"), Decimal("25")]

    selection = select_listings(listings, Decimal("20"))

    assert [l.asset_id for l in selection.selected] == ["c", "a"]
    assert selection.total_usd == Decimal("18")
    assert selection.order_ids == ["order-c", "order-a"]


def test_unknown_prices_sort_last_and_stop_selection() -> None:
    listings = sort_listings([_listing("a", None), _listing("b", "3"), _listing("c", "4")])
    assert [l.asset_id for l in listings] == ["b", "c", "a"]

    selection = select_listings(listings, Decimal("100"))

    assert [l.asset_id for l in selection.selected] == ["b", "c"]


def test_ties_keep_input_order() -> None:
    listings = sort_listings([_listing("x", "5"), _listing("y", "5"), _listing("z", "5")])

    selection = select_listings(listings, Decimal("10"))

    assert [l.asset_id for l in selection.selected] == ["x", "y"]


def test_missing_order_id_stops_without_skipping_ahead() -> None:
    listings = [_listing("a", "1"), _listing("b", "2", order_id=None), _listing("c", "3")]

    selection = select_listings(listings, Decimal("100"))

    assert [l.asset_id for l in selection.selected] == ["a"]


def test_no_look_ahead_after_first_overshoot() -> None:
    listings = [_listing("a", "6"), _listing("b", "6"), _listing("c", "6")]

    selection = select_listings(listings, Decimal("13"))

    assert selection.total_usd == Decimal("12")
    assert len(selection.selected) == 2


def test_budget_too_low_is_distinct_from_no_listings() -> None:
    too_poor = select_listings([_listing("a", "50")], Decimal("10"))
    nothing = select_listings([], Decimal("10"))

    assert too_poor.selected == [] and too_poor.listings_available == 1
    assert nothing.selected == [] and nothing.listings_available == 0


def test_total_never_exceeds_budget() -> None:
    prices = ["0.5", "1", "1", "2.25", "3", "7", "11"]
    listings = [_listing(str(i), p) for i, p in enumerate(prices)]
    for budget in ("0", "0.5", "2.4", "4.75", "7.74", "100"):
        selection = select_listings(listings, Decimal(budget))
        assert selection.total_usd <= Decimal(budget)
        # Greedy prefix: everything before the stopping point was taken.
        assert selection.selected == listings[: len(selection.selected)]
