from __future__ import annotations

from decimal import Decimal
from html import escape

from .types import AcquisitionSelection, Bid, ChainId, Listing, WatchRequest

_EXPLORERS = {
    ChainId.ARBITRUM: "https://arbiscan.io/tx/",
    ChainId.APECHAIN: "https://apescan.io/tx/",
}


def short_address(address: str | None) -> str:
    if not address:
        return "Unknown"
    addr = address.strip()
    if len(addr) <= 12:
        return addr
    return f"{addr[:6]}...{addr[-4:]}"


def format_usd(amount: Decimal | None) -> str:
    if amount is None:
        return "N/A"
    return f"${amount:,.2f}"


def build_tx_link(chain: ChainId, tx_hash: str | None) -> str | None:
    if not tx_hash:
        return None
    return f"{_EXPLORERS[chain]}{tx_hash}"


def format_match_message(request: WatchRequest, chain: ChainId = ChainId.APECHAIN) -> str:
    lines = [
        f"Your {request.collection_name} watch was filled.",
        f"Sold to {short_address(request.matched_maker)} for {format_usd(request.matched_amount_usd)}"
        f" (floor {format_usd(request.floor_price_usd)}).",
    ]
    link = build_tx_link(chain, request.settlement_receipt)
    if link:
        lines.append(f"Transaction: {link}")
    return "\n".join(lines)


def format_match_alert(request: WatchRequest, chain: ChainId = ChainId.APECHAIN) -> str:
    link = build_tx_link(chain, request.settlement_receipt)
    link_line = (
        f'<a href="{escape(link, quote=True)}">View transaction</a>' if link else "No transaction link"
    )
    return (
        "✅ <b>Offer accepted</b>\n\n"
        f"🖼 <b>Collection:</b> {escape(request.collection_name)}\n"
        f"💵 <b>Amount:</b> {format_usd(request.matched_amount_usd)}\n"
        f"📉 <b>Floor:</b> {format_usd(request.floor_price_usd)}\n"
        f"👤 <b>Buyer:</b> {escape(short_address(request.matched_maker))}\n\n"
        f"🔗 {link_line}"
    )


def describe_alternatives(ranked_bids: list[Bid], limit: int = 5) -> str:
    if not ranked_bids:
        return "No active bids right now."
    lines = ["Best current bids:"]
    for bid in ranked_bids[:limit]:
        lines.append(f"- {format_usd(bid.price_usd)} from {short_address(bid.maker_address)} on {bid.asset_id}")
    return "\n".join(lines)


def describe_listings(listings: list[Listing], limit: int = 10) -> str:
    if not listings:
        return "No NFTs available for purchase."
    lines = [f"Found {len(listings)} listings:"]
    for listing in listings[:limit]:
        label = listing.name or listing.asset_id
        source = f" on {listing.marketplace}" if listing.marketplace else ""
        lines.append(f"- {label}: {format_usd(listing.floor_price_usd)}{source}")
    return "\n".join(lines)


def describe_purchase(selection: AcquisitionSelection, receipt: str, chain: ChainId) -> str:
    names = ", ".join(listing.name or listing.asset_id for listing in selection.selected)
    text = f"Bought {len(selection.selected)} NFT(s) for {format_usd(selection.total_usd)}: {names}."
    link = build_tx_link(chain, receipt)
    return f"{text}\nTransaction: {link}" if link else text
