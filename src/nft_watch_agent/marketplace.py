from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from .errors import UpstreamApiError, ValidationError
from .selector import sort_listings
from .types import Bid, Listing, SettlementSteps
from .validation import validate_transaction_plans

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "magiceden.io"


class MarketplaceClient:
    """Client for a Reservoir-style collectibles order book.

    Read methods degrade to empty results when the API misbehaves; the
    execute endpoints return ``None`` so callers can treat a missing step as
    "nothing to settle".
    """

    def __init__(
        self,
        api_base: str,
        chain_slug: str = "apechain",
        timeout: float = 20.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.chain_slug = chain_slug
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    def _rtp(self, path: str) -> str:
        return f"/v3/rtp/{self.chain_slug}{path}"

    async def _get(self, path: str, params: dict[str, Any] | list[tuple[str, str]] | None = None) -> Any:
        try:
            resp = await self._client.get(f"{self.api_base}{path}", params=params)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamApiError(f"GET {path} failed: {exc}") from exc

    async def _post(self, path: str, body: dict[str, Any], params: dict[str, Any] | None = None) -> Any:
        try:
            resp = await self._client.post(
                f"{self.api_base}{path}",
                json=body,
                params=params,
                headers={"Accept": "*/*"},
            )
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamApiError(f"POST {path} failed: {exc}") from exc

    # -- listings --------------------------------------------------------

    async def search_listings(
        self,
        collection_name: str,
        attributes: list[str] | None = None,
        token_id: str | None = None,
    ) -> list[Listing]:
        try:
            contracts = await self._find_collection_contracts(collection_name)
            if not contracts:
                logger.warning("No collections found for name %r", collection_name)
                return []

            listings: list[Listing] = []
            for contract in contracts:
                params = await self._token_filter_params(contract, attributes, token_id)
                params = [
                    ("collection", contract),
                    ("sortBy", "floorAskPrice"),
                    ("sortDirection", "asc"),
                    ("includeAttributes", "true"),
                    *params,
                ]
                data = await self._get(self._rtp("/tokens/v6"), params=params)
                rows = data.get("tokens", []) if isinstance(data, dict) else []
                for row in rows if isinstance(rows, list) else []:
                    listing = parse_listing(row)
                    if listing is not None:
                        listings.append(listing)
        except UpstreamApiError as exc:
            logger.warning("Listing search for %r failed: %s", collection_name, exc)
            return []

        return sort_listings(listings)

    async def _find_collection_contracts(self, collection_name: str) -> list[str]:
        data = await self._get(
            f"/v2/unifiedSearch/xchain/collection/{collection_name}",
            params={
                "sortBy": "floorAskPrice",
                "sortDirection": "asc",
                "edge_cache": "true",
                "limit": 100,
            },
        )
        collections = data.get(self.chain_slug) if isinstance(data, dict) else None
        if not isinstance(collections, list):
            return []
        return [str(c["contract"]) for c in collections if isinstance(c, dict) and c.get("contract")]

    async def _token_filter_params(
        self, contract: str, attributes: list[str] | None, token_id: str | None
    ) -> list[tuple[str, str]]:
        if token_id:
            return [("tokenName", token_id)]
        if not attributes:
            return []

        # Users give bare trait values ("gold"); the API wants key/value pairs.
        known = await self._fetch_attribute_index(contract)
        params: list[tuple[str, str]] = []
        for value in attributes:
            match = known.get(value.lower())
            if match is not None:
                key, canonical = match
                params.append((f"attributes[{key}]", canonical))
        return params

    async def _fetch_attribute_index(self, contract: str) -> dict[str, tuple[str, str]]:
        data = await self._get(self._rtp(f"/collections/{contract}/attributes/all/v4"))
        index: dict[str, tuple[str, str]] = {}
        attrs = data.get("attributes", []) if isinstance(data, dict) else []
        for attr in attrs if isinstance(attrs, list) else []:
            if not isinstance(attr, dict) or not attr.get("key"):
                continue
            for value_obj in _list(attr.get("values")):
                value = value_obj.get("value") if isinstance(value_obj, dict) else None
                if isinstance(value, str) and value:
                    index[value.lower()] = (str(attr["key"]), value)
        return index

    # -- bids ------------------------------------------------------------

    async def fetch_owned_assets(self, owner_address: str, collection_name: str) -> list[str]:
        try:
            data = await self._get(
                self._rtp(f"/users/{owner_address}/tokens/v7"),
                params={
                    "sortBy": "acquiredAt",
                    "sortDirection": "desc",
                    "includeTopBid": "true",
                    "includeAttributes": "false",
                },
            )
        except UpstreamApiError as exc:
            logger.warning("Owned-token lookup for %s failed: %s", owner_address, exc)
            return []

        needle = collection_name.lower()
        out: list[str] = []
        rows = data.get("tokens", []) if isinstance(data, dict) else []
        for row in rows if isinstance(rows, list) else []:
            token = row.get("token") if isinstance(row, dict) else None
            if not isinstance(token, dict):
                continue
            name = str(_dict(token.get("collection")).get("name") or "")
            if needle in name.lower() and token.get("contract") and token.get("tokenId") is not None:
                out.append(f"{token['contract']}:{token['tokenId']}")
        return out

    async def fetch_bids(self, asset_ids: list[str], now: float | None = None) -> list[Bid]:
        now = time.time() if now is None else now
        bids: list[Bid] = []
        for asset_id in asset_ids:
            try:
                data = await self._get(
                    self._rtp("/orders/bids/v6"),
                    params={"token": asset_id, "sortBy": "createdAt", "limit": 50},
                )
            except UpstreamApiError as exc:
                logger.warning("Bid fetch for %s failed: %s", asset_id, exc)
                continue
            orders = data.get("orders", []) if isinstance(data, dict) else []
            for order in orders if isinstance(orders, list) else []:
                bid = parse_bid(order, asset_id, now)
                if bid is not None:
                    bids.append(bid)
        return bids

    # -- settlement ------------------------------------------------------

    async def buy_steps(self, order_ids: list[str], taker_address: str) -> SettlementSteps | None:
        try:
            payload = await self._post(
                self._rtp("/execute/buy/v7"),
                {
                    "items": [{"orderId": order_id} for order_id in order_ids],
                    "skipBalanceCheck": True,
                    "taker": taker_address,
                },
            )
        except UpstreamApiError as exc:
            logger.error("Buy steps request failed: %s", exc)
            return None
        return _checked_steps(payload, f"buy of {len(order_ids)} order(s)")

    async def sell_steps(self, bid_id: str, asset_id: str, taker_address: str) -> SettlementSteps | None:
        try:
            payload = await self._post(
                self._rtp("/execute/sell/v7"),
                {
                    "items": [{"quantity": 1, "token": asset_id, "orderId": bid_id}],
                    "taker": taker_address,
                },
            )
        except UpstreamApiError as exc:
            logger.error("Sell steps request for bid %s failed: %s", bid_id, exc)
            return None
        return _checked_steps(payload, f"sale of {asset_id} to bid {bid_id}")

    async def bid_signature_step(
        self, maker_address: str, wei_price: int, currency: str, asset_id: str
    ) -> dict[str, Any]:
        payload = await self._post(
            self._rtp("/execute/bid/v5"),
            {
                "maker": maker_address,
                "source": DEFAULT_SOURCE,
                "params": [
                    {
                        "weiPrice": str(wei_price),
                        "currency": currency,
                        "quantity": 1,
                        "orderbook": "reservoir",
                        "orderKind": "seaport-v1.6",
                        "options": {"seaport-v1.6": {"useOffChainCancellation": True}},
                        "automatedRoyalties": True,
                        "token": asset_id,
                    }
                ],
            },
        )
        step = _find_step(payload, "order-signature")
        items = step.get("items") if step else None
        data = items[0].get("data") if isinstance(items, list) and items and isinstance(items[0], dict) else None
        if not isinstance(data, dict) or not isinstance(data.get("sign"), dict) or not isinstance(data.get("post"), dict):
            raise UpstreamApiError("Signature step not found in bid response")
        return data

    async def post_signed_order(self, body: dict[str, Any], signature: str) -> Any:
        return await self._post(self._rtp("/order/v3"), body, params={"signature": signature})


def parse_listing(row: Any) -> Listing | None:
    if not isinstance(row, dict):
        return None
    token = row.get("token")
    if not isinstance(token, dict) or not token.get("contract") or token.get("tokenId") is None:
        return None

    floor_ask = _dict(_dict(row.get("market")).get("floorAsk"))
    price = _dict(floor_ask.get("price"))
    attributes = tuple(
        (str(a.get("key")), str(a.get("value")))
        for a in _list(token.get("attributes"))
        if isinstance(a, dict) and a.get("key") is not None
    )
    return Listing(
        asset_id=f"{token['contract']}:{token['tokenId']}",
        floor_price_usd=_to_decimal(_dict(price.get("amount")).get("usd")),
        order_id=_string_or_none(floor_ask.get("id")),
        name=_string_or_none(token.get("name")),
        contract=str(token["contract"]),
        token_id=str(token["tokenId"]),
        marketplace=_string_or_none(_dict(floor_ask.get("source")).get("name")),
        collection_name=_string_or_none(_dict(token.get("collection")).get("name")),
        currency=_string_or_none(_dict(price.get("currency")).get("symbol")),
        attributes=attributes,
    )


def parse_bid(order: Any, asset_id: str, now: float) -> Bid | None:
    if not isinstance(order, dict):
        return None
    bid_id = _string_or_none(order.get("id"))
    maker = _string_or_none(order.get("maker"))
    price = _to_decimal(_dict(_dict(order.get("price")).get("amount")).get("usd"))
    if not bid_id or not maker or price is None:
        return None

    status = order.get("status")
    if status is not None and status != "active":
        return None

    expires_at = None
    try:
        expiration = int(order.get("expiration") or 0)
    except (TypeError, ValueError, OverflowError):
        expiration = 0
    if expiration > 0:
        if expiration <= now:
            return None
        try:
            expires_at = datetime.fromtimestamp(expiration, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            expires_at = None

    return Bid(
        bid_id=bid_id,
        maker_address=maker,
        price_usd=price,
        asset_id=asset_id,
        created_at=_parse_iso(order.get("createdAt")),
        expires_at=expires_at,
    )


def parse_settlement_steps(payload: Any) -> SettlementSteps | None:
    """Pull the approval and sale transactions out of an execute response.

    Only incomplete items count; an approval already granted on chain comes
    back marked complete and is skipped.
    """
    sale_data = _incomplete_step_data(_find_step(payload, "sale"))
    if sale_data is None:
        return None

    approval_data = None
    for step in _list(payload.get("steps")):
        if isinstance(step, dict) and str(step.get("id", "")).endswith("approval"):
            approval_data = _incomplete_step_data(step)
            if approval_data is not None:
                break

    raw = [approval_data, sale_data] if approval_data is not None else [sale_data]
    plans = validate_transaction_plans(raw)
    if len(plans) == 2:
        return SettlementSteps(sale=plans[1], approval=plans[0])
    return SettlementSteps(sale=plans[0])


def _checked_steps(payload: Any, what: str) -> SettlementSteps | None:
    try:
        return parse_settlement_steps(payload)
    except ValidationError as exc:
        logger.error("Marketplace returned malformed steps for %s: %s", what, exc)
        return None


def _find_step(payload: Any, step_id: str) -> dict[str, Any] | None:
    if not isinstance(payload, dict):
        return None
    steps = payload.get("steps")
    if not isinstance(steps, list):
        return None
    for step in steps:
        if isinstance(step, dict) and step.get("id") == step_id:
            return step
    return None


def _incomplete_step_data(step: dict[str, Any] | None) -> dict[str, Any] | None:
    if step is None:
        return None
    for item in _list(step.get("items")):
        if not isinstance(item, dict) or item.get("status") == "complete":
            continue
        data = item.get("data")
        if isinstance(data, dict):
            return data
    return None


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def _parse_iso(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _string_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []
