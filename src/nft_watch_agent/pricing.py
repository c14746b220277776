from __future__ import annotations

import logging
from decimal import ROUND_DOWN, Decimal, InvalidOperation

import httpx

from .errors import UpstreamApiError

logger = logging.getLogger(__name__)

WEI_PER_UNIT = Decimal(10) ** 18


class PriceOracle:
    """USD exchange rate for the settlement currency, from CoinGecko."""

    def __init__(
        self,
        api_base: str = "https://api.coingecko.com/api/v3",
        coin_id: str = "apecoin",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.coin_id = coin_id
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def usd_price(self) -> Decimal:
        try:
            resp = await self._client.get(
                f"{self.api_base}/simple/price",
                params={"ids": self.coin_id, "vs_currencies": "usd"},
            )
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamApiError(f"Price lookup for {self.coin_id} failed: {exc}") from exc

        quote = payload.get(self.coin_id) if isinstance(payload, dict) else None
        raw = quote.get("usd") if isinstance(quote, dict) else None
        if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
            raise UpstreamApiError(f"Invalid price data for {self.coin_id}: {payload!r}")
        try:
            price = Decimal(str(raw))
        except InvalidOperation as exc:
            raise UpstreamApiError(f"Invalid price data for {self.coin_id}: {raw!r}") from exc
        if not price.is_finite() or price <= 0:
            raise UpstreamApiError(f"Invalid price data for {self.coin_id}: {raw!r}")
        return price

    async def usd_to_wei(self, usd_amount: Decimal) -> int:
        price = await self.usd_price()
        wei = (usd_amount / price * WEI_PER_UNIT).to_integral_value(rounding=ROUND_DOWN)
        logger.debug("Converted $%s at %s USD/%s to %s wei", usd_amount, price, self.coin_id, wei)
        return int(wei)
