import asyncio
from decimal import Decimal

import httpx
import pytest

from nft_watch_agent.errors import UpstreamApiError
from nft_watch_agent.pricing import PriceOracle


def _oracle(payload, status: int = 200) -> PriceOracle:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["ids"] == "apecoin"
        return httpx.Response(status, json=payload)

    return PriceOracle(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_usd_to_wei_divides_by_price() -> None:
    oracle = _oracle({"apecoin": {"usd": 0.5}})

    wei = asyncio.run(oracle.usd_to_wei(Decimal("10")))

    assert wei == 20 * 10**18


def test_invalid_price_raises_upstream_error() -> None:
    oracle = _oracle({"apecoin": {}})

    with pytest.raises(UpstreamApiError):
        asyncio.run(oracle.usd_price())


def test_http_error_raises_upstream_error() -> None:
    oracle = _oracle({"error": "rate limited"}, status=429)

    with pytest.raises(UpstreamApiError):
        asyncio.run(oracle.usd_price())


def test_non_object_quote_raises_upstream_error() -> None:
    oracle = _oracle({"apecoin": ["0.5"]})

    with pytest.raises(UpstreamApiError):
        asyncio.run(oracle.usd_price())
