"""
NadfunClient单元测试
"""
from unittest.mock import AsyncMock

import pytest

from src.core.models import ChartInterval, PositionType
from src.data_sources.nadfun import NadfunClient
from src.utils.exceptions import DataSourceError
from tests.conftest import TOKEN_ADDRESS, WALLET_ADDRESS


@pytest.fixture
def client():
    client = NadfunClient(base_url="https://nadfun.test")
    client.circuit_breaker = None
    client.rate_limiter = None
    return client


@pytest.mark.unit
class TestNadfunClient:
    async def test_token_market_parses_wei_strings(self, client, sample_market_response):
        client._make_request = AsyncMock(return_value=sample_market_response)

        market = await client.get_token_market(TOKEN_ADDRESS)

        client._make_request.assert_awaited_once_with(
            "GET", f"/token/market/{TOKEN_ADDRESS}", params=None, json_body=None
        )
        assert market.market_type == "CURVE"
        assert market.virtual_native == 30 * 10**21
        assert market.reserve_native == 0

    async def test_ordered_tokens(self, client, sample_ordered_tokens_response):
        client._make_request = AsyncMock(return_value=sample_ordered_tokens_response)

        listing = await client.get_tokens_ordered(NadfunClient.ORDER_LATEST_TRADE, page=2, limit=5)

        args = client._make_request.await_args
        assert args.args[1] == "/order/latest_trade"
        assert args.kwargs["params"] == {"page": 2, "limit": 5}
        assert [t.token_info.symbol for t in listing.order_token] == ["MCAT", "DOGE2"]

    async def test_unknown_order_rejected(self, client):
        with pytest.raises(ValueError):
            await client.get_tokens_ordered("volume")

    async def test_positions_query(self, client):
        client._make_request = AsyncMock(
            return_value={"account_address": WALLET_ADDRESS, "positions": [], "total_count": 0}
        )

        positions = await client.get_account_positions(WALLET_ADDRESS, PositionType.ALL)

        assert client._make_request.await_args.kwargs["params"]["position_type"] == "all"
        assert positions.total_count == 0

    async def test_chart_params(self, client):
        client._make_request = AsyncMock(return_value={"interval": "1d", "prices": []})

        await client.get_token_chart(TOKEN_ADDRESS, ChartInterval.ONE_DAY, base_timestamp=1_700_000_000)

        params = client._make_request.await_args.kwargs["params"]
        assert params == {"interval": "1d", "base_timestamp": 1_700_000_000}

    async def test_malformed_payload_is_data_source_error(self, client):
        client._make_request = AsyncMock(return_value={"swaps": [{"swap_id": "x"}]})

        with pytest.raises(DataSourceError) as exc_info:
            await client.get_token_swaps(TOKEN_ADDRESS)
        assert exc_info.value.source == "nadfun"
