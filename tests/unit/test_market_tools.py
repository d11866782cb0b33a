"""
市场数据与市场阶段工具测试
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.market_info import MARKET_TYPE_COMPARISON, get_market_type_info
from src.core.models import (
    ChartPoint,
    MarketPhase,
    MarketTypeInfoInput,
    OrderedTokens,
    SearchTokensInput,
    TokenChart,
    TokenChartInput,
    TokenMarketPhaseInput,
)
from src.core.phase import PhaseResolver
from src.data_sources.nadfun import NadfunClient
from src.tools.market_data import SEARCH_SCAN_SIZE, MarketDataTool, summarize_chart
from src.tools.market_phase import MarketPhaseTool
from tests.conftest import TOKEN_ADDRESS


@pytest.fixture
def nadfun(sample_ordered_tokens_response):
    client = MagicMock(spec=NadfunClient)
    client.get_tokens_ordered = AsyncMock(
        return_value=OrderedTokens.model_validate(sample_ordered_tokens_response)
    )
    return client


@pytest.mark.unit
class TestSearchTokens:
    async def test_matches_name_or_symbol_case_insensitively(self, nadfun):
        tool = MarketDataTool(nadfun)

        by_symbol = await tool.search_tokens(SearchTokensInput(query="doge"))
        by_name = await tool.search_tokens(SearchTokensInput(query="moon"))

        assert [t.token_info.symbol for t in by_symbol.results] == ["DOGE2"]
        assert [t.token_info.name for t in by_name.results] == ["Moon Cat"]
        assert by_name.scanned == 2
        nadfun.get_tokens_ordered.assert_awaited_with(
            NadfunClient.ORDER_LATEST_TRADE, page=1, limit=SEARCH_SCAN_SIZE
        )

    async def test_limit_applies_to_matches(self, nadfun):
        result = await MarketDataTool(nadfun).search_tokens(SearchTokensInput(query="o", limit=1))
        assert len(result.results) == 1

    async def test_no_match(self, nadfun):
        result = await MarketDataTool(nadfun).search_tokens(SearchTokensInput(query="zzz"))
        assert result.results == []


@pytest.mark.unit
class TestChart:
    def test_summary_keeps_last_ten_points(self):
        points = [ChartPoint(timestamp=i, price=str(i + 1)) for i in range(25)]

        summary = summarize_chart(TOKEN_ADDRESS, "1h", points)

        assert summary.total_points == 25
        assert [p.timestamp for p in summary.recent] == list(range(15, 25))
        assert summary.min_price == "1"
        assert summary.max_price == "25"
        assert summary.avg_price == "13"

    def test_unparseable_prices_skipped(self):
        points = [ChartPoint(timestamp=1, price="0.5"), ChartPoint(timestamp=2, price="n/a")]
        summary = summarize_chart(TOKEN_ADDRESS, "1h", points)
        assert summary.min_price == summary.max_price == "0.5"

    def test_empty_chart(self):
        summary = summarize_chart(TOKEN_ADDRESS, "1h", [])
        assert summary.recent == []
        assert summary.avg_price is None

    async def test_token_chart_tool(self):
        client = MagicMock(spec=NadfunClient)
        client.get_token_chart = AsyncMock(
            return_value=TokenChart(interval="5m", prices=[ChartPoint(timestamp=1, price="2")])
        )

        summary = await MarketDataTool(client).token_chart(
            TokenChartInput(token_address=TOKEN_ADDRESS, interval="5m")
        )

        assert summary.interval == "5m"
        assert summary.avg_price == "2"


@pytest.mark.unit
class TestMarketPhaseTool:
    async def test_curve_phase_reports_available_supply(self, market_data):
        tool = MarketPhaseTool(PhaseResolver(market_data), market_data)

        output = await tool.token_market_phase(TokenMarketPhaseInput(token_address=TOKEN_ADDRESS))

        assert output.phase == MarketPhase.CURVE
        assert output.symbol == "MCAT"
        assert output.available_tokens == 900_000
        assert any("buy-tokens-from-curve" in step for step in output.next_steps)

    async def test_dex_phase(self, market_data):
        market_data.set_listing(True)
        tool = MarketPhaseTool(PhaseResolver(market_data), market_data)

        output = await tool.token_market_phase(TokenMarketPhaseInput(token_address=TOKEN_ADDRESS))

        assert output.phase == MarketPhase.DEX
        assert output.available_tokens is None
        assert any("sell-tokens-to-dex" in step for step in output.next_steps)

    async def test_market_type_info_accepts_lowercase(self, market_data):
        tool = MarketPhaseTool(PhaseResolver(market_data), market_data)
        text = await tool.market_type_info(MarketTypeInfoInput(market_type="dex"))
        assert text == get_market_type_info(MarketPhase.DEX).description

    def test_comparison_mentions_both_markets(self):
        assert "CURVE" in MARKET_TYPE_COMPARISON
        assert "DEX" in MARKET_TYPE_COMPARISON

    def test_unknown_market_type(self):
        with pytest.raises(ValueError):
            get_market_type_info("AMM")
