"""
nad.fun 市场数据工具（只读）
"""
import time
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import structlog

from src.core.models import (
    AccountCreatedTokensInput,
    AccountPositions,
    AccountPositionsInput,
    ChartPoint,
    ChartSummaryOutput,
    CreatedTokens,
    ListTokensInput,
    OrderedTokens,
    SearchTokensInput,
    TokenChartInput,
    TokenHolders,
    TokenInfo,
    TokenMarket,
    TokenMarketInput,
    TokenPagedInput,
    TokenSearchOutput,
    TokenStatsInput,
    TokenSwaps,
)
from src.data_sources.nadfun import NadfunClient

logger = structlog.get_logger()

# 搜索时扫描的最新成交列表长度
SEARCH_SCAN_SIZE = 52
CHART_RECENT_POINTS = 10


def _to_decimal(value: str) -> Optional[Decimal]:
    try:
        d = Decimal(value)
    except (InvalidOperation, TypeError):
        return None
    return d if d.is_finite() else None


def summarize_chart(token_address: str, interval: str, points: List[ChartPoint]) -> ChartSummaryOutput:
    """最近N个数据点 + 全区间最小/最大/平均价"""
    summary = ChartSummaryOutput(
        token_address=token_address,
        interval=interval,
        total_points=len(points),
        recent=points[-CHART_RECENT_POINTS:],
    )
    prices = [p for p in (_to_decimal(pt.price) for pt in points) if p is not None]
    if prices:
        summary.min_price = str(min(prices))
        summary.max_price = str(max(prices))
        summary.avg_price = str((sum(prices) / len(prices)).quantize(Decimal("1e-18")).normalize())
    return summary


class MarketDataTool:
    """nad.fun 只读市场数据工具集合"""

    def __init__(self, nadfun_client: Optional[NadfunClient] = None):
        self.nadfun = nadfun_client or NadfunClient()
        logger.info("market_data_tool_initialized")

    async def search_tokens(self, params: SearchTokensInput) -> TokenSearchOutput:
        """按名称或符号在最新成交列表中做不区分大小写的子串匹配"""
        start_time = time.time()
        listing = await self.nadfun.get_tokens_ordered(
            NadfunClient.ORDER_LATEST_TRADE, page=1, limit=SEARCH_SCAN_SIZE
        )
        needle = params.query.lower()
        matches = [
            item
            for item in listing.order_token
            if needle in item.token_info.name.lower() or needle in item.token_info.symbol.lower()
        ]

        logger.info(
            "search_tokens_complete",
            query=params.query,
            matches=len(matches),
            elapsed_ms=round((time.time() - start_time) * 1000, 2),
        )
        return TokenSearchOutput(
            query=params.query,
            results=matches[: params.limit],
            scanned=len(listing.order_token),
        )

    async def token_stats(self, params: TokenStatsInput) -> TokenInfo:
        return await self.nadfun.get_token_info(params.token_address)

    async def account_positions(self, params: AccountPositionsInput) -> AccountPositions:
        return await self.nadfun.get_account_positions(
            params.account_address,
            position_type=params.position_type,
            page=params.page,
            limit=params.limit,
        )

    async def account_created_tokens(self, params: AccountCreatedTokensInput) -> CreatedTokens:
        return await self.nadfun.get_account_created_tokens(
            params.account_address, page=params.page, limit=params.limit
        )

    async def list_by_creation_time(self, params: ListTokensInput) -> OrderedTokens:
        return await self.nadfun.get_tokens_ordered(
            NadfunClient.ORDER_CREATION_TIME, page=params.page, limit=params.limit
        )

    async def list_by_market_cap(self, params: ListTokensInput) -> OrderedTokens:
        return await self.nadfun.get_tokens_ordered(
            NadfunClient.ORDER_MARKET_CAP, page=params.page, limit=params.limit
        )

    async def list_by_latest_trade(self, params: ListTokensInput) -> OrderedTokens:
        return await self.nadfun.get_tokens_ordered(
            NadfunClient.ORDER_LATEST_TRADE, page=params.page, limit=params.limit
        )

    async def token_chart(self, params: TokenChartInput) -> ChartSummaryOutput:
        chart = await self.nadfun.get_token_chart(
            params.token_address,
            interval=params.interval,
            base_timestamp=params.base_timestamp,
        )
        return summarize_chart(params.token_address, params.interval.value, chart.prices)

    async def token_swap_history(self, params: TokenPagedInput) -> TokenSwaps:
        return await self.nadfun.get_token_swaps(
            params.token_address, page=params.page, limit=params.limit
        )

    async def token_market(self, params: TokenMarketInput) -> TokenMarket:
        return await self.nadfun.get_token_market(params.token_address)

    async def token_holders(self, params: TokenPagedInput) -> TokenHolders:
        return await self.nadfun.get_token_holders(
            params.token_address, page=params.page, limit=params.limit
        )
