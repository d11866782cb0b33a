"""
市场阶段解析

CURVE -> DEX 单向转换：代币一旦被观察到处于DEX阶段，之后永远不会再解析为CURVE。
"""
import asyncio
from typing import Protocol, Set

from src.core.models import MarketPhase, MarketState, TokenInfo, TokenMarket
from src.utils.exceptions import WrongPhaseError
from src.utils.logger import get_logger

logger = get_logger(__name__)


class MarketDataSource(Protocol):
    async def get_token_market(self, token_address: str) -> TokenMarket: ...

    async def get_token_info(self, token_address: str) -> TokenInfo: ...


def available_supply(state: MarketState) -> int:
    """
    曲线上剩余可买代币数量

    数据源不提供 targetToken，这里用 reserve_native 近似已售数量。
    该近似会影响 SoldOut / ExceedsAvailableSupply 的判定，保持与线上行为一致。
    """
    return max(0, state.reserve_token - state.reserve_native)


class PhaseResolver:
    """代币市场阶段解析器"""

    def __init__(self, market_data: MarketDataSource):
        self.market_data = market_data
        # 已观察到上DEX的代币（只增不减）
        self._listed: Set[str] = set()

    async def resolve_phase(self, token_address: str) -> MarketState:
        """
        查询当前市场状态

        上市标志优先；标志缺失时才使用 market_type。

        Raises:
            DataSourceError: 市场数据获取失败
        """
        market, info = await asyncio.gather(
            self.market_data.get_token_market(token_address),
            self.market_data.get_token_info(token_address),
        )

        if info.is_listing is not None:
            phase = MarketPhase.DEX if info.is_listing else MarketPhase.CURVE
        else:
            phase = (
                MarketPhase.DEX
                if (market.market_type or "").upper() == MarketPhase.DEX
                else MarketPhase.CURVE
            )

        key = token_address.lower()
        if phase == MarketPhase.DEX:
            self._listed.add(key)
        elif key in self._listed:
            logger.warning("phase_regression_ignored", token=token_address)
            phase = MarketPhase.DEX

        return MarketState(
            token_address=token_address,
            phase=phase,
            virtual_native=market.virtual_native,
            virtual_token=market.virtual_token,
            reserve_token=market.reserve_token,
            reserve_native=market.reserve_native,
            price=market.price,
        )

    async def assert_phase(self, token_address: str, expected: MarketPhase) -> MarketState:
        """
        校验代币处于指定阶段

        Raises:
            WrongPhaseError: 阶段不匹配（不可重试，需换用对应工具）
        """
        state = await self.resolve_phase(token_address)
        if state.phase != expected:
            raise WrongPhaseError(token_address, state.phase.value, expected.value)
        return state
