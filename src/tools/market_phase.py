"""
市场类型说明与代币阶段查询工具
"""
import structlog

from src.core.market_info import MARKET_TYPE_COMPARISON, get_market_type_info
from src.core.models import (
    MarketPhase,
    MarketTypeComparisonInput,
    MarketTypeInfoInput,
    TokenMarketPhaseInput,
    TokenMarketPhaseOutput,
)
from src.core.phase import PhaseResolver, available_supply
from src.data_sources.nadfun import NadfunClient

logger = structlog.get_logger()

CURVE_NEXT_STEPS = [
    "Buy with buy-tokens-from-curve (spend an exact amount of MON)",
    "Buy the exact remaining supply with exact-out-buy-tokens-from-curve to trigger DEX listing",
]
DEX_NEXT_STEPS = [
    "Buy with buy-tokens-from-dex",
    "Sell with sell-tokens-to-dex (approval is sent automatically)",
]


class MarketPhaseTool:
    def __init__(self, phase_resolver: PhaseResolver, nadfun_client: NadfunClient):
        self.phase_resolver = phase_resolver
        self.nadfun = nadfun_client

    async def market_type_info(self, params: MarketTypeInfoInput) -> str:
        return get_market_type_info(params.market_type).description

    async def market_type_comparison(self, params: MarketTypeComparisonInput) -> str:
        return MARKET_TYPE_COMPARISON

    async def token_market_phase(self, params: TokenMarketPhaseInput) -> TokenMarketPhaseOutput:
        """当前阶段（遵循上DEX单向规则）及对应可用的交易工具"""
        state = await self.phase_resolver.resolve_phase(params.token_address)
        info = await self.nadfun.get_token_info(params.token_address)

        output = TokenMarketPhaseOutput(
            token_address=params.token_address,
            name=info.name,
            symbol=info.symbol,
            phase=state.phase,
            price=state.price,
        )
        if state.phase == MarketPhase.CURVE:
            output.available_tokens = available_supply(state)
            output.virtual_native = state.virtual_native
            output.virtual_token = state.virtual_token
            output.next_steps = list(CURVE_NEXT_STEPS)
        else:
            output.next_steps = list(DEX_NEXT_STEPS)

        logger.info("token_market_phase_resolved", token=params.token_address, phase=state.phase.value)
        return output
