"""
交易工具测试：身份解析失败在任何网络调用之前拒绝
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.identity import IdentityResolver
from src.core.models import (
    CurveBuyInput,
    DexSellInput,
    GetMonBalanceInput,
    SuppliedKeyIdentity,
    TradeResult,
    TradeStage,
    TransferMonInput,
)
from src.core.trade_executor import TradeExecutor
from src.tools.trading import TradingTool
from src.utils.exceptions import TradeErrorKind
from tests.conftest import OTHER_ADDRESS, TEST_PRIVATE_KEY, TOKEN_ADDRESS, WALLET_ADDRESS


@pytest.fixture
def executor():
    executor = MagicMock(spec=TradeExecutor)
    executor.buy_exact_in = AsyncMock(
        return_value=TradeResult(succeeded=True, stage=TradeStage.RECONCILED, message="ok")
    )
    executor.sell_to_dex = AsyncMock()
    executor.transfer_native = AsyncMock()
    return executor


@pytest.fixture
def tool(executor, chain):
    return TradingTool(IdentityResolver(None), executor, chain)


@pytest.mark.unit
class TestTradingTool:
    async def test_no_identity_rejected(self, tool, executor, chain):
        result = await tool.sell_to_dex(DexSellInput(token_address=TOKEN_ADDRESS, amount="1"))

        assert result.error_kind == TradeErrorKind.NO_IDENTITY
        assert result.stage == TradeStage.REJECTED
        executor.sell_to_dex.assert_not_awaited()
        assert chain.connections == 0

    async def test_malformed_key_rejected(self, tool, executor):
        result = await tool.buy_from_curve(
            CurveBuyInput(token_address=TOKEN_ADDRESS, amount="1", private_key="0xdead")
        )

        assert result.error_kind == TradeErrorKind.INVALID_KEY
        assert "0xdead" not in result.message
        executor.buy_exact_in.assert_not_awaited()

    async def test_supplied_key_signs(self, tool, executor):
        result = await tool.buy_from_curve(
            CurveBuyInput(token_address=TOKEN_ADDRESS, amount="0.1", private_key=TEST_PRIVATE_KEY)
        )

        assert result.succeeded
        token, amount, identity = executor.buy_exact_in.await_args.args
        assert (token, amount) == (TOKEN_ADDRESS, "0.1")
        assert isinstance(identity, SuppliedKeyIdentity)

    async def test_transfer_without_identity(self, tool, executor):
        result = await tool.transfer_mon(TransferMonInput(to_address=OTHER_ADDRESS, amount="1"))

        assert not result.succeeded
        assert result.error_kind == TradeErrorKind.NO_IDENTITY
        executor.transfer_native.assert_not_awaited()

    async def test_balance(self, tool, chain):
        chain.session.get_balance.return_value = 1_500_000_000_000_000_000

        output = await tool.get_mon_balance(GetMonBalanceInput(address=WALLET_ADDRESS))

        assert output.balance_wei == 1_500_000_000_000_000_000
        assert output.balance == "1.5 MON"
