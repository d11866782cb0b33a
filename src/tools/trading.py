"""
交易与钱包工具

身份解析失败（无身份、私钥格式错误）在任何网络调用之前以结构化结果拒绝。
"""
from typing import Awaitable, Callable, Optional, Union

import structlog
from pydantic import SecretStr, ValidationError

from src.chain.gateway import ChainGateway
from src.core.identity import IdentityResolver
from src.core.models import (
    CurveBuyInput,
    CurveExactOutBuyInput,
    DexBuyInput,
    DexSellInput,
    GetMonBalanceInput,
    MonBalanceOutput,
    SessionWalletIdentity,
    SuppliedKeyIdentity,
    TradeResult,
    TradeStage,
    TransferMonInput,
    TransferResult,
)
from src.core.trade_executor import TradeExecutor
from src.core.units import format_units
from src.utils.exceptions import InvalidKeyError, NoIdentityError, TradeErrorKind

logger = structlog.get_logger()

Signer = Union[SessionWalletIdentity, SuppliedKeyIdentity]


class TradingTool:
    """买卖、转账与余额查询"""

    def __init__(
        self,
        identity_resolver: IdentityResolver,
        executor: TradeExecutor,
        chain: ChainGateway,
    ):
        self.identity_resolver = identity_resolver
        self.executor = executor
        self.chain = chain
        logger.info("trading_tool_initialized")

    async def _resolve(
        self, session_id: Optional[str], private_key: Optional[SecretStr]
    ) -> tuple[Optional[Signer], Optional[TradeErrorKind], str]:
        try:
            identity = await self.identity_resolver.resolve(session_id, private_key)
        except NoIdentityError as e:
            return None, TradeErrorKind.NO_IDENTITY, str(e)
        except InvalidKeyError as e:
            return None, TradeErrorKind.INVALID_KEY, str(e)
        return identity, None, ""

    async def _trade(
        self,
        params,
        run: Callable[[Signer], Awaitable[TradeResult]],
    ) -> TradeResult:
        identity, kind, message = await self._resolve(params.session_id, params.private_key)
        if identity is None:
            logger.warning("trade_rejected", token=params.token_address, error_kind=kind.value)
            return TradeResult(
                succeeded=False,
                stage=TradeStage.REJECTED,
                message=message,
                error_kind=kind.value,
            )
        return await run(identity)

    async def buy_from_curve(self, params: CurveBuyInput) -> TradeResult:
        return await self._trade(
            params, lambda signer: self.executor.buy_exact_in(params.token_address, params.amount, signer)
        )

    async def exact_out_buy_from_curve(self, params: CurveExactOutBuyInput) -> TradeResult:
        return await self._trade(
            params,
            lambda signer: self.executor.buy_exact_out(params.token_address, params.tokens_out, signer),
        )

    async def buy_from_dex(self, params: DexBuyInput) -> TradeResult:
        return await self._trade(
            params,
            lambda signer: self.executor.buy_from_dex(
                params.token_address, params.amount, signer, slippage_bps=params.slippage_bps
            ),
        )

    async def sell_to_dex(self, params: DexSellInput) -> TradeResult:
        return await self._trade(
            params,
            lambda signer: self.executor.sell_to_dex(
                params.token_address, params.amount, signer, slippage_bps=params.slippage_bps
            ),
        )

    async def transfer_mon(self, params: TransferMonInput) -> TransferResult:
        identity, kind, message = await self._resolve(params.session_id, params.private_key)
        if identity is None:
            return TransferResult(succeeded=False, message=message, error_kind=kind.value)
        return await self.executor.transfer_native(params.to_address, params.amount, identity)

    async def get_mon_balance(self, params: GetMonBalanceInput) -> MonBalanceOutput:
        async with self.chain.connect() as chain:
            balance = await chain.get_balance(params.address)
        return MonBalanceOutput(
            address=params.address,
            balance_wei=balance,
            balance=f"{format_units(balance)} MON",
        )


_KIND_BY_FIELD = {
    "token_address": TradeErrorKind.INVALID_ADDRESS,
    "to_address": TradeErrorKind.INVALID_ADDRESS,
    "private_key": TradeErrorKind.INVALID_KEY,
}


def reject_invalid_arguments(error: ValidationError, transfer: bool = False) -> Union[TradeResult, TransferResult]:
    """参数校验失败时的结构化拒绝（不回显输入值）"""
    details = error.errors(include_input=False, include_url=False)
    kind = TradeErrorKind.INVALID_AMOUNT
    for detail in details:
        field = str(detail["loc"][0]) if detail["loc"] else ""
        if field in _KIND_BY_FIELD:
            kind = _KIND_BY_FIELD[field]
            break
    message = "; ".join(
        f"{'.'.join(str(p) for p in d['loc']) or 'arguments'}: {d['msg']}" for d in details
    )
    if transfer:
        return TransferResult(succeeded=False, message=message, error_kind=kind.value)
    return TradeResult(succeeded=False, stage=TradeStage.REJECTED, message=message, error_kind=kind.value)
