"""
交易执行器

单次交易调用的完整流程：
参数校验 -> 阶段检查 -> 定价 -> 余额检查 -> 提交 -> 等待回执 -> 对账。

所有失败都以 TradeResult 返回（error_kind 为 TradeErrorKind），不会越过工具边界抛出。
已广播的交易不会重试或重发，调用方如需重试必须发起新调用。
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from src.chain.abi import CORE_ABI, ROUTER_ABI, TOKEN_ABI
from src.chain.gateway import ChainGateway, ChainSession
from src.core.models import (
    MarketPhase,
    MarketState,
    SessionWalletIdentity,
    SuppliedKeyIdentity,
    TradeDirection,
    TradeIntent,
    TradeMode,
    TradeResult,
    TradeStage,
    TradeVenue,
    TradingConfig,
    TransferResult,
)
from src.core.phase import PhaseResolver, available_supply
from src.core.pricing import (
    amount_in_for_exact_out,
    apply_buffer,
    apply_slippage,
    quote_exact_in,
    with_fee,
)
from src.core.units import format_units, parse_units
from src.utils.exceptions import (
    CacheError,
    ChainError,
    DataSourceError,
    DomainError,
    TradeError,
    TradeErrorKind,
    WrongPhaseError,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

Signer = Union[SessionWalletIdentity, SuppliedKeyIdentity]

INSUFFICIENT_FUNDS_MARKERS = ("insufficient funds", "insufficient balance")


def is_insufficient_funds(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in INSUFFICIENT_FUNDS_MARKERS)


@dataclass
class _TradeContext:
    """单次调用的可变执行状态"""

    intent: TradeIntent
    identity: Signer
    stage: TradeStage = TradeStage.VALIDATING
    broadcast: bool = False
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def signer(self) -> str:
        return self.identity.address

    def result(self, succeeded: bool, message: str, error_kind: Optional[TradeErrorKind] = None) -> TradeResult:
        return TradeResult(
            succeeded=succeeded,
            stage=self.stage,
            message=message,
            intent=self.intent,
            signer=self.signer,
            error_kind=error_kind.value if error_kind else None,
            **self.fields,
        )


class TradeExecutor:
    """交易执行器"""

    def __init__(
        self,
        phase_resolver: PhaseResolver,
        chain: ChainGateway,
        trading_config: TradingConfig,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.phase_resolver = phase_resolver
        self.chain = chain
        self.config = trading_config
        self.clock = clock
        self.sleep = sleep

    # ==================== 公开操作 ====================

    async def buy_exact_in(self, token_address: str, amount: str, identity: Signer) -> TradeResult:
        """用指定数量的MON在联合曲线上买入"""
        intent = TradeIntent(
            token_address=token_address,
            direction=TradeDirection.BUY,
            mode=TradeMode.EXACT_IN,
            venue=TradeVenue.CURVE,
            amount=amount,
        )
        return await self._execute(_TradeContext(intent, identity), self._curve_buy_exact_in)

    async def buy_exact_out(self, token_address: str, tokens_out: str, identity: Signer) -> TradeResult:
        """在联合曲线上买入精确数量的代币，买完剩余供应会触发上DEX"""
        intent = TradeIntent(
            token_address=token_address,
            direction=TradeDirection.BUY,
            mode=TradeMode.EXACT_OUT,
            venue=TradeVenue.CURVE,
            amount=tokens_out,
        )
        return await self._execute(_TradeContext(intent, identity), self._curve_buy_exact_out)

    async def buy_from_dex(
        self,
        token_address: str,
        amount: str,
        identity: Signer,
        slippage_bps: Optional[int] = None,
    ) -> TradeResult:
        intent = TradeIntent(
            token_address=token_address,
            direction=TradeDirection.BUY,
            mode=TradeMode.EXACT_IN,
            venue=TradeVenue.DEX,
            amount=amount,
            slippage_bps=self._slippage(slippage_bps),
        )
        return await self._execute(_TradeContext(intent, identity), self._dex_buy)

    async def sell_to_dex(
        self,
        token_address: str,
        amount: str,
        identity: Signer,
        slippage_bps: Optional[int] = None,
    ) -> TradeResult:
        intent = TradeIntent(
            token_address=token_address,
            direction=TradeDirection.SELL,
            mode=TradeMode.EXACT_IN,
            venue=TradeVenue.DEX,
            amount=amount,
            slippage_bps=self._slippage(slippage_bps),
        )
        return await self._execute(_TradeContext(intent, identity), self._dex_sell)

    async def transfer_native(self, to_address: str, amount: str, identity: Signer) -> TransferResult:
        """
        转账MON

        Returns:
            TransferResult，失败同样以结果返回
        """
        value = parse_units(amount)
        if value is None:
            return TransferResult(
                succeeded=False,
                message=f"Invalid amount: {amount!r} (expected a positive decimal)",
                error_kind=TradeErrorKind.INVALID_AMOUNT.value,
            )

        base = {"sender": identity.address, "recipient": to_address, "amount_wei": value}
        tx_hash = None
        try:
            async with self.chain.connect() as chain:
                balance = await chain.get_balance(identity.address)
                if balance < value:
                    return TransferResult(
                        succeeded=False,
                        message=(
                            f"Insufficient balance: have {format_units(balance)} MON, "
                            f"need {format_units(value)} MON"
                        ),
                        error_kind=TradeErrorKind.INSUFFICIENT_BALANCE.value,
                        **base,
                    )
                tx_hash = await chain.send_transaction(identity, to_address, value=value)
                ok = await chain.wait_for_receipt(tx_hash)
        except ChainError as e:
            kind = (
                TradeErrorKind.INSUFFICIENT_BALANCE
                if is_insufficient_funds(str(e))
                else TradeErrorKind.DEPENDENCY_ERROR
            )
            return TransferResult(
                succeeded=False, message=str(e), tx_hash=tx_hash, error_kind=kind.value, **base
            )

        if not ok:
            return TransferResult(
                succeeded=False,
                message=f"Transfer reverted: {tx_hash}",
                tx_hash=tx_hash,
                error_kind=TradeErrorKind.TRANSACTION_REVERTED.value,
                **base,
            )
        logger.info("transfer_confirmed", tx_hash=tx_hash, sender=identity.address)
        return TransferResult(
            succeeded=True,
            message=f"Sent {format_units(value)} MON to {to_address}",
            tx_hash=tx_hash,
            **base,
        )

    # ==================== 执行框架 ====================

    async def _execute(
        self,
        ctx: _TradeContext,
        flow: Callable[[_TradeContext], Awaitable[str]],
    ) -> TradeResult:
        log = logger.bind(
            token=ctx.intent.token_address,
            venue=ctx.intent.venue.value,
            direction=ctx.intent.direction.value,
            mode=ctx.intent.mode.value,
            signer=ctx.signer,
        )
        try:
            message = await flow(ctx)
        except TradeError as e:
            return self._fail(ctx, e.kind, e.message, log)
        except (DataSourceError, ChainError, CacheError) as e:
            return self._fail(ctx, TradeErrorKind.DEPENDENCY_ERROR, str(e), log)
        except Exception as e:
            log.error("trade_internal_error", error=str(e), exc_type=type(e).__name__)
            return self._fail(ctx, TradeErrorKind.INTERNAL_ERROR, f"Internal error: {e}", log)

        log.info("trade_completed", stage=ctx.stage.value, tx_hash=ctx.fields.get("tx_hash"))
        return ctx.result(True, message)

    @staticmethod
    def _fail(ctx: _TradeContext, kind: TradeErrorKind, message: str, log) -> TradeResult:
        ctx.stage = TradeStage.FAILED if ctx.broadcast else TradeStage.REJECTED
        log.warning(
            "trade_failed" if ctx.broadcast else "trade_rejected",
            error_kind=kind.value,
            reason=message,
            tx_hash=ctx.fields.get("tx_hash"),
        )
        return ctx.result(False, message, kind)

    def _slippage(self, slippage_bps: Optional[int]) -> int:
        return self.config.default_slippage_bps if slippage_bps is None else slippage_bps

    def _deadline(self) -> int:
        return int(self.clock()) + self.config.deadline_seconds

    @staticmethod
    def _parse_amount(ctx: _TradeContext) -> int:
        value = parse_units(ctx.intent.amount)
        if value is None:
            raise TradeError(
                TradeErrorKind.INVALID_AMOUNT,
                f"Invalid amount: {ctx.intent.amount!r} (expected a positive decimal)",
            )
        return value

    async def _assert_phase(self, ctx: _TradeContext, expected: MarketPhase) -> MarketState:
        try:
            state = await self.phase_resolver.assert_phase(ctx.intent.token_address, expected)
        except WrongPhaseError as e:
            hint = (
                "use buy-tokens-from-dex / sell-tokens-to-dex"
                if e.actual == MarketPhase.DEX
                else "use buy-tokens-from-curve / exact-out-buy-tokens-from-curve"
            )
            raise TradeError(TradeErrorKind.WRONG_PHASE, f"{e}; {hint}") from e
        ctx.stage = TradeStage.PHASE_CHECKED
        return state

    async def _require_native_balance(self, chain: ChainSession, ctx: _TradeContext, needed: int) -> None:
        balance = await chain.get_balance(ctx.signer)
        if balance < needed:
            raise TradeError(
                TradeErrorKind.INSUFFICIENT_BALANCE,
                f"Insufficient balance: have {format_units(balance)} MON, "
                f"need {format_units(needed)} MON",
            )

    async def _snapshot(self, chain: ChainSession, ctx: _TradeContext) -> Optional[int]:
        """持仓快照（尽力而为，失败返回None）"""
        try:
            return await chain.token_balance(ctx.intent.token_address, ctx.signer)
        except ChainError as e:
            logger.warning("position_snapshot_failed", token=ctx.intent.token_address, error=str(e))
            return None

    async def _submit(
        self,
        chain: ChainSession,
        ctx: _TradeContext,
        address: str,
        abi: list,
        function: str,
        args: list,
        value: int = 0,
    ) -> str:
        try:
            tx_hash = await chain.send_contract_call(ctx.identity, address, abi, function, args, value=value)
        except ChainError as e:
            if is_insufficient_funds(str(e)):
                raise TradeError(TradeErrorKind.INSUFFICIENT_BALANCE, str(e)) from e
            raise
        ctx.broadcast = True
        ctx.stage = TradeStage.SUBMITTED
        logger.info("trade_submitted", function=function, tx_hash=tx_hash, token=ctx.intent.token_address)
        return tx_hash

    async def _await_receipt(self, chain: ChainSession, tx_hash: str) -> bool:
        try:
            return await chain.wait_for_receipt(tx_hash)
        except ChainError as e:
            # 超时或RPC错误时交易可能已上链
            logger.warning(
                "trade_outcome_unknown", tx_hash=tx_hash, reason="receipt_unavailable", error=str(e)
            )
            raise
        except asyncio.CancelledError:
            # 交易已广播不可撤销，只放弃本地等待
            logger.warning("trade_outcome_unknown", tx_hash=tx_hash, reason="cancelled")
            raise

    async def _confirm(self, chain: ChainSession, ctx: _TradeContext, tx_hash: str) -> None:
        if not await self._await_receipt(chain, tx_hash):
            raise TradeError(
                TradeErrorKind.TRANSACTION_REVERTED,
                f"Transaction {tx_hash} reverted; not resubmitted",
            )
        ctx.stage = TradeStage.CONFIRMED

    async def _reconcile(
        self,
        chain: ChainSession,
        ctx: _TradeContext,
        before: Optional[int],
        estimated_out: int,
    ) -> None:
        """对账：比较交易前后持仓，无法获得时回退为估算值并标记"""
        if self.config.settle_delay_seconds > 0:
            await self.sleep(self.config.settle_delay_seconds)

        after = await self._snapshot(chain, ctx) if before is not None else None
        if before is not None and after is not None:
            ctx.fields.update(observed_out=after - before, observed_is_estimate=False, reconciled=True)
        else:
            ctx.fields.update(observed_out=estimated_out, observed_is_estimate=True, reconciled=False)
        ctx.stage = TradeStage.RECONCILED

    # ==================== 联合曲线 ====================

    async def _curve_buy_exact_in(self, ctx: _TradeContext) -> str:
        amount_in = self._parse_amount(ctx)
        token = ctx.intent.token_address
        state = await self._assert_phase(ctx, MarketPhase.CURVE)

        available = available_supply(state)
        if available <= 0:
            raise TradeError(TradeErrorKind.SOLD_OUT, f"No tokens left on the bonding curve for {token}")

        try:
            estimated_out = quote_exact_in(state.virtual_native, state.virtual_token, amount_in)
        except DomainError as e:
            raise TradeError(TradeErrorKind.EXCEEDS_AVAILABLE_SUPPLY, str(e)) from e
        if estimated_out > available:
            raise TradeError(
                TradeErrorKind.EXCEEDS_AVAILABLE_SUPPLY,
                f"Estimated output {format_units(estimated_out)} exceeds available supply "
                f"{format_units(available)}; use exact-out-buy-tokens-from-curve to buy the remainder",
            )

        fee = with_fee(amount_in, self.config.fee_bps)
        ctx.fields.update(amount_in=amount_in, fee=fee.fee, total_value=fee.total, estimated_out=estimated_out)
        ctx.stage = TradeStage.PRICED

        async with self.chain.connect() as chain:
            await self._require_native_balance(chain, ctx, fee.total)
            before = await self._snapshot(chain, ctx)
            tx_hash = await self._submit(
                chain,
                ctx,
                self.config.contracts.core,
                CORE_ABI,
                "buy",
                [amount_in, fee.fee, token, ctx.signer, self._deadline()],
                value=fee.total,
            )
            ctx.fields["tx_hash"] = tx_hash
            await self._confirm(chain, ctx, tx_hash)
            await self._reconcile(chain, ctx, before, estimated_out)

        return (
            f"Bought ~{format_units(ctx.fields['observed_out'])} tokens for "
            f"{format_units(amount_in)} MON (+{format_units(fee.fee)} MON fee)"
        )

    async def _curve_buy_exact_out(self, ctx: _TradeContext) -> str:
        tokens_out = self._parse_amount(ctx)
        token = ctx.intent.token_address
        state = await self._assert_phase(ctx, MarketPhase.CURVE)

        available = available_supply(state)
        if available <= 0:
            raise TradeError(TradeErrorKind.SOLD_OUT, f"No tokens left on the bonding curve for {token}")
        if tokens_out > available:
            raise TradeError(
                TradeErrorKind.EXCEEDS_AVAILABLE_SUPPLY,
                f"Requested {format_units(tokens_out)} tokens but only "
                f"{format_units(available)} are available",
            )

        try:
            required_in = amount_in_for_exact_out(state.virtual_native, state.virtual_token, tokens_out)
        except DomainError as e:
            raise TradeError(TradeErrorKind.EXCEEDS_AVAILABLE_SUPPLY, str(e)) from e

        max_native_in = apply_buffer(required_in, self.config.exact_out_buffer_bps)
        fee = with_fee(max_native_in, self.config.fee_bps)
        triggers_listing = tokens_out >= available
        ctx.fields.update(
            amount_in=max_native_in,
            fee=fee.fee,
            total_value=fee.total,
            estimated_out=tokens_out,
            triggers_listing=triggers_listing,
        )
        ctx.stage = TradeStage.PRICED

        async with self.chain.connect() as chain:
            await self._require_native_balance(chain, ctx, fee.total)
            before = await self._snapshot(chain, ctx)
            tx_hash = await self._submit(
                chain,
                ctx,
                self.config.contracts.core,
                CORE_ABI,
                "exactOutBuy",
                [tokens_out, max_native_in, fee.fee, token, ctx.signer, self._deadline()],
                value=fee.total,
            )
            ctx.fields["tx_hash"] = tx_hash
            await self._confirm(chain, ctx, tx_hash)
            await self._reconcile(chain, ctx, before, tokens_out)

        message = (
            f"Bought {format_units(tokens_out)} tokens for at most "
            f"{format_units(max_native_in)} MON (+{format_units(fee.fee)} MON fee)"
        )
        if triggers_listing:
            message += "; this purchase sold out the curve and triggers DEX listing"
        return message

    # ==================== DEX ====================

    async def _dex_buy(self, ctx: _TradeContext) -> str:
        amount_in = self._parse_amount(ctx)
        token = ctx.intent.token_address
        await self._assert_phase(ctx, MarketPhase.DEX)
        path = [self.config.contracts.wrapped_mon, token]

        async with self.chain.connect() as chain:
            await self._require_native_balance(chain, ctx, amount_in)

            amounts = await chain.get_amounts_out(amount_in, path)
            expected_out = amounts[-1]
            min_out = apply_slippage(expected_out, ctx.intent.slippage_bps)
            ctx.fields.update(amount_in=amount_in, total_value=amount_in, estimated_out=expected_out, min_out=min_out)
            ctx.stage = TradeStage.PRICED

            before = await self._snapshot(chain, ctx)
            tx_hash = await self._submit(
                chain,
                ctx,
                self.config.contracts.uniswap_v2_router,
                ROUTER_ABI,
                "swapExactNativeForTokens",
                [min_out, path, ctx.signer, self._deadline()],
                value=amount_in,
            )
            ctx.fields["tx_hash"] = tx_hash
            await self._confirm(chain, ctx, tx_hash)
            await self._reconcile(chain, ctx, before, expected_out)

        return (
            f"Swapped {format_units(amount_in)} MON for ~{format_units(ctx.fields['observed_out'])} tokens "
            f"(min {format_units(min_out)})"
        )

    async def _dex_sell(self, ctx: _TradeContext) -> str:
        amount = self._parse_amount(ctx)
        token = ctx.intent.token_address
        router = self.config.contracts.uniswap_v2_router
        await self._assert_phase(ctx, MarketPhase.DEX)

        async with self.chain.connect() as chain:
            balance = await chain.token_balance(token, ctx.signer)
            if balance < amount:
                raise TradeError(
                    TradeErrorKind.INSUFFICIENT_BALANCE,
                    f"Insufficient token balance: have {format_units(balance)}, need {format_units(amount)}",
                )

            # 授权必须先于兑换确认，否则兑换会回滚
            try:
                approval_hash = await self._submit(chain, ctx, token, TOKEN_ABI, "approve", [router, amount])
            except ChainError as e:
                raise TradeError(TradeErrorKind.APPROVAL_FAILED, f"Approval could not be submitted: {e}") from e
            ctx.fields["approval_tx_hash"] = approval_hash
            if not await self._await_receipt(chain, approval_hash):
                raise TradeError(
                    TradeErrorKind.APPROVAL_FAILED,
                    f"Approval transaction {approval_hash} reverted; swap not submitted",
                )

            path = [token, self.config.contracts.wrapped_mon]
            amounts = await chain.get_amounts_out(amount, path)
            expected_out = amounts[-1]
            min_out = apply_slippage(expected_out, ctx.intent.slippage_bps)
            ctx.fields.update(amount_in=amount, estimated_out=expected_out, min_out=min_out)

            tx_hash = await self._submit(
                chain,
                ctx,
                router,
                ROUTER_ABI,
                "swapExactTokensForNative",
                [amount, min_out, path, ctx.signer, self._deadline()],
            )
            ctx.fields["tx_hash"] = tx_hash
            await self._confirm(chain, ctx, tx_hash)

        # 原生币到账受gas影响无法精确对账，报告报价估算
        ctx.fields.update(observed_out=expected_out, observed_is_estimate=True, reconciled=False)
        ctx.stage = TradeStage.RECONCILED
        return (
            f"Sold {format_units(amount)} tokens for ~{format_units(expected_out)} MON "
            f"(min {format_units(min_out)})"
        )
