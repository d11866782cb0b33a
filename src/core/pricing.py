"""
联合曲线定价引擎

恒定乘积公式的纯整数实现，所有金额均为wei等最小单位。
整数除法向下取整，与链上合约的舍入方向一致（偏向平台）。
"""
from dataclasses import dataclass

from src.utils.exceptions import DomainError

BPS_DENOMINATOR = 10000


@dataclass(frozen=True)
class FeeBreakdown:
    """手续费拆分"""

    fee: int
    total: int


def _require_reserves(virtual_native: int, virtual_token: int) -> None:
    if virtual_native <= 0 or virtual_token <= 0:
        raise DomainError(
            f"Virtual reserves must be positive (native={virtual_native}, token={virtual_token})"
        )


def _require_bps(bps: int, name: str) -> None:
    if not 0 <= bps <= BPS_DENOMINATOR:
        raise DomainError(f"{name} must be within 0..{BPS_DENOMINATOR} bps, got {bps}")


def quote_exact_in(virtual_native: int, virtual_token: int, amount_in: int) -> int:
    """
    给定输入的原生币数量，计算可得代币数量

    Args:
        virtual_native: 虚拟原生币储备
        virtual_token: 虚拟代币储备
        amount_in: 投入的原生币（不含手续费）

    Returns:
        可得代币数量

    Raises:
        DomainError: 输入大到足以耗尽全部虚拟代币储备
    """
    _require_reserves(virtual_native, virtual_token)
    if amount_in < 0:
        raise DomainError(f"amount_in must be non-negative, got {amount_in}")

    k = virtual_native * virtual_token
    new_virtual_native = virtual_native + amount_in
    new_virtual_token = k // new_virtual_native
    if new_virtual_token == 0:
        raise DomainError(
            f"amount_in ({amount_in}) would drain the virtual token reserve ({virtual_token})"
        )
    return virtual_token - new_virtual_token


def amount_in_for_exact_out(virtual_native: int, virtual_token: int, tokens_out: int) -> int:
    """
    给定期望获得的代币数量，计算所需原生币输入

    Raises:
        DomainError: tokens_out >= virtual_token
    """
    _require_reserves(virtual_native, virtual_token)
    if tokens_out < 0:
        raise DomainError(f"tokens_out must be non-negative, got {tokens_out}")
    if tokens_out >= virtual_token:
        raise DomainError(
            f"tokens_out ({tokens_out}) must be less than virtual token reserve ({virtual_token})"
        )

    k = virtual_native * virtual_token
    return k // (virtual_token - tokens_out) - virtual_native


def with_fee(amount: int, fee_bps: int = 100) -> FeeBreakdown:
    """计算手续费，手续费在金额之外额外支付"""
    if amount < 0:
        raise DomainError(f"amount must be non-negative, got {amount}")
    _require_bps(fee_bps, "fee_bps")

    fee = amount * fee_bps // BPS_DENOMINATOR
    return FeeBreakdown(fee=fee, total=amount + fee)


def apply_slippage(expected_out: int, slippage_bps: int) -> int:
    """根据滑点容忍度计算最小可接受输出"""
    if expected_out < 0:
        raise DomainError(f"expected_out must be non-negative, got {expected_out}")
    _require_bps(slippage_bps, "slippage_bps")

    return expected_out * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def apply_buffer(amount: int, buffer_bps: int) -> int:
    """在输入上增加价格波动缓冲（exact-out 买入使用）"""
    if amount < 0:
        raise DomainError(f"amount must be non-negative, got {amount}")
    _require_bps(buffer_bps, "buffer_bps")

    return amount * (BPS_DENOMINATOR + buffer_bps) // BPS_DENOMINATOR
