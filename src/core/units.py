"""
金额单位换算（十进制字符串 <-> wei），全程使用 Decimal，不经过浮点
"""
from decimal import ROUND_DOWN, Decimal, InvalidOperation, Overflow, localcontext
from typing import Optional, Union

DECIMALS = 18
# 链上金额为 uint256
MAX_UINT256 = 2**256 - 1


def parse_units(text: str, decimals: int = DECIMALS) -> Optional[int]:
    """
    将正的十进制字符串转换为最小单位整数

    Returns:
        最小单位数量；非法、非正、非有限或超出uint256的值返回None
    """
    if not isinstance(text, str):
        return None
    try:
        value = Decimal(text.strip())
    except InvalidOperation:
        return None
    if not value.is_finite() or value <= 0:
        return None

    try:
        with localcontext() as ctx:
            ctx.prec = 100
            scaled = value.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN)
    except (InvalidOperation, Overflow):
        return None
    units = int(scaled)
    return units if 0 < units <= MAX_UINT256 else None


def format_units(amount: Union[int, str, None], decimals: int = DECIMALS, places: int = 6) -> str:
    """最小单位整数格式化为十进制字符串（仅用于展示）"""
    if amount is None or amount == "":
        return "0"
    with localcontext() as ctx:
        ctx.prec = 100
        value = Decimal(int(amount)).scaleb(-decimals)
        quantized = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)
    text = format(quantized, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
