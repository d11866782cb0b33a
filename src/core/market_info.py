"""
nad.fun 两种市场类型的说明文本
"""
from dataclasses import dataclass

from src.core.models import MarketPhase


@dataclass(frozen=True)
class MarketTypeInfo:
    name: str
    key: MarketPhase
    summary: str
    description: str


CURVE_MARKET_INFO = MarketTypeInfo(
    name="Bonding Curve",
    key=MarketPhase.CURVE,
    summary="Launch phase priced by a constant-product curve. Tokens are not transferable yet.",
    description="""# Bonding Curve Market

Every nad.fun token starts on a bonding curve that quotes the price from a
constant-product formula over virtual reserves (price = virtualNative / virtualToken).

- Buying moves the price up, selling moves it down
- Tokens cannot be transferred in this phase; trade them against the curve only
- Remaining supply is approximately reserveToken - targetToken

## Lifecycle

1. The curve sells the launch allocation
2. Buying the last available tokens (usually with exactOutBuy) ends the phase
3. The token is then listed on the DEX automatically

## Trading

- `buy-tokens-from-curve`: spend an exact amount of MON
- `exact-out-buy-tokens-from-curve`: receive an exact amount of tokens
- A 1% fee is charged on top of every purchase
""",
)

DEX_MARKET_INFO = MarketTypeInfo(
    name="Decentralized Exchange (DEX)",
    key=MarketPhase.DEX,
    summary="Uniswap-compatible pool against WMON. Tokens are standard transferable ERC-20s.",
    description="""# DEX Market

After the curve allocation sells out, the token trades in a Uniswap V2 compatible
pool paired with WMON (wrapped MON).

- Tokens behave like any ERC-20 and can be transferred freely
- Price follows pool supply and demand (AMM)
- The pool is seeded from the curve reserves; anyone can add liquidity later

## Trading

- `buy-tokens-from-dex`: swapExactNativeForTokens with a MON amount
- `sell-tokens-to-dex`: approve the router, then swapExactTokensForNative
- Set a slippage tolerance (default 0.5%)
""",
)

MARKET_TYPE_COMPARISON = """# nad.fun Market Types

| | Bonding Curve (CURVE) | DEX |
|---|---|---|
| Phase | Launch | After the curve sells out |
| Pricing | Constant-product formula | Pool supply and demand |
| Transfers | Not allowed | Standard ERC-20 |
| Liquidity | Always available from the curve | MON/token pool |
| Trading tools | buy-tokens-from-curve, exact-out-buy-tokens-from-curve | buy-tokens-from-dex, sell-tokens-to-dex |

Moving from CURVE to DEX happens automatically when the last curve tokens are bought,
and never reverses.
"""

_MARKET_INFO = {info.key: info for info in (CURVE_MARKET_INFO, DEX_MARKET_INFO)}


def get_market_type_info(market_type: MarketPhase | str) -> MarketTypeInfo:
    """
    获取市场类型说明

    Raises:
        ValueError: 未知市场类型
    """
    try:
        return _MARKET_INFO[MarketPhase(str(market_type).upper())]
    except ValueError:
        raise ValueError(f"Unknown market type: {market_type}") from None
