"""
核心数据模型 - Pydantic定义
"""
import re
from enum import StrEnum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _validate_address(value: str) -> str:
    value = value.strip()
    if not ADDRESS_PATTERN.match(value):
        raise ValueError(f"Invalid address: {value!r} (expected 0x followed by 40 hex characters)")
    return value


# ==================== 枚举类型 ====================


class MarketPhase(StrEnum):
    """代币市场阶段"""

    CURVE = "CURVE"  # 联合曲线阶段
    DEX = "DEX"  # 已上DEX


class TradeDirection(StrEnum):
    BUY = "buy"
    SELL = "sell"


class TradeMode(StrEnum):
    EXACT_IN = "exact_in"
    EXACT_OUT = "exact_out"


class TradeVenue(StrEnum):
    CURVE = "curve"
    DEX = "dex"


class TradeStage(StrEnum):
    """单次交易调用的状态机"""

    VALIDATING = "validating"
    PHASE_CHECKED = "phase_checked"
    PRICED = "priced"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    RECONCILED = "reconciled"
    REJECTED = "rejected"
    FAILED = "failed"


class PositionType(StrEnum):
    ALL = "all"
    OPEN = "open"
    CLOSE = "close"


class ChartInterval(StrEnum):
    ONE_MINUTE = "1m"
    FIVE_MINUTES = "5m"
    FIFTEEN_MINUTES = "15m"
    THIRTY_MINUTES = "30m"
    ONE_HOUR = "1h"
    FOUR_HOURS = "4h"
    ONE_DAY = "1d"
    ONE_WEEK = "1w"


class WalletOperation(StrEnum):
    """/api/wallet 支持的操作"""

    SEND_TRANSACTION = "send_transaction"


# ==================== 配置模型 ====================


class ContractAddresses(BaseModel):
    """nad.fun 合约地址"""

    model_config = ConfigDict(frozen=True)

    core: str
    uniswap_v2_router: str
    wrapped_mon: str


class TradingConfig(BaseModel):
    """注入交易组件的配置（费率、缓冲、期限等策略常量）"""

    model_config = ConfigDict(frozen=True)

    chain_id: int = 10143
    rpc_url: str = "https://testnet-rpc.monad.xyz"
    contracts: ContractAddresses
    fee_bps: int = Field(default=100, ge=0, le=10000)
    exact_out_buffer_bps: int = Field(default=500, ge=0, le=10000)
    default_slippage_bps: int = Field(default=50, ge=0, le=10000)
    deadline_seconds: int = Field(default=20 * 60, gt=0)
    gas_limit: int = Field(default=300000, gt=0)
    settle_delay_seconds: float = Field(default=2.0, ge=0)
    receipt_timeout_seconds: float = Field(default=120.0, gt=0)


# ==================== 会话模型 ====================


class SessionUser(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None


class SessionWallet(BaseModel):
    id: str
    address: str


class SessionTokens(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    expires_at: int = Field(description="Access token expiry, epoch milliseconds")


class Session(BaseModel):
    """OAuth会话记录，存储于 auth:{sessionId}"""

    user: SessionUser
    wallet: Optional[SessionWallet] = None
    tokens: SessionTokens

    def is_expired(self, now_ms: int) -> bool:
        return self.tokens.expires_at < now_ms


# ==================== 身份模型 ====================


class SessionWalletIdentity(BaseModel):
    """托管钱包身份，私钥不离开钱包服务商"""

    kind: Literal["session_wallet"] = "session_wallet"
    session_id: str
    wallet_id: str
    address: str


class SuppliedKeyIdentity(BaseModel):
    """调用方直接提供的私钥，仅在本次调用内存中使用"""

    kind: Literal["supplied_key"] = "supplied_key"
    raw_key: SecretStr
    address: str


Identity = Annotated[
    Union[SessionWalletIdentity, SuppliedKeyIdentity], Field(discriminator="kind")
]


# ==================== 市场数据模型 ====================


def _to_int(value) -> int:
    if value is None or value == "":
        return 0
    return int(value)


class TokenInfo(BaseModel):
    """代币基本信息"""

    model_config = ConfigDict(extra="ignore")

    token_address: str
    name: str = ""
    symbol: str = ""
    image_uri: Optional[str] = None
    creator: Optional[str] = None
    total_supply: Optional[str] = None
    description: Optional[str] = None
    is_listing: Optional[bool] = None
    created_at: Optional[int] = None
    market_cap: Optional[str] = None
    price: Optional[str] = None
    current_amount: Optional[str] = None


class MarketSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    market_address: Optional[str] = None
    market_type: Optional[str] = None
    price: Optional[str] = None


class TokenMarket(MarketSummary):
    """代币市场明细（储备以wei计）"""

    token_address: Optional[str] = None
    virtual_native: int = 0
    virtual_token: int = 0
    reserve_token: int = 0
    reserve_native: int = 0
    latest_trade_at: Optional[int] = None
    created_at: Optional[int] = None

    @field_validator("virtual_native", "virtual_token", "reserve_token", "reserve_native", mode="before")
    @classmethod
    def parse_wei(cls, v):
        return _to_int(v)


class PositionDetail(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total_bought_native: str = "0"
    total_bought_token: str = "0"
    current_token_amount: str = "0"
    realized_pnl: str = "0"
    unrealized_pnl: str = "0"
    total_pnl: str = "0"
    created_at: Optional[int] = None
    last_traded_at: Optional[int] = None


class AccountPosition(BaseModel):
    token: TokenInfo
    position: PositionDetail
    market: MarketSummary


class AccountPositions(BaseModel):
    account_address: str
    positions: List[AccountPosition] = Field(default_factory=list)
    total_count: int = 0


class CreatedTokens(BaseModel):
    tokens: List[TokenInfo] = Field(default_factory=list)
    total_count: int = 0


class OrderedToken(BaseModel):
    token_info: TokenInfo
    market_info: MarketSummary


class OrderedTokens(BaseModel):
    order_type: str
    order_token: List[OrderedToken] = Field(default_factory=list)
    total_count: int = 0


class ChartPoint(BaseModel):
    timestamp: int
    price: str


class TokenChart(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token_address: Optional[str] = None
    interval: str
    base_timestamp: Optional[int] = None
    prices: List[ChartPoint] = Field(default_factory=list)
    total_count: int = 0


class Swap(BaseModel):
    swap_id: int
    account_address: str
    token_address: str
    is_buy: bool
    mon_amount: str
    token_amount: str
    created_at: int
    transaction_hash: str


class TokenSwaps(BaseModel):
    swaps: List[Swap] = Field(default_factory=list)
    total_count: int = 0


class TokenHolder(BaseModel):
    current_amount: str
    account_address: str
    is_dev: bool = False


class TokenHolders(BaseModel):
    holders: List[TokenHolder] = Field(default_factory=list)
    total_count: int = 0


class MarketState(BaseModel):
    """某代币当前市场状态视图（每次调用重新查询，不缓存）"""

    token_address: str
    phase: MarketPhase
    virtual_native: int = 0
    virtual_token: int = 0
    reserve_token: int = 0
    reserve_native: int = 0
    price: Optional[str] = None


# ==================== 交易模型 ====================


class TradeIntent(BaseModel):
    """单次交易意图（不持久化）"""

    token_address: str
    direction: TradeDirection
    mode: TradeMode
    venue: TradeVenue
    amount: str
    slippage_bps: Optional[int] = None


class TradeResult(BaseModel):
    """交易结果，失败同样以结构化结果返回"""

    succeeded: bool
    stage: TradeStage
    message: str
    intent: Optional[TradeIntent] = None
    error_kind: Optional[str] = None
    tx_hash: Optional[str] = None
    approval_tx_hash: Optional[str] = None
    signer: Optional[str] = None
    amount_in: Optional[int] = None
    fee: Optional[int] = None
    total_value: Optional[int] = None
    min_out: Optional[int] = None
    estimated_out: Optional[int] = None
    observed_out: Optional[int] = None
    observed_is_estimate: bool = False
    reconciled: bool = False
    triggers_listing: bool = False


class TransferResult(BaseModel):
    succeeded: bool
    message: str
    tx_hash: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    amount_wei: Optional[int] = None
    error_kind: Optional[str] = None


# ==================== 工具输入模型 ====================


class TokenAddressInput(BaseModel):
    token_address: str = Field(..., description="Token contract address (0x...)")

    @field_validator("token_address")
    @classmethod
    def validate_token_address(cls, v: str) -> str:
        return _validate_address(v)


class PagingInput(BaseModel):
    page: int = Field(default=1, ge=1, description="Page number")
    limit: int = Field(default=10, ge=1, le=100, description="Items per page")


class SignerInput(BaseModel):
    """交易类工具的签名身份参数"""

    session_id: Optional[str] = Field(
        default=None,
        description="Authenticated session id; its custodial wallet signs the transaction",
    )
    private_key: Optional[SecretStr] = Field(
        default=None,
        description="Private key (0x + 64 hex). Used for this call only and never stored",
    )


class GetMonBalanceInput(BaseModel):
    address: str = Field(..., description="Wallet address to check")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return _validate_address(v)


class TransferMonInput(SignerInput):
    to_address: str = Field(..., description="Recipient address")
    amount: str = Field(..., description="Amount of MON to send, e.g. '0.5'")

    @field_validator("to_address")
    @classmethod
    def validate_to_address(cls, v: str) -> str:
        return _validate_address(v)


class SearchTokensInput(BaseModel):
    query: str = Field(..., min_length=1, description="Token name or symbol to search for")
    limit: int = Field(default=10, ge=1, le=50, description="Maximum number of results")


class TokenStatsInput(TokenAddressInput):
    pass


class AccountPositionsInput(PagingInput):
    account_address: str = Field(..., description="Account address")
    position_type: PositionType = Field(default=PositionType.OPEN, description="all, open or close")

    @field_validator("account_address")
    @classmethod
    def validate_account_address(cls, v: str) -> str:
        return _validate_address(v)


class AccountCreatedTokensInput(PagingInput):
    account_address: str = Field(..., description="Creator account address")

    @field_validator("account_address")
    @classmethod
    def validate_account_address(cls, v: str) -> str:
        return _validate_address(v)


class ListTokensInput(PagingInput):
    pass


class TokenChartInput(TokenAddressInput):
    interval: ChartInterval = Field(default=ChartInterval.ONE_HOUR, description="Candle interval")
    base_timestamp: Optional[int] = Field(
        default=None, description="Base unix timestamp (seconds), defaults to now"
    )


class TokenPagedInput(TokenAddressInput, PagingInput):
    pass


class TokenMarketInput(TokenAddressInput):
    pass


class MarketTypeInfoInput(BaseModel):
    market_type: MarketPhase = Field(..., description="CURVE or DEX")

    @field_validator("market_type", mode="before")
    @classmethod
    def upper_market_type(cls, v):
        return v.upper() if isinstance(v, str) else v


class MarketTypeComparisonInput(BaseModel):
    pass


class TokenMarketPhaseInput(TokenAddressInput):
    pass


class CurveBuyInput(TokenAddressInput, SignerInput):
    amount: str = Field(..., description="Amount of MON to spend, e.g. '0.1' (1% fee is added on top)")


class CurveExactOutBuyInput(TokenAddressInput, SignerInput):
    tokens_out: str = Field(..., description="Exact number of tokens to receive, e.g. '1000'")


class DexBuyInput(TokenAddressInput, SignerInput):
    amount: str = Field(..., description="Amount of MON to spend")
    slippage_bps: Optional[int] = Field(
        default=None, ge=0, le=10000, description="Slippage tolerance in basis points (default 50)"
    )


class DexSellInput(TokenAddressInput, SignerInput):
    amount: str = Field(..., description="Amount of tokens to sell")
    slippage_bps: Optional[int] = Field(
        default=None, ge=0, le=10000, description="Slippage tolerance in basis points (default 50)"
    )


class WalletTransactionParams(BaseModel):
    to: str
    amount: str

    @field_validator("to")
    @classmethod
    def validate_to(cls, v: str) -> str:
        return _validate_address(v)


class WalletOperationRequest(BaseModel):
    """POST /api/wallet 请求体"""

    operation: WalletOperation
    params: WalletTransactionParams


# ==================== 工具输出模型 ====================


class TokenSearchOutput(BaseModel):
    query: str
    results: List[OrderedToken] = Field(default_factory=list)
    scanned: int = Field(default=0, description="Number of listed tokens searched")


class ChartSummaryOutput(BaseModel):
    """价格图表摘要：最近数据点与区间统计"""

    token_address: str
    interval: str
    total_points: int = 0
    recent: List[ChartPoint] = Field(default_factory=list)
    min_price: Optional[str] = None
    max_price: Optional[str] = None
    avg_price: Optional[str] = None


class TokenMarketPhaseOutput(BaseModel):
    token_address: str
    name: str = ""
    symbol: str = ""
    phase: MarketPhase
    price: Optional[str] = None
    available_tokens: Optional[int] = Field(
        default=None, description="Remaining curve supply in wei (CURVE phase only)"
    )
    virtual_native: Optional[int] = None
    virtual_token: Optional[int] = None
    next_steps: List[str] = Field(default_factory=list)


class MonBalanceOutput(BaseModel):
    address: str
    balance_wei: int
    balance: str
