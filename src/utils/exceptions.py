"""
自定义异常类
"""
from enum import StrEnum


class MCPServerError(Exception):
    """MCP服务器基础异常"""

    pass


class ConfigurationError(MCPServerError):
    """配置错误"""

    pass


class DataSourceError(MCPServerError):
    """数据源错误基类"""

    def __init__(self, source: str, message: str):
        self.source = source
        self.message = message
        super().__init__(f"[{source}] {message}")


class DataSourceTimeoutError(DataSourceError):
    """数据源超时"""

    pass


class DataSourceRateLimitError(DataSourceError):
    """数据源限流"""

    pass


class DataSourceAuthError(DataSourceError):
    """数据源认证错误"""

    pass


class DataSourceNotFoundError(DataSourceError):
    """数据源未找到资源"""

    pass


class CacheError(MCPServerError):
    """会话存储（Redis）错误"""

    pass


class ChainError(MCPServerError):
    """链上RPC调用错误"""

    pass


class DomainError(MCPServerError):
    """定价公式定义域错误（如买入数量超过虚拟储备）"""

    pass


class WrongPhaseError(MCPServerError):
    """代币所处市场阶段与操作不匹配"""

    def __init__(self, token_address: str, actual: str, expected: str):
        self.token_address = token_address
        self.actual = actual
        self.expected = expected
        super().__init__(
            f"Token {token_address} is in {actual} phase, "
            f"this operation requires {expected}"
        )


class NoIdentityError(MCPServerError):
    """没有可用的签名身份"""

    def __init__(self, message: str = ""):
        super().__init__(
            message
            or "No signing identity: authenticate a session with a wallet "
            "or supply a private key"
        )


class InvalidKeyError(MCPServerError):
    """私钥格式错误（错误信息中不包含私钥本身）"""

    def __init__(self):
        super().__init__("Malformed private key: expected 0x followed by 64 hex characters")


class TradeErrorKind(StrEnum):
    """交易失败分类（封闭枚举）"""

    INVALID_AMOUNT = "invalid_amount"
    INVALID_ADDRESS = "invalid_address"
    INVALID_KEY = "invalid_key"
    WRONG_PHASE = "wrong_phase"
    SOLD_OUT = "sold_out"
    EXCEEDS_AVAILABLE_SUPPLY = "exceeds_available_supply"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    TRANSACTION_REVERTED = "transaction_reverted"
    APPROVAL_FAILED = "approval_failed"
    NO_IDENTITY = "no_identity"
    DEPENDENCY_ERROR = "dependency_error"
    INTERNAL_ERROR = "internal_error"


class TradeError(MCPServerError):
    """交易流程中的终止性错误"""

    def __init__(self, kind: TradeErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"{kind.value}: {message}")
