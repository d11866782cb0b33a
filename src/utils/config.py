"""
配置管理
"""
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.core.models import ContractAddresses, TradingConfig
from src.utils.exceptions import ConfigurationError

ALCHEMY_MONAD_TESTNET_URL = "https://monad-testnet.g.alchemy.com/v2/{api_key}"


class Settings(BaseSettings):
    """全局配置"""

    # 服务器配置
    http_host: str = Field(default="0.0.0.0", alias="HTTP_HOST")
    http_port: int = Field(default=8000, alias="HTTP_PORT")
    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Redis（会话存储）配置
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    redis_max_connections: int = Field(default=10, alias="REDIS_MAX_CONNECTIONS")
    session_ttl_seconds: int = Field(default=86400, alias="SESSION_TTL_SECONDS")

    # 认证配置
    require_auth: bool = Field(default=False, alias="REQUIRE_AUTH")
    protected_paths: List[str] = Field(
        default_factory=lambda: ["/sse", "/message"], alias="PROTECTED_PATHS"
    )
    google_client_id: Optional[str] = Field(default=None, alias="GOOGLE_CLIENT_ID")
    google_client_secret: Optional[str] = Field(default=None, alias="GOOGLE_CLIENT_SECRET")

    # 托管钱包（Privy）
    privy_app_id: Optional[str] = Field(default=None, alias="PRIVY_APP_ID")
    privy_app_secret: Optional[str] = Field(default=None, alias="PRIVY_APP_SECRET")

    # nad.fun 市场数据API
    nadfun_api_url: str = Field(
        default="https://testnet-bot-api-server.nad.fun", alias="NADFUN_API_URL"
    )

    # 链配置（Monad testnet）
    monad_rpc_url: Optional[str] = Field(default=None, alias="MONAD_RPC_URL")
    alchemy_api_key: Optional[str] = Field(default=None, alias="ALCHEMY_API_KEY")
    chain_id: int = Field(default=10143, alias="CHAIN_ID")
    core_contract_address: str = Field(
        default="0x822EB1ADD41cf87C3F178100596cf24c9a6442f6", alias="CORE_CONTRACT_ADDRESS"
    )
    uniswap_v2_router_address: str = Field(
        default="0x619d07287e87C9c643C60882cA80d23C8ed44652",
        alias="UNISWAP_V2_ROUTER_ADDRESS",
    )
    wrapped_mon_address: str = Field(
        default="0x3bb9AFB94c82752E47706A10779EA525Cf95dc27", alias="WRAPPED_MON_ADDRESS"
    )

    # 交易策略
    trade_fee_bps: int = Field(default=100, alias="TRADE_FEE_BPS")
    exact_out_buffer_bps: int = Field(default=500, alias="EXACT_OUT_BUFFER_BPS")
    default_slippage_bps: int = Field(default=50, alias="DEFAULT_SLIPPAGE_BPS")
    trade_deadline_seconds: int = Field(default=20 * 60, alias="TRADE_DEADLINE_SECONDS")
    trade_gas_limit: int = Field(default=300000, alias="TRADE_GAS_LIMIT")
    settle_delay_seconds: float = Field(default=2.0, alias="SETTLE_DELAY_SECONDS")
    receipt_timeout_seconds: float = Field(default=120.0, alias="RECEIPT_TIMEOUT_SECONDS")

    # 超时配置
    default_request_timeout: float = Field(
        default=10.0, alias="DEFAULT_REQUEST_TIMEOUT"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def rpc_url(self) -> str:
        """链RPC地址：显式配置优先，其次Alchemy，最后官方公共节点"""
        if self.monad_rpc_url:
            return self.monad_rpc_url
        if self.alchemy_api_key:
            return ALCHEMY_MONAD_TESTNET_URL.format(api_key=self.alchemy_api_key)
        return "https://testnet-rpc.monad.xyz"


class ConfigManager:
    """配置管理器"""

    def __init__(self, config_dir: Optional[Path] = None, settings: Optional[Settings] = None):
        """
        初始化配置管理器

        Args:
            config_dir: 配置文件目录，默认为项目根目录下的config/
            settings: 预先构造的设置（测试时注入）
        """
        if config_dir is None:
            # 获取项目根目录
            project_root = Path(__file__).parent.parent.parent
            config_dir = project_root / "config"

        self.config_dir = config_dir
        self._tools: Optional[Dict] = None
        self._settings: Optional[Settings] = settings

    @property
    def settings(self) -> Settings:
        """获取全局设置"""
        if self._settings is None:
            self._settings = Settings()
        return self._settings

    @property
    def tools(self) -> Dict[str, Any]:
        """
        获取 MCP 工具开关配置。

        配置文件位于 config/tools.yaml，格式示例：

        buy-tokens-from-curve:
          enabled: true
        """
        if self._tools is None:
            # 未提供 tools.yaml 时默认所有工具启用，解析失败照常抛出
            if (self.config_dir / "tools.yaml").exists():
                self._tools = self._load_yaml("tools.yaml")
            else:
                self._tools = {}
        return self._tools

    def is_tool_enabled(self, tool_name: str) -> bool:
        """
        判断指定 MCP 工具是否启用。

        如果 tools.yaml 不存在，或未配置指定工具，则默认启用。
        """
        tool_cfg = self.tools.get(tool_name) or {}
        return bool(tool_cfg.get("enabled", True))

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        """加载YAML配置文件"""
        filepath = self.config_dir / filename
        if not filepath.exists():
            raise ConfigurationError(f"Configuration file not found: {filepath}")

        try:
            with open(filepath, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse {filename}: {e}")

    def get_api_key(self, provider: str) -> Optional[str]:
        """
        获取API密钥

        Args:
            provider: 提供者名称，如 privy, google

        Returns:
            API密钥
        """
        key_mapping = {
            "privy": self.settings.privy_app_secret,
            "google": self.settings.google_client_secret,
            "alchemy": self.settings.alchemy_api_key,
        }
        return key_mapping.get(provider.lower())

    def trading_config(self) -> TradingConfig:
        """根据环境设置构建注入各组件的交易配置"""
        s = self.settings
        return TradingConfig(
            chain_id=s.chain_id,
            rpc_url=s.rpc_url,
            contracts=ContractAddresses(
                core=s.core_contract_address,
                uniswap_v2_router=s.uniswap_v2_router_address,
                wrapped_mon=s.wrapped_mon_address,
            ),
            fee_bps=s.trade_fee_bps,
            exact_out_buffer_bps=s.exact_out_buffer_bps,
            default_slippage_bps=s.default_slippage_bps,
            deadline_seconds=s.trade_deadline_seconds,
            gas_limit=s.trade_gas_limit,
            settle_delay_seconds=s.settle_delay_seconds,
            receipt_timeout_seconds=s.receipt_timeout_seconds,
        )

    def validate_startup(self) -> None:
        """
        启动前检查必需凭据

        Raises:
            ConfigurationError: 开启认证但缺少OAuth凭据
        """
        s = self.settings
        if s.require_auth:
            missing = [
                name
                for name, value in (
                    ("GOOGLE_CLIENT_ID", s.google_client_id),
                    ("GOOGLE_CLIENT_SECRET", s.google_client_secret),
                )
                if not value
            ]
            if missing:
                raise ConfigurationError(
                    f"REQUIRE_AUTH is enabled but {', '.join(missing)} not configured"
                )


# 全局配置实例
config = ConfigManager()
