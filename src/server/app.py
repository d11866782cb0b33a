"""
MCP服务器主程序

stdio 传输入口；SSE 传输复用同一个 MCPServer（见 http_app）。
"""
import asyncio
import signal
import sys
from typing import Any, Dict, Optional

from mcp import types
from mcp.server import Server
from mcp.server.stdio import stdio_server

from src.chain.gateway import ChainGateway
from src.core.data_source_registry import registry
from src.core.identity import IdentityResolver
from src.core.models import (
    AccountCreatedTokensInput,
    AccountPositionsInput,
    CurveBuyInput,
    CurveExactOutBuyInput,
    DexBuyInput,
    DexSellInput,
    GetMonBalanceInput,
    ListTokensInput,
    MarketTypeComparisonInput,
    MarketTypeInfoInput,
    SearchTokensInput,
    TokenChartInput,
    TokenMarketInput,
    TokenMarketPhaseInput,
    TokenPagedInput,
    TokenStatsInput,
    TransferMonInput,
)
from src.core.phase import PhaseResolver
from src.core.tool_registry import ToolName, ToolRegistry, ToolSpec
from src.core.trade_executor import TradeExecutor
from src.data_sources.google import GoogleOAuthClient
from src.data_sources.nadfun import NadfunClient
from src.data_sources.privy import PrivyClient
from src.middleware.session_store import SessionStore
from src.tools.market_data import MarketDataTool
from src.tools.market_phase import MarketPhaseTool
from src.tools.trading import TradingTool, reject_invalid_arguments
from src.utils.config import config
from src.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

SERVER_NAME = "nadfun-mcp-server"


def build_session_store() -> SessionStore:
    s = config.settings
    return SessionStore(
        s.redis_url,
        ttl_seconds=s.session_ttl_seconds,
        max_connections=s.redis_max_connections,
    )


def build_tool_specs(
    market_data: MarketDataTool,
    market_phase: MarketPhaseTool,
    trading: TradingTool,
) -> Dict[ToolName, ToolSpec]:
    """工具名 -> 输入模型与处理函数"""

    def trade_rejection(error):
        return reject_invalid_arguments(error)

    def transfer_rejection(error):
        return reject_invalid_arguments(error, transfer=True)

    return {
        ToolName.GET_MON_BALANCE: ToolSpec(
            "Get the MON balance of a wallet address on Monad testnet.",
            GetMonBalanceInput,
            trading.get_mon_balance,
        ),
        ToolName.TRANSFER_MON: ToolSpec(
            "Send MON to another address. Signs with the authenticated session wallet, "
            "or with a supplied private key used for this call only.",
            TransferMonInput,
            trading.transfer_mon,
            on_invalid=transfer_rejection,
        ),
        ToolName.SEARCH_TOKENS: ToolSpec(
            "Search recently traded nad.fun tokens by name or symbol.",
            SearchTokensInput,
            market_data.search_tokens,
        ),
        ToolName.TOKEN_STATS: ToolSpec(
            "Token profile: name, symbol, creator, total supply, description and listing status.",
            TokenStatsInput,
            market_data.token_stats,
        ),
        ToolName.ACCOUNT_POSITIONS: ToolSpec(
            "Token positions held by an account, with PnL.",
            AccountPositionsInput,
            market_data.account_positions,
        ),
        ToolName.ACCOUNT_CREATED_TOKENS: ToolSpec(
            "Tokens created by an account.",
            AccountCreatedTokensInput,
            market_data.account_created_tokens,
        ),
        ToolName.LIST_TOKENS_BY_CREATION_TIME: ToolSpec(
            "Newest nad.fun tokens first.",
            ListTokensInput,
            market_data.list_by_creation_time,
        ),
        ToolName.LIST_TOKENS_BY_MARKET_CAP: ToolSpec(
            "nad.fun tokens ordered by market cap.",
            ListTokensInput,
            market_data.list_by_market_cap,
        ),
        ToolName.LIST_TOKENS_BY_LATEST_TRADE: ToolSpec(
            "nad.fun tokens ordered by most recent trade.",
            ListTokensInput,
            market_data.list_by_latest_trade,
        ),
        ToolName.TOKEN_CHART: ToolSpec(
            "Price chart summary: the last ten points plus min, max and average price.",
            TokenChartInput,
            market_data.token_chart,
        ),
        ToolName.TOKEN_SWAP_HISTORY: ToolSpec(
            "Recent buys and sells of a token.",
            TokenPagedInput,
            market_data.token_swap_history,
        ),
        ToolName.TOKEN_MARKET: ToolSpec(
            "Market record of a token: market type, price and reserves.",
            TokenMarketInput,
            market_data.token_market,
        ),
        ToolName.TOKEN_HOLDERS: ToolSpec(
            "Holders of a token.",
            TokenPagedInput,
            market_data.token_holders,
        ),
        ToolName.MARKET_TYPE_INFO: ToolSpec(
            "Explain a nad.fun market type (CURVE or DEX).",
            MarketTypeInfoInput,
            market_phase.market_type_info,
        ),
        ToolName.MARKET_TYPE_COMPARISON: ToolSpec(
            "Compare the bonding curve and DEX market types.",
            MarketTypeComparisonInput,
            market_phase.market_type_comparison,
        ),
        ToolName.TOKEN_MARKET_PHASE: ToolSpec(
            "Current market phase of a token and which trading tools apply.",
            TokenMarketPhaseInput,
            market_phase.token_market_phase,
        ),
        ToolName.BUY_TOKENS_FROM_CURVE: ToolSpec(
            "Buy a CURVE-phase token with an exact amount of MON (1% fee added on top).",
            CurveBuyInput,
            trading.buy_from_curve,
            on_invalid=trade_rejection,
        ),
        ToolName.EXACT_OUT_BUY_TOKENS_FROM_CURVE: ToolSpec(
            "Buy an exact number of tokens from the bonding curve. Buying the whole "
            "remaining supply lists the token on the DEX.",
            CurveExactOutBuyInput,
            trading.exact_out_buy_from_curve,
            on_invalid=trade_rejection,
        ),
        ToolName.BUY_TOKENS_FROM_DEX: ToolSpec(
            "Buy a DEX-phase token with MON through the router.",
            DexBuyInput,
            trading.buy_from_dex,
            on_invalid=trade_rejection,
        ),
        ToolName.SELL_TOKENS_TO_DEX: ToolSpec(
            "Sell a DEX-phase token for MON (router approval is sent first).",
            DexSellInput,
            trading.sell_to_dex,
            on_invalid=trade_rejection,
        ),
    }


class MCPServer:
    """MCP服务器"""

    def __init__(self, session_store: Optional[SessionStore] = None):
        self.server = Server(SERVER_NAME)
        self.session_store = session_store
        self.nadfun: Optional[NadfunClient] = None
        self.privy: Optional[PrivyClient] = None
        self.google: Optional[GoogleOAuthClient] = None
        self.chain: Optional[ChainGateway] = None
        self.tool_registry: Optional[ToolRegistry] = None

    async def initialize(self):
        """初始化服务器"""
        logger.info("mcp_server_initializing")

        self._register_data_sources()
        self._build_components()
        self._register_tools()

        logger.info("mcp_server_initialized", tools=len(self.tool_registry.list_tools()))

    def _register_data_sources(self):
        """注册外部HTTP数据源"""
        s = config.settings

        self.nadfun = NadfunClient(base_url=s.nadfun_api_url, timeout=s.default_request_timeout)
        registry.register("nadfun", self.nadfun)

        self.privy = PrivyClient(s.privy_app_id, s.privy_app_secret, chain_id=s.chain_id)
        registry.register("privy", self.privy)
        if not self.privy.configured:
            logger.warning("privy_not_configured", detail="session wallets cannot sign transactions")

        self.google = GoogleOAuthClient(
            client_id=s.google_client_id,
            client_secret=s.google_client_secret,
            redirect_uri=f"{s.public_base_url.rstrip('/')}/auth/google/callback",
            timeout=s.default_request_timeout,
        )
        registry.register("google", self.google)

        if self.session_store is None:
            self.session_store = build_session_store()

    def _build_components(self):
        trading_config = config.trading_config()
        self.chain = ChainGateway(trading_config, wallet_provider=self.privy)

        phase_resolver = PhaseResolver(self.nadfun)
        executor = TradeExecutor(phase_resolver, self.chain, trading_config)
        identity_resolver = IdentityResolver(self.session_store)

        specs = build_tool_specs(
            MarketDataTool(self.nadfun),
            MarketPhaseTool(phase_resolver, self.nadfun),
            TradingTool(identity_resolver, executor, self.chain),
        )
        self.tool_registry = ToolRegistry(specs, is_enabled=config.is_tool_enabled)

    def _register_tools(self):
        """注册MCP工具"""

        @self.server.list_tools()
        async def list_tools() -> list[types.Tool]:
            return self.tool_registry.list_tools()

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any] | None) -> list[types.TextContent]:
            logger.info("tool_called", tool=name)
            return await self.tool_registry.call(name, arguments)

    async def cleanup(self):
        """清理资源"""
        logger.info("cleanup_started")

        await registry.close_all()
        if self.session_store is not None:
            await self.session_store.close()

        logger.info("cleanup_completed")

    async def run(self):
        """运行stdio服务器"""
        try:
            await self.initialize()

            async with stdio_server() as (read_stream, write_stream):
                logger.info("mcp_server_running", transport="stdio")
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )

        except Exception as e:
            logger.error("server_error", error=str(e))
            raise

        finally:
            await self.cleanup()


def handle_signal(signum, frame):
    """处理退出信号"""
    logger.info("signal_received", signum=signum)
    sys.exit(0)


def main():
    """主入口"""
    # stdout 是 JSON-RPC 通道，日志只能写 stderr
    log_level = config.settings.log_level
    setup_logging(log_level, stream=sys.stderr)

    logger.info(
        "starting_nadfun_mcp_server",
        environment=config.settings.environment,
        log_level=log_level,
    )

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    server = MCPServer()

    try:
        asyncio.run(server.run())
    except KeyboardInterrupt:
        logger.info("server_interrupted")
    except Exception as e:
        logger.error("server_failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
