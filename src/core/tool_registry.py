"""
MCP工具注册表

工具名 -> (输入模型, 处理函数) 的分派表。构建时检查每个工具名都有对应处理函数，
调用时先用输入模型校验参数，再分派；未知工具名和处理异常都以文本结果返回。
"""
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type, Union

from mcp import types
from pydantic import BaseModel, ValidationError

from src.utils.exceptions import ConfigurationError
from src.utils.logger import get_logger

logger = get_logger(__name__)

ToolOutput = Union[BaseModel, str]


class ToolName(StrEnum):
    """对外暴露的工具名（保持与已有客户端兼容的短横线命名）"""

    GET_MON_BALANCE = "get-mon-balance"
    TRANSFER_MON = "transfer-mon"
    SEARCH_TOKENS = "search-tokens"
    TOKEN_STATS = "token-stats"
    ACCOUNT_POSITIONS = "account-positions"
    ACCOUNT_CREATED_TOKENS = "account-created-tokens"
    LIST_TOKENS_BY_CREATION_TIME = "list-tokens-by-creation-time"
    LIST_TOKENS_BY_MARKET_CAP = "list-tokens-by-market-cap"
    LIST_TOKENS_BY_LATEST_TRADE = "list-tokens-by-latest-trade"
    TOKEN_CHART = "token-chart"
    TOKEN_SWAP_HISTORY = "token-swap-history"
    TOKEN_MARKET = "token-market"
    TOKEN_HOLDERS = "token-holders"
    MARKET_TYPE_INFO = "market-type-info"
    MARKET_TYPE_COMPARISON = "market-type-comparison"
    TOKEN_MARKET_PHASE = "token-market-phase"
    BUY_TOKENS_FROM_CURVE = "buy-tokens-from-curve"
    EXACT_OUT_BUY_TOKENS_FROM_CURVE = "exact-out-buy-tokens-from-curve"
    BUY_TOKENS_FROM_DEX = "buy-tokens-from-dex"
    SELL_TOKENS_TO_DEX = "sell-tokens-to-dex"


@dataclass(frozen=True)
class ToolSpec:
    description: str
    input_model: Type[BaseModel]
    handler: Callable[[Any], Awaitable[ToolOutput]]
    # 参数校验失败时返回结构化结果（交易类工具），否则返回错误文本
    on_invalid: Optional[Callable[[ValidationError], BaseModel]] = None


def render(output: ToolOutput) -> str:
    if isinstance(output, BaseModel):
        return output.model_dump_json(indent=2)
    return output


def text_result(text: str) -> List[types.TextContent]:
    return [types.TextContent(type="text", text=text)]


class ToolRegistry:
    """工具分派表"""

    def __init__(
        self,
        specs: Mapping[ToolName, ToolSpec],
        is_enabled: Callable[[str], bool] = lambda name: True,
    ):
        missing = [name.value for name in ToolName if name not in specs]
        if missing:
            raise ConfigurationError(f"No handler registered for tools: {', '.join(missing)}")

        self._specs: Dict[ToolName, ToolSpec] = dict(specs)
        self._is_enabled = is_enabled

    def list_tools(self) -> List[types.Tool]:
        """已启用工具及其参数JSON Schema"""
        return [
            types.Tool(
                name=name.value,
                description=spec.description,
                inputSchema=spec.input_model.model_json_schema(),
            )
            for name, spec in self._specs.items()
            if self._is_enabled(name.value)
        ]

    async def call(self, name: str, arguments: Optional[Dict[str, Any]]) -> List[types.TextContent]:
        """
        校验参数并分派

        Returns:
            文本内容列表（所有失败都以文本返回，不抛出）
        """
        try:
            tool = ToolName(name)
        except ValueError:
            return text_result(f"Unknown tool: {name}")

        if not self._is_enabled(tool.value):
            return text_result(f"Tool {tool.value} is disabled by configuration.")

        spec = self._specs[tool]
        try:
            params = spec.input_model.model_validate(arguments or {})
        except ValidationError as e:
            logger.warning("tool_arguments_invalid", tool=tool.value, error_count=e.error_count())
            if spec.on_invalid is not None:
                return text_result(render(spec.on_invalid(e)))
            return text_result(f"Invalid arguments for {tool.value}: {_describe(e)}")

        try:
            output = await spec.handler(params)
        except Exception as e:
            logger.error("tool_execution_failed", tool=tool.value, error=str(e), exc_type=type(e).__name__)
            return text_result(f"Error: {e}")

        return text_result(render(output))


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in d['loc']) or 'arguments'}: {d['msg']}"
        for d in error.errors(include_input=False, include_url=False)
    )
