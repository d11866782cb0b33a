"""
认证网关

对受保护路径（默认 /sse、/message）校验会话：
- 认证关闭或非受保护路径：放行
- 未携带会话ID：生成新ID并跳转认证
- 会话不存在、已过期或存储不可用：携带原ID跳转认证
- 会话有效：放行

会话ID来自 sessionId 查询参数或 x-mcp-session-id 请求头。
SSE 传输的 POST /message/?session_id=<hex> 不携带会话ID，
通过建立 /sse 连接时记录的传输会话映射找回对应的认证会话。
"""
import re
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Sequence
from urllib.parse import parse_qs, urlencode

from starlette.datastructures import Headers
from starlette.responses import RedirectResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from src.middleware.session_store import SessionStore
from src.utils.exceptions import CacheError
from src.utils.logger import get_logger

logger = get_logger(__name__)

AUTH_INIT_PATH = "/auth/google"
SESSION_QUERY_PARAM = "sessionId"
SESSION_HEADER = "x-mcp-session-id"
TRANSPORT_SESSION_PARAM = "session_id"
# SseServerTransport 首个 endpoint 事件：data: /message/?session_id=<uuid hex>
ENDPOINT_EVENT_PATTERN = re.compile(rb"[?&]session_id=([0-9a-f]{32})")


class GateAction(Enum):
    PASS = "pass"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class GateDecision:
    action: GateAction
    session_id: Optional[str] = None
    reason: str = ""

    @property
    def redirect_url(self) -> str:
        return f"{AUTH_INIT_PATH}?{urlencode({SESSION_QUERY_PARAM: self.session_id})}"


def extract_session_id(query_string: bytes, headers: Headers) -> Optional[str]:
    values = parse_qs(query_string.decode("latin-1")).get(SESSION_QUERY_PARAM)
    if values and values[0]:
        return values[0]
    return headers.get(SESSION_HEADER) or None


class AuthGate:
    """会话校验决策（不直接处理HTTP）"""

    def __init__(
        self,
        required: bool,
        protected_paths: Sequence[str],
        session_store: Optional[SessionStore],
        clock: Callable[[], int] = lambda: int(time.time() * 1000),
    ):
        self.required = required
        self.protected_paths = tuple(protected_paths)
        self.session_store = session_store
        self.clock = clock
        self._streams: Dict[str, str] = {}

    def is_protected(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.protected_paths)

    def bind_stream(self, body: bytes, session_id: Optional[str]) -> Optional[str]:
        """
        从SSE endpoint事件中取出传输会话ID，并与认证会话关联

        Returns:
            传输会话ID；body 不是 endpoint 事件或没有认证会话时返回 None
        """
        if not session_id:
            return None
        match = ENDPOINT_EVENT_PATTERN.search(body)
        if match is None:
            return None
        transport_id = match.group(1).decode("ascii")
        self._streams[transport_id] = session_id
        logger.debug("sse_stream_bound", transport_session=transport_id)
        return transport_id

    def release_stream(self, transport_id: str) -> None:
        self._streams.pop(transport_id, None)

    def resolve_session_id(self, query_string: bytes, headers: Headers) -> Optional[str]:
        """显式会话ID优先，否则按传输会话ID查找仍存活的SSE连接"""
        session_id = extract_session_id(query_string, headers)
        if session_id:
            return session_id
        values = parse_qs(query_string.decode("latin-1")).get(TRANSPORT_SESSION_PARAM)
        if values and values[0]:
            return self._streams.get(values[0])
        return None

    async def evaluate(self, path: str, session_id: Optional[str]) -> GateDecision:
        if not self.required or not self.is_protected(path):
            return GateDecision(GateAction.PASS, session_id)

        if not session_id:
            return GateDecision(GateAction.REDIRECT, str(uuid.uuid4()), "missing_session_id")

        if self.session_store is None:
            return GateDecision(GateAction.REDIRECT, session_id, "session_store_unavailable")

        try:
            session = await self.session_store.get(session_id)
        except CacheError as e:
            logger.warning("auth_gate_store_error", error=str(e))
            return GateDecision(GateAction.REDIRECT, session_id, "session_store_error")

        if session is None:
            return GateDecision(GateAction.REDIRECT, session_id, "session_not_found")
        if session.is_expired(self.clock()):
            return GateDecision(GateAction.REDIRECT, session_id, "session_expired")
        return GateDecision(GateAction.PASS, session_id)


class AuthGateMiddleware:
    """ASGI中间件：流式响应（SSE）直接透传，不做缓冲"""

    def __init__(self, app: ASGIApp, gate: AuthGate):
        self.app = app
        self.gate = gate

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = scope["path"]
        session_id = self.gate.resolve_session_id(scope.get("query_string", b""), Headers(scope=scope))
        decision = await self.gate.evaluate(path, session_id)

        if decision.action == GateAction.REDIRECT:
            logger.info("auth_redirect", path=path, reason=decision.reason)
            response = RedirectResponse(decision.redirect_url, status_code=302)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)
