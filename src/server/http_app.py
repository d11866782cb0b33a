"""
MCP HTTP Server

SSE 传输（GET /sse + POST /message/）、Google OAuth 登录、托管钱包API。
受保护路径由 AuthGateMiddleware 校验会话。
"""
import html
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from mcp.server.sse import SseServerTransport
from pydantic import ValidationError

from src.core.data_source_registry import registry
from src.core.identity import bound_session_id, now_ms
from src.core.models import Session, WalletOperation, WalletOperationRequest
from src.core.units import parse_units
from src.middleware.auth_gate import AuthGate, AuthGateMiddleware, extract_session_id
from src.middleware.error_handler import global_error_aggregator
from src.server.app import MCPServer, build_session_store
from src.utils.config import config
from src.utils.exceptions import CacheError, DataSourceError
from src.utils.logger import get_logger

logger = get_logger(__name__)

SERVICE_NAME = "nadfun-mcp-server"
VERSION = "0.1.0"

session_store = build_session_store()
mcp_server = MCPServer(session_store=session_store)
sse = SseServerTransport("/message/")
auth_gate = AuthGate(
    required=config.settings.require_auth,
    protected_paths=config.settings.protected_paths,
    session_store=session_store,
)


# ==================== 生命周期管理 ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("http_server_starting")

    # 开启认证但缺少OAuth凭据时拒绝启动
    config.validate_startup()
    await mcp_server.initialize()

    logger.info("http_server_started", require_auth=config.settings.require_auth)

    yield

    logger.info("http_server_stopping")
    await mcp_server.cleanup()
    logger.info("http_server_stopped")


# ==================== FastAPI 应用 ====================

app = FastAPI(
    title="nad.fun MCP Server",
    description="nad.fun 联合曲线与DEX交易 MCP 工具（SSE传输 + Google OAuth）",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(AuthGateMiddleware, gate=auth_gate)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== 健康检查 ====================

@app.get("/health")
async def health_check():
    """健康检查端点"""
    tool_registry = mcp_server.tool_registry
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "tools_count": len(tool_registry.list_tools()) if tool_registry else 0,
        "require_auth": config.settings.require_auth,
        "data_sources": registry.get_all_stats(),
        "errors": global_error_aggregator.get_error_summary(),
    }


@app.get("/")
async def root():
    """根路径"""
    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "sse": "/sse",
        "messages": "/message/",
        "auth": "/auth/google",
        "health": "/health",
        "tools": "/tools",
    }


@app.get("/tools")
async def list_tools():
    """列出已启用的 MCP 工具"""
    if mcp_server.tool_registry is None:
        raise HTTPException(status_code=503, detail="Server not initialized")
    return {
        "tools": [
            {"name": tool.name, "description": tool.description, "input_schema": tool.inputSchema}
            for tool in mcp_server.tool_registry.list_tools()
        ]
    }


# ==================== MCP SSE 传输 ====================

@app.get("/sse")
async def handle_sse(request: Request):
    """建立SSE连接；连接期间的工具调用默认使用该连接的会话身份"""
    session_id = extract_session_id(request.scope.get("query_string", b""), request.headers)
    token = bound_session_id.set(session_id)
    logger.info("sse_connection_opened", authenticated_session=session_id is not None)
    transport_ids = []

    async def send(message):
        # 记录传输会话ID，使 POST /message/ 可按 session_id 找回认证会话
        if not transport_ids and message["type"] == "http.response.body":
            transport_id = auth_gate.bind_stream(message.get("body", b""), session_id)
            if transport_id:
                transport_ids.append(transport_id)
        await request._send(message)

    try:
        async with sse.connect_sse(request.scope, request.receive, send) as (
            read_stream,
            write_stream,
        ):
            await mcp_server.server.run(
                read_stream,
                write_stream,
                mcp_server.server.create_initialization_options(),
            )
    finally:
        for transport_id in transport_ids:
            auth_gate.release_stream(transport_id)
        bound_session_id.reset(token)
        logger.info("sse_connection_closed")
    return Response()


app.mount("/message/", app=sse.handle_post_message)


# ==================== Google OAuth ====================

@app.api_route("/auth/google", methods=["GET", "POST"])
async def auth_google(request: Request):
    """跳转到 Google 授权页，state 携带会话ID"""
    google = mcp_server.google
    if google is None or not google.client_id:
        return JSONResponse(status_code=500, content={"error": "Google Client ID not configured"})

    session_id = request.query_params.get("sessionId") or str(uuid.uuid4())
    return RedirectResponse(google.authorization_url(state=session_id), status_code=302)


@app.get("/auth/google/callback")
async def auth_google_callback(code: Optional[str] = None, state: Optional[str] = None):
    """换取令牌、获取用户信息、尽力创建托管钱包并保存会话"""
    if not code:
        return JSONResponse(status_code=400, content={"error": "No code provided"})
    if not state:
        return JSONResponse(status_code=400, content={"error": "No session id (state) provided"})

    google = mcp_server.google
    if google is None or not (google.client_id and google.client_secret):
        return JSONResponse(status_code=500, content={"error": "Google OAuth credentials not configured"})

    try:
        tokens = await google.exchange_code(code, now_ms())
    except DataSourceError as e:
        logger.warning("oauth_code_exchange_failed", error=e.message)
        return JSONResponse(status_code=400, content={"error": "Failed to exchange code for token"})

    try:
        user = await google.get_user_info(tokens.access_token)
    except DataSourceError as e:
        logger.warning("oauth_userinfo_failed", error=e.message)
        return JSONResponse(status_code=400, content={"error": "Failed to get user information"})

    # 钱包创建失败不阻断登录，会话以无钱包状态保存
    wallet = None
    try:
        wallet = await mcp_server.privy.create_wallet()
        logger.info("wallet_created", user_id=user.id, address=wallet.address)
    except DataSourceError as e:
        logger.warning("wallet_creation_failed", user_id=user.id, error=e.message)

    try:
        await session_store.save(state, Session(user=user, wallet=wallet, tokens=tokens))
    except CacheError as e:
        logger.error("session_persist_failed", error=str(e))
        return JSONResponse(
            status_code=500, content={"error": "Internal server error during authentication"}
        )

    return HTMLResponse(_auth_success_page(wallet.address if wallet else None))


def _auth_success_page(wallet_address: Optional[str]) -> str:
    wallet_block = (
        f'<div class="wallet">Wallet address: {html.escape(wallet_address)}</div>'
        if wallet_address
        else ""
    )
    return f"""<!DOCTYPE html>
<html>
  <head>
    <title>Authentication Successful</title>
    <script>window.onload = function() {{ window.close(); }}</script>
    <style>
      body {{ font-family: system-ui, sans-serif; text-align: center; padding-top: 15vh; }}
      .wallet {{ font-family: monospace; margin-top: 1rem; }}
    </style>
  </head>
  <body>
    <h1>Authentication Successful</h1>
    <p>You can close this window and return to your MCP client.</p>
    {wallet_block}
  </body>
</html>"""


# ==================== 托管钱包 API ====================

async def _load_session(session_id: Optional[str]) -> Session:
    if not session_id:
        raise HTTPException(status_code=400, detail="Session ID required")
    try:
        session = await session_store.get(session_id)
    except CacheError as e:
        logger.error("wallet_session_lookup_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Error retrieving wallet information")
    if session is None or session.is_expired(now_ms()):
        raise HTTPException(status_code=401, detail="User not authenticated")
    if session.wallet is None:
        raise HTTPException(status_code=404, detail="No wallet found for this user")
    return session


@app.get("/api/wallet")
async def get_wallet(sessionId: Optional[str] = None):
    session = await _load_session(sessionId)
    return {"address": session.wallet.address, "message": "Wallet found for this user"}


@app.post("/api/wallet")
async def wallet_operation(request: Request, sessionId: Optional[str] = None):
    session = await _load_session(sessionId)

    try:
        body = await request.json()
        operation_request = WalletOperationRequest.model_validate(body)
    except ValueError as e:
        # ValidationError 是 ValueError 的子类，JSON解析失败同样落在这里
        detail = (
            "; ".join(err["msg"] for err in e.errors(include_input=False, include_url=False))
            if isinstance(e, ValidationError)
            else "Request body must be JSON"
        )
        raise HTTPException(status_code=400, detail=detail)

    if operation_request.operation != WalletOperation.SEND_TRANSACTION:
        raise HTTPException(
            status_code=400, detail=f"Unsupported operation: {operation_request.operation}"
        )

    value = parse_units(operation_request.params.amount)
    if value is None:
        raise HTTPException(status_code=400, detail="Amount must be a positive decimal")

    try:
        tx_hash = await mcp_server.privy.send_transaction(
            session.wallet.id, operation_request.params.to, value=value
        )
    except DataSourceError as e:
        logger.error("wallet_transaction_failed", error=e.message)
        raise HTTPException(status_code=500, detail=f"Failed to execute transaction: {e.message}")

    logger.info("wallet_transaction_sent", tx_hash=tx_hash, address=session.wallet.address)
    return {"success": True, "transaction": {"hash": tx_hash}}


# ==================== 异常处理 ====================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """全局异常处理"""
    logger.error("unhandled_exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error": str(exc)},
    )


# ==================== 主函数 ====================

def main():
    """启动 HTTP 服务器"""
    import uvicorn

    from src.utils.logger import setup_logging

    setup_logging(config.settings.log_level)
    host = config.settings.http_host
    port = config.settings.http_port

    logger.info("http_server_listening", host=host, port=port)

    uvicorn.run(
        "src.server.http_app:app",
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
