"""
签名身份解析

优先级：有效会话的托管钱包 > 调用方提供的私钥 > NoIdentityError。
过期会话等同于没有会话；跳转重新认证由传输层（AuthGate）负责。
"""
import re
import time
from contextvars import ContextVar
from typing import Callable, Optional, Union

from eth_account import Account
from pydantic import SecretStr

from src.core.models import SessionWalletIdentity, SuppliedKeyIdentity
from src.middleware.session_store import SessionStore
from src.utils.exceptions import CacheError, InvalidKeyError, NoIdentityError
from src.utils.logger import get_logger

logger = get_logger(__name__)

PRIVATE_KEY_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")

# SSE连接建立时绑定的会话ID，工具调用未显式传入时使用
bound_session_id: ContextVar[Optional[str]] = ContextVar("bound_session_id", default=None)


def now_ms() -> int:
    return int(time.time() * 1000)


class IdentityResolver:
    """签名身份解析器（不记录、不持久化私钥）"""

    def __init__(self, session_store: Optional[SessionStore], clock: Callable[[], int] = now_ms):
        self.session_store = session_store
        self.clock = clock

    async def resolve(
        self,
        session_id: Optional[str] = None,
        private_key: Union[SecretStr, str, None] = None,
    ) -> Union[SessionWalletIdentity, SuppliedKeyIdentity]:
        """
        解析本次调用的签名身份

        Args:
            session_id: 会话ID（缺省时取当前连接绑定的会话）
            private_key: 调用方提供的私钥

        Raises:
            InvalidKeyError: 私钥格式错误
            NoIdentityError: 没有可用身份
        """
        session_id = session_id or bound_session_id.get()
        if session_id:
            identity = await self._from_session(session_id)
            if identity is not None:
                return identity

        if private_key is not None:
            return self._from_key(private_key)

        raise NoIdentityError()

    async def _from_session(self, session_id: str) -> Optional[SessionWalletIdentity]:
        if self.session_store is None:
            return None

        try:
            session = await self.session_store.get(session_id)
        except CacheError as e:
            logger.warning("session_lookup_failed", error=str(e))
            return None

        if session is None:
            return None
        if session.is_expired(self.clock()):
            logger.info("session_expired", expires_at=session.tokens.expires_at)
            return None
        if session.wallet is None:
            logger.info("session_without_wallet", user_id=session.user.id)
            return None

        return SessionWalletIdentity(
            session_id=session_id,
            wallet_id=session.wallet.id,
            address=session.wallet.address,
        )

    @staticmethod
    def _from_key(private_key: Union[SecretStr, str]) -> SuppliedKeyIdentity:
        secret = private_key if isinstance(private_key, SecretStr) else SecretStr(private_key)
        raw = secret.get_secret_value().strip()
        if not PRIVATE_KEY_PATTERN.match(raw):
            raise InvalidKeyError()

        try:
            address = Account.from_key(raw).address
        except Exception:
            # 全零或超出曲线阶数的私钥（eth_keys 抛出自身的 ValidationError）
            raise InvalidKeyError() from None
        return SuppliedKeyIdentity(raw_key=SecretStr(raw), address=address)
