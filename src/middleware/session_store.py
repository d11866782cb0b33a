"""
Redis会话存储

键格式: auth:{sessionId}，值为 Session 的JSON，默认TTL 24小时。
"""
from typing import Optional

from pydantic import ValidationError
from redis.asyncio import Redis

from src.core.models import Session
from src.utils.exceptions import CacheError
from src.utils.logger import get_logger

logger = get_logger(__name__)

SESSION_KEY_PREFIX = "auth:"
DEFAULT_SESSION_TTL_SECONDS = 24 * 60 * 60


class SessionStore:
    """OAuth会话存储"""

    def __init__(
        self,
        redis_url: str,
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        max_connections: int = 10,
    ):
        """
        初始化会话存储

        Args:
            redis_url: Redis连接URL
            ttl_seconds: 会话过期时间（秒）
            max_connections: 连接池大小
        """
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.max_connections = max_connections
        self._redis: Optional[Redis] = None

    @staticmethod
    def build_key(session_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}{session_id}"

    async def _get_redis(self) -> Redis:
        """获取Redis连接池（懒加载）"""
        if self._redis is None:
            try:
                self._redis = Redis.from_url(
                    self.redis_url,
                    max_connections=self.max_connections,
                    decode_responses=True,
                )
                await self._redis.ping()
                logger.info("redis_connection_established")
            except Exception as e:
                self._redis = None
                logger.error("redis_connection_failed", error=str(e))
                raise CacheError(f"Redis connection failed: {e}")
        return self._redis

    async def close(self):
        """关闭Redis连接"""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("redis_connection_closed")

    async def get(self, session_id: str) -> Optional[Session]:
        """
        读取会话

        Args:
            session_id: 会话ID

        Returns:
            会话对象；不存在或记录损坏时返回None

        Raises:
            CacheError: Redis不可用
        """
        redis = await self._get_redis()
        try:
            data = await redis.get(self.build_key(session_id))
        except Exception as e:
            logger.warning("session_get_failed", error=str(e))
            raise CacheError(f"Session lookup failed: {e}")

        if not data:
            return None

        try:
            return Session.model_validate_json(data)
        except ValidationError as e:
            logger.warning("session_record_invalid", error_count=e.error_count())
            return None

    async def save(self, session_id: str, session: Session) -> None:
        """
        写入会话（整体覆盖），并设置TTL

        Raises:
            CacheError: 写入失败
        """
        redis = await self._get_redis()
        try:
            await redis.setex(
                self.build_key(session_id),
                self.ttl_seconds,
                session.model_dump_json(),
            )
        except Exception as e:
            logger.warning("session_save_failed", error=str(e))
            raise CacheError(f"Session save failed: {e}")

        logger.info("session_saved", ttl=self.ttl_seconds, has_wallet=session.wallet is not None)

    async def delete(self, session_id: str) -> bool:
        """删除会话"""
        redis = await self._get_redis()
        try:
            result = await redis.delete(self.build_key(session_id))
        except Exception as e:
            raise CacheError(f"Session delete failed: {e}")
        return result > 0
