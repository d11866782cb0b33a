"""
速率限制中间件

对外部HTTP依赖做客户端侧限流：
- Token Bucket 控制每秒速率与突发
- Sliding Window 控制每分钟配额
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitConfig:
    """速率限制配置"""

    requests_per_second: Optional[float] = None
    requests_per_minute: Optional[int] = None
    burst_size: Optional[int] = None


class TokenBucket:
    """令牌桶：允许突发，同时限制平均速率"""

    def __init__(self, rate: float, capacity: int):
        self.rate = rate
        self.capacity = capacity
        self._tokens = float(capacity)
        self._last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self, tokens: int = 1) -> bool:
        async with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    async def wait_for_token(self, tokens: int = 1, timeout: Optional[float] = None):
        """
        等待令牌

        Raises:
            asyncio.TimeoutError: 超时
        """
        start = time.monotonic()
        while not await self.acquire(tokens):
            if timeout is not None and time.monotonic() - start >= timeout:
                raise asyncio.TimeoutError("Rate limit acquisition timeout")
            await asyncio.sleep(min(tokens / self.rate, 0.1))

    def _refill(self):
        now = time.monotonic()
        self._tokens = min(self._tokens + (now - self._last_update) * self.rate, self.capacity)
        self._last_update = now

    def get_available_tokens(self) -> float:
        return self._tokens


class SlidingWindowCounter:
    """滑动窗口计数器"""

    def __init__(self, window_seconds: int, max_requests: int):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._requests: List[float] = []
        self._lock = asyncio.Lock()

    async def check_and_add(self) -> bool:
        async with self._lock:
            now = time.monotonic()
            cutoff = now - self.window_seconds
            self._requests = [t for t in self._requests if t > cutoff]

            if len(self._requests) >= self.max_requests:
                return False
            self._requests.append(now)
            return True

    def get_current_count(self) -> int:
        cutoff = time.monotonic() - self.window_seconds
        return sum(1 for t in self._requests if t > cutoff)


class RateLimiter:
    """按数据源的多层速率限制器"""

    def __init__(self, name: str, config: RateLimitConfig):
        self.name = name
        self.config = config

        self.token_bucket: Optional[TokenBucket] = None
        if config.requests_per_second:
            self.token_bucket = TokenBucket(
                rate=config.requests_per_second,
                capacity=config.burst_size or int(config.requests_per_second * 2),
            )

        self.minute_window: Optional[SlidingWindowCounter] = None
        if config.requests_per_minute:
            self.minute_window = SlidingWindowCounter(
                window_seconds=60,
                max_requests=config.requests_per_minute,
            )

    async def acquire(self, wait: bool = False, timeout: Optional[float] = None) -> bool:
        """
        获取速率限制许可

        Args:
            wait: 是否等待令牌桶补充
            timeout: 等待超时时间（秒）

        Returns:
            是否获得许可
        """
        if self.token_bucket:
            if wait:
                try:
                    await self.token_bucket.wait_for_token(1, timeout)
                except asyncio.TimeoutError:
                    logger.warning("rate_limit_wait_timeout", name=self.name)
                    return False
            elif not await self.token_bucket.acquire(1):
                logger.warning("rate_limit_exceeded", name=self.name, limit_type="per_second")
                return False

        if self.minute_window and not await self.minute_window.check_and_add():
            logger.warning(
                "rate_limit_exceeded",
                name=self.name,
                limit_type="per_minute",
                current=self.minute_window.get_current_count(),
                max=self.config.requests_per_minute,
            )
            return False

        return True

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "name": self.name,
            "limits": {
                "per_second": self.config.requests_per_second,
                "per_minute": self.config.requests_per_minute,
                "burst_size": self.config.burst_size,
            },
        }
        if self.token_bucket:
            stats["available_tokens"] = self.token_bucket.get_available_tokens()
        if self.minute_window:
            stats["minute_used"] = self.minute_window.get_current_count()
        return stats


class RateLimiterRegistry:
    """速率限制器注册表"""

    DEFAULT_CONFIGS: Dict[str, RateLimitConfig] = {
        "nadfun": RateLimitConfig(
            requests_per_second=5,  # 测试网API未公布限额，保守配置
            requests_per_minute=240,
            burst_size=10,
        ),
        "privy": RateLimitConfig(
            requests_per_second=2,
            requests_per_minute=60,
        ),
        "google": RateLimitConfig(
            requests_per_second=5,
        ),
    }

    def __init__(self):
        self._limiters: Dict[str, RateLimiter] = {}

    def register(self, name: str, config: Optional[RateLimitConfig] = None) -> RateLimiter:
        """注册速率限制器，未提供配置时使用默认配置"""
        if config is None:
            config = self.DEFAULT_CONFIGS.get(name, RateLimitConfig())

        limiter = RateLimiter(name, config)
        self._limiters[name] = limiter
        logger.debug("rate_limiter_registered", name=name)
        return limiter

    def get(self, name: str) -> Optional[RateLimiter]:
        return self._limiters.get(name)

    def get_all_stats(self) -> Dict[str, Dict]:
        return {name: limiter.get_stats() for name, limiter in self._limiters.items()}


# 全局速率限制器注册表
global_rate_limiter_registry = RateLimiterRegistry()
