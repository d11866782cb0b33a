"""
错误处理中间件

为外部HTTP依赖（nad.fun API、Privy、Google）提供：
- 指数退避重试
- 断路器模式
- 错误聚合
"""
import asyncio
import time
from collections import deque
from enum import Enum
from functools import wraps
from typing import Any, Callable, Deque, Dict, Optional, Type

import structlog

from src.utils.exceptions import (
    DataSourceAuthError,
    DataSourceError,
    DataSourceNotFoundError,
    DataSourceRateLimitError,
    DataSourceTimeoutError,
)

logger = structlog.get_logger(__name__)


class CircuitState(Enum):
    """断路器状态"""

    CLOSED = "closed"  # 正常状态，请求通过
    OPEN = "open"  # 断开状态，请求直接失败
    HALF_OPEN = "half_open"  # 半开状态，允许试探请求


class CircuitBreaker:
    """
    断路器

    连续失败达到阈值后断开，recovery_timeout 之后放行一次试探请求。
    404 不计入失败（资源不存在不代表上游不健康）。
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        expected_exception: Type[Exception] = Exception,
        ignored_exceptions: tuple = (DataSourceNotFoundError,),
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.ignored_exceptions = ignored_exceptions

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None

        logger.debug(
            "circuit_breaker_initialized",
            name=name,
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
        )

    @property
    def state(self) -> CircuitState:
        """获取当前状态（考虑自动恢复）"""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if time.monotonic() - self._opened_at >= self.recovery_timeout:
                logger.info("circuit_breaker_half_open", name=self.name)
                self._state = CircuitState.HALF_OPEN
        return self._state

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        通过断路器调用异步函数

        Raises:
            DataSourceError: 断路器开启
        """
        if self.state == CircuitState.OPEN:
            logger.warning(
                "circuit_breaker_open",
                name=self.name,
                failure_count=self._failure_count,
            )
            raise DataSourceError(
                self.name,
                f"Circuit breaker is OPEN (failures: {self._failure_count})",
            )

        try:
            result = await func(*args, **kwargs)
        except self.ignored_exceptions:
            self._on_success()
            raise
        except self.expected_exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self):
        self._failure_count = 0
        if self._state == CircuitState.HALF_OPEN:
            logger.info("circuit_breaker_closed", name=self.name)
        self._state = CircuitState.CLOSED
        self._opened_at = None

    def _on_failure(self):
        self._failure_count += 1
        logger.warning(
            "circuit_breaker_failure",
            name=self.name,
            failure_count=self._failure_count,
            threshold=self.failure_threshold,
        )

        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            logger.error(
                "circuit_breaker_opened",
                name=self.name,
                failure_count=self._failure_count,
            )
            self._state = CircuitState.OPEN
            self._opened_at = time.monotonic()

    def reset(self):
        """手动重置断路器"""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
        }


def with_retry(
    max_attempts: int = 3,
    backoff_base: float = 2.0,
    max_backoff: float = 60.0,
    retry_exceptions: tuple = (
        DataSourceTimeoutError,
        DataSourceRateLimitError,
    ),
    no_retry_exceptions: tuple = (DataSourceAuthError, DataSourceNotFoundError),
):
    """
    异步重试装饰器（指数退避）

    仅用于幂等读请求；发送交易等写操作不得使用。

    Args:
        max_attempts: 最大尝试次数
        backoff_base: 退避基数（第n次重试延迟 = backoff_base ^ (n-1)）
        max_backoff: 最大退避时间（秒）
        retry_exceptions: 需要重试的异常类型
        no_retry_exceptions: 不重试的异常类型（直接抛出）
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    result = await func(*args, **kwargs)
                    if attempt > 1:
                        logger.info(
                            "retry_success",
                            function=func.__name__,
                            attempt=attempt,
                        )
                    return result

                except no_retry_exceptions:
                    raise

                except retry_exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(
                            "retry_exhausted",
                            function=func.__name__,
                            attempts=max_attempts,
                            exception=type(e).__name__,
                        )
                        raise
                    backoff = min(backoff_base ** (attempt - 1), max_backoff)
                    logger.warning(
                        "retry_attempt",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        exception=type(e).__name__,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)

        return wrapper

    return decorator


class ErrorAggregator:
    """
    错误聚合器

    按时间窗口统计各外部依赖的错误，用于 /health 输出
    """

    def __init__(self, window_seconds: int = 300, max_records: int = 1000):
        self.window_seconds = window_seconds
        self._errors: Deque[Dict[str, Any]] = deque(maxlen=max_records)

    def record_error(
        self,
        source: str,
        exception: Exception,
        endpoint: Optional[str] = None,
    ):
        self._errors.append(
            {
                "timestamp": time.monotonic(),
                "source": source,
                "exception_type": type(exception).__name__,
                "endpoint": endpoint,
            }
        )
        self._cleanup_old_errors()

    def _cleanup_old_errors(self):
        cutoff = time.monotonic() - self.window_seconds
        while self._errors and self._errors[0]["timestamp"] <= cutoff:
            self._errors.popleft()

    def get_error_rate(self, source: Optional[str] = None) -> float:
        """获取错误率（每分钟错误数）"""
        self._cleanup_old_errors()
        count = sum(1 for e in self._errors if source is None or e["source"] == source)
        return count / (self.window_seconds / 60)

    def get_error_summary(self) -> Dict[str, Any]:
        """获取错误摘要"""
        self._cleanup_old_errors()

        source_counts: Dict[str, int] = {}
        exception_counts: Dict[str, int] = {}
        for error in self._errors:
            source_counts[error["source"]] = source_counts.get(error["source"], 0) + 1
            exception_counts[error["exception_type"]] = (
                exception_counts.get(error["exception_type"], 0) + 1
            )

        return {
            "total_errors": len(self._errors),
            "error_rate_per_minute": self.get_error_rate(),
            "errors_by_source": source_counts,
            "errors_by_type": exception_counts,
            "window_seconds": self.window_seconds,
        }


# 全局错误聚合器实例
global_error_aggregator = ErrorAggregator(window_seconds=300)
