"""
数据源抽象基类
"""
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from src.middleware import (
    CircuitBreaker,
    RateLimiter,
    global_error_aggregator,
    global_rate_limiter_registry,
    with_retry,
)
from src.utils.config import config
from src.utils.exceptions import (
    DataSourceAuthError,
    DataSourceError,
    DataSourceNotFoundError,
    DataSourceRateLimitError,
    DataSourceTimeoutError,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)


class BaseDataSource(ABC):
    """HTTP数据源抽象基类（断路器 + 重试 + 限流）"""

    def __init__(
        self,
        name: str,
        base_url: str,
        timeout: float = 10.0,
        requires_api_key: bool = False,
        enable_circuit_breaker: bool = True,
        circuit_failure_threshold: int = 5,
        circuit_recovery_timeout: float = 60.0,
    ):
        """
        初始化数据源

        Args:
            name: 数据源名称（如 nadfun, privy）
            base_url: API基础URL
            timeout: 请求超时时间（秒）
            requires_api_key: 是否需要API密钥
            enable_circuit_breaker: 是否启用断路器
            circuit_failure_threshold: 断路器失败阈值
            circuit_recovery_timeout: 断路器恢复超时（秒）
        """
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.requires_api_key = requires_api_key
        self.api_key = config.get_api_key(name)

        if requires_api_key and not self.api_key:
            logger.warning(
                f"{name} requires API key but none configured",
                provider=name,
            )

        self._client: Optional[httpx.AsyncClient] = None

        self.circuit_breaker: Optional[CircuitBreaker] = None
        if enable_circuit_breaker:
            self.circuit_breaker = CircuitBreaker(
                name=name,
                failure_threshold=circuit_failure_threshold,
                recovery_timeout=circuit_recovery_timeout,
            )

        # 获取速率限制器（从全局注册表）
        self.rate_limiter: Optional[RateLimiter] = (
            global_rate_limiter_registry.get(name)
        )
        if not self.rate_limiter:
            self.rate_limiter = global_rate_limiter_registry.register(name)

    @property
    def client(self) -> httpx.AsyncClient:
        """获取HTTP客户端（懒加载）"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._get_headers(),
                timeout=self.timeout,
                follow_redirects=True,
            )
        return self._client

    async def close(self):
        """关闭HTTP客户端"""
        if self._client:
            await self._client.aclose()
            self._client = None

    @abstractmethod
    def _get_headers(self) -> Dict[str, str]:
        """
        获取请求头（子类实现）

        Returns:
            请求头字典
        """
        pass

    @abstractmethod
    async def fetch_raw(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        json_body: Optional[Dict] = None,
        form_body: Optional[Dict] = None,
    ) -> Any:
        """
        获取原始数据（子类实现）

        Raises:
            DataSourceError: 数据源错误
        """
        pass

    def transform(self, raw_data: Any, data_type: str) -> Any:
        """
        将原始数据转换为标准格式，默认原样返回

        Args:
            raw_data: 原始API响应
            data_type: 数据类型（如 market, token）
        """
        return raw_data

    async def fetch(
        self,
        endpoint: str,
        params: Optional[Dict] = None,
        data_type: str = "default",
        method: str = "GET",
        json_body: Optional[Dict] = None,
        form_body: Optional[Dict] = None,
        retry: bool = True,
    ) -> Any:
        """
        获取并转换数据的完整流程

        Args:
            endpoint: API端点
            params: 查询参数
            data_type: 数据类型
            method: HTTP方法
            json_body: JSON请求体
            form_body: 表单请求体
            retry: 是否允许超时/限流重试（非幂等写操作必须关闭）

        Returns:
            转换后的数据
        """
        start_time = time.time()
        fetcher = self._fetch_with_retry if retry else self._fetch_once

        try:
            if self.circuit_breaker:
                raw_data = await self.circuit_breaker.call(
                    fetcher, method, endpoint, params, json_body, form_body
                )
            else:
                raw_data = await fetcher(method, endpoint, params, json_body, form_body)

            transformed_data = self.transform(raw_data, data_type)

            response_time_ms = (time.time() - start_time) * 1000
            logger.debug(
                f"Successfully fetched from {self.name}",
                provider=self.name,
                endpoint=endpoint,
                response_time_ms=response_time_ms,
            )
            return transformed_data

        except Exception as e:
            response_time_ms = (time.time() - start_time) * 1000

            global_error_aggregator.record_error(
                source=self.name,
                exception=e,
                endpoint=endpoint,
            )

            logger.error(
                f"Failed to fetch from {self.name}",
                provider=self.name,
                endpoint=endpoint,
                error=str(e),
                response_time_ms=response_time_ms,
            )
            raise

    async def _fetch_once(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        json_body: Optional[Dict] = None,
        form_body: Optional[Dict] = None,
    ) -> Any:
        """单次数据获取（含速率限制检查）"""
        if self.rate_limiter:
            # 等待获取速率限制许可（最多等待30秒）
            allowed = await self.rate_limiter.acquire(wait=True, timeout=30.0)
            if not allowed:
                raise DataSourceRateLimitError(
                    self.name,
                    "Rate limit exceeded and could not acquire permit",
                )

        return await self.fetch_raw(method, endpoint, params, json_body, form_body)

    @with_retry(
        max_attempts=3,
        backoff_base=2.0,
        max_backoff=60.0,
    )
    async def _fetch_with_retry(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        json_body: Optional[Dict] = None,
        form_body: Optional[Dict] = None,
    ) -> Any:
        """带重试的数据获取（内部方法）"""
        return await self._fetch_once(method, endpoint, params, json_body, form_body)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict] = None,
        form_body: Optional[Dict] = None,
    ) -> Any:
        """
        发起HTTP请求（通用方法）

        Args:
            method: HTTP方法（GET, POST等）
            endpoint: 端点路径或完整URL
            params: 查询参数（Query String）
            headers: 可选的自定义请求头（会与默认请求头合并）
            json_body: JSON 请求体
            form_body: application/x-www-form-urlencoded 请求体

        Returns:
            响应数据

        Raises:
            DataSourceError: 各种数据源错误
        """
        try:
            response = await self.client.request(
                method=method,
                url=endpoint,
                params=params,
                headers=headers,
                json=json_body,
                data=form_body,
            )
        except httpx.TimeoutException:
            raise DataSourceTimeoutError(
                self.name, f"Request timeout after {self.timeout}s"
            )
        except httpx.HTTPError as e:
            raise DataSourceError(self.name, f"HTTP error: {e}")

        # 处理HTTP错误状态码
        if response.status_code == 401:
            raise DataSourceAuthError(
                self.name, "Authentication failed. Check credentials."
            )
        elif response.status_code == 404:
            raise DataSourceNotFoundError(self.name, f"Resource not found: {endpoint}")
        elif response.status_code == 429:
            raise DataSourceRateLimitError(self.name, "Rate limit exceeded")
        elif response.status_code >= 400:
            raise DataSourceError(
                self.name, f"HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError:
            raise DataSourceError(self.name, f"Non-JSON response from {endpoint}")

    def get_stats(self) -> Dict[str, Any]:
        """
        获取数据源统计信息

        Returns:
            统计信息字典
        """
        stats = {
            "name": self.name,
            "base_url": self.base_url,
            "timeout": self.timeout,
            "requires_api_key": self.requires_api_key,
            "has_api_key": bool(self.api_key),
        }

        if self.circuit_breaker:
            stats["circuit_breaker"] = self.circuit_breaker.get_stats()

        if self.rate_limiter:
            stats["rate_limiter"] = self.rate_limiter.get_stats()

        stats["error_rate_per_minute"] = global_error_aggregator.get_error_rate(source=self.name)

        return stats

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name} base_url={self.base_url}>"
