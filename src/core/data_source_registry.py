"""
数据源注册表

集中持有进程内的外部HTTP客户端（nad.fun、Privy、Google），统一关闭与统计。
"""
from typing import Any, Dict, Optional

from src.data_sources.base import BaseDataSource
from src.utils.logger import get_logger

logger = get_logger(__name__)


class DataSourceRegistry:
    """数据源注册表"""

    def __init__(self):
        self._sources: Dict[str, BaseDataSource] = {}

    def register(self, name: str, source: BaseDataSource):
        """
        注册数据源（同名覆盖）

        Args:
            name: 数据源名称
            source: 数据源实例
        """
        self._sources[name] = source
        logger.info("data_source_registered", name=name)

    def get_source(self, name: str) -> Optional[BaseDataSource]:
        return self._sources.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._sources

    def __len__(self) -> int:
        return len(self._sources)

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: source.get_stats() for name, source in self._sources.items()}

    async def close_all(self):
        """关闭所有数据源连接（单个失败不影响其余）"""
        for name, source in self._sources.items():
            try:
                await source.close()
                logger.info("data_source_closed", name=name)
            except Exception as e:
                logger.error("data_source_close_failed", name=name, error=str(e))
        self._sources.clear()


# 全局注册表实例
registry = DataSourceRegistry()
