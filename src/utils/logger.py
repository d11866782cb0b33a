"""
结构化日志配置
"""
import logging
import sys
from typing import Any, Optional, TextIO

import structlog


def setup_logging(level: str = "INFO", stream: Optional[TextIO] = None) -> None:
    """
    配置结构化日志

    Args:
        level: 日志级别
        stream: 输出流，默认stdout；stdio传输下必须传入stderr，避免污染JSON-RPC数据流
    """
    stream = stream or sys.stdout

    # 设置标准库logging
    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=getattr(logging, level.upper()),
    )

    # 配置structlog
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(colors=stream.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> Any:
    """获取logger实例"""
    return structlog.get_logger(name)
