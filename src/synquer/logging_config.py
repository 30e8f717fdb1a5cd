"""structlog 配置模块

SDK 自身只通过 structlog.get_logger() 输出日志，导入时不修改任何日志配置。
宿主应用可调用 setup_logging() 把 SDK 日志输出到独立的 handler：

- 只作用于 stdlib 的 "synquer" logger，root logger 与宿主的 handler 保持不变
- structlog 尚未配置时才写入全局配置；宿主已有的 structlog 配置原样保留
- dev 模式（默认）：pretty print 可读输出；json 模式：单行 JSON
"""

import logging
import os
from typing import IO

import structlog

SDK_LOGGER_NAME = "synquer"

# 标记由 setup_logging() 挂载的 handler，重复调用时替换而不是叠加
_HANDLER_ATTR = "_synquer_handler"


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def _configure_structlog(log_format: str) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(log_format),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )


def setup_logging(
    log_format: str | None = None,
    log_level: str | None = None,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """为 SDK 日志挂载输出 handler

    Args:
        log_format: "json" / "dev"，默认读取 SYNQUER_LOG_FORMAT（缺省 dev）；
            仅在 structlog 尚未配置时生效
        log_level: 日志级别，默认读取 SYNQUER_LOG_LEVEL（缺省 INFO）
        stream: 输出流，默认 sys.stderr

    Returns:
        配置后的 "synquer" stdlib logger
    """
    log_format = log_format or os.environ.get("SYNQUER_LOG_FORMAT", "dev")
    log_level = log_level or os.environ.get("SYNQUER_LOG_LEVEL", "INFO")

    if not structlog.is_configured():
        _configure_structlog(log_format)

    sdk_logger = logging.getLogger(SDK_LOGGER_NAME)
    for existing in list(sdk_logger.handlers):
        if getattr(existing, _HANDLER_ATTR, False):
            sdk_logger.removeHandler(existing)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(message)s"))
    setattr(handler, _HANDLER_ATTR, True)

    sdk_logger.addHandler(handler)
    sdk_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    # 不向 root 传播
    sdk_logger.propagate = False
    return sdk_logger
