"""Synquer -- 同步任务遥测 SDK

公开接口导出。
"""

# 核心组件
from .client import Synquer

# 配置
from .config import SDK_VERSION, SynquerConfig, load_config
from .delivery import BatchDelivery, DeliveryStrategy, PerJobDelivery
from .enums import DispatchMode, EventType, JobState

# 异常
from .exceptions import (
    ConfigurationError,
    DeliveryError,
    RetriesExhaustedError,
    RetryableDeliveryError,
    SynquerError,
    TerminalDeliveryError,
)
from .job import Job
from .logging_config import setup_logging

# 数据模型
from .models import BatchError, BatchResponse, EntityRef, Event, EventOptions, JobOptions
from .transport import HttpTransport

__version__ = SDK_VERSION

__all__ = [
    "Synquer",
    "Job",
    "HttpTransport",
    "DeliveryStrategy",
    "PerJobDelivery",
    "BatchDelivery",
    "Event",
    "EventType",
    "EntityRef",
    "JobOptions",
    "EventOptions",
    "BatchResponse",
    "BatchError",
    "DispatchMode",
    "JobState",
    "SynquerConfig",
    "load_config",
    "setup_logging",
    "SynquerError",
    "ConfigurationError",
    "DeliveryError",
    "TerminalDeliveryError",
    "RetryableDeliveryError",
    "RetriesExhaustedError",
    "__version__",
]
