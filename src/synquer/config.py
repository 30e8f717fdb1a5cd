"""SynquerConfig -- 客户端配置加载

默认值与构造参数一致；load_config() 从环境变量读取，
数值解析失败时记录 warning 并回退默认值，不阻塞启动。
"""

import os
from typing import Literal

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()

DEFAULT_BASE_URL = "https://api.synquer.dev"
DEFAULT_MODE = "per-job"
DEFAULT_BATCH_INTERVAL_MS = 2000
DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_RETRIES = 3

SDK_VERSION = "0.1.0"

# 单次请求超时（秒，固定值）
REQUEST_TIMEOUT_S = 10.0

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


class SynquerConfig(BaseModel):
    """Synquer 客户端配置

    环境变量:
        SYNQUER_API_KEY: API 密钥（必填）
        SYNQUER_BASE_URL: API 地址（默认 https://api.synquer.dev）
        SYNQUER_MODE: 投递模式 per-job / batch
        SYNQUER_BATCH_INTERVAL_MS: batch 模式自动 flush 间隔（毫秒）
        SYNQUER_BATCH_SIZE: batch 模式触发立即 flush 的事件数
        SYNQUER_MAX_RETRIES: 首次请求之后的最大重试次数
        SYNQUER_DISABLED: 为 true 时不发出任何网络请求
    """

    api_key: SecretStr = Field(
        default=SecretStr(""),
        description="API 密钥（如 sk_live_xxx / sk_dev_xxx）",
    )
    base_url: str = Field(default=DEFAULT_BASE_URL, description="API 基础 URL")
    mode: Literal["per-job", "batch"] = Field(
        default=DEFAULT_MODE,
        description="投递模式：per-job / batch",
    )
    batch_interval_ms: int = Field(
        default=DEFAULT_BATCH_INTERVAL_MS,
        ge=1,
        description="batch 模式自动 flush 间隔（毫秒）",
    )
    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE,
        ge=1,
        description="缓冲区达到该事件数时立即 flush",
    )
    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES,
        ge=0,
        description="首次请求之后的最大重试次数",
    )
    disabled: bool = Field(default=False, description="禁用所有网络请求（测试用）")


def _parse_int(env_var: str, value: str, fallback: int) -> int | None:
    try:
        return int(value)
    except ValueError:
        log.warning(
            "invalid_int_config",
            env_var=env_var,
            value=value,
            fallback=fallback,
        )
        return None


def _parse_bool(env_var: str, value: str) -> bool | None:
    lowered = value.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    log.warning("invalid_bool_config", env_var=env_var, value=value, fallback=False)
    return None


def load_config() -> SynquerConfig:
    """从环境变量加载 Synquer 配置

    环境变量映射:
        SYNQUER_API_KEY -> api_key
        SYNQUER_BASE_URL -> base_url
        SYNQUER_MODE -> mode
        SYNQUER_BATCH_INTERVAL_MS -> batch_interval_ms
        SYNQUER_BATCH_SIZE -> batch_size
        SYNQUER_MAX_RETRIES -> max_retries
        SYNQUER_DISABLED -> disabled

    Returns:
        SynquerConfig 实例（api_key 缺失时为空，由 Synquer 构造时校验）
    """
    kwargs: dict = {}

    if val := os.environ.get("SYNQUER_API_KEY"):
        kwargs["api_key"] = SecretStr(val)

    if val := os.environ.get("SYNQUER_BASE_URL"):
        kwargs["base_url"] = val

    if val := os.environ.get("SYNQUER_MODE"):
        kwargs["mode"] = val

    int_fields = {
        "SYNQUER_BATCH_INTERVAL_MS": ("batch_interval_ms", DEFAULT_BATCH_INTERVAL_MS),
        "SYNQUER_BATCH_SIZE": ("batch_size", DEFAULT_BATCH_SIZE),
        "SYNQUER_MAX_RETRIES": ("max_retries", DEFAULT_MAX_RETRIES),
    }
    for env_var, (field_name, fallback) in int_fields.items():
        if val := os.environ.get(env_var):
            parsed = _parse_int(env_var, val, fallback)
            if parsed is not None:
                kwargs[field_name] = parsed

    if (val := os.environ.get("SYNQUER_DISABLED")) is not None:
        parsed_bool = _parse_bool("SYNQUER_DISABLED", val)
        if parsed_bool is not None:
            kwargs["disabled"] = parsed_bool

    return SynquerConfig(**kwargs)
