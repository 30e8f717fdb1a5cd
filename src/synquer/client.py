"""Synquer -- 客户端入口（Job 工厂 + 投递调度）

每个进程创建一个实例，通过 job() 创建 Job。

per-job 模式：Job 完成时立即发送，失败只通知 on_error，不向宿主抛出。
batch 模式：事件进入全局缓冲区，由后台定时任务或 batch_size 阈值触发 flush；
flush 失败时整批事件放回缓冲区队首，等待下一次 flush。
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import httpx
import structlog
from pydantic import SecretStr, ValidationError
from ulid import ULID

from .config import (
    DEFAULT_BASE_URL,
    DEFAULT_BATCH_INTERVAL_MS,
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MODE,
    SynquerConfig,
    load_config,
)
from .delivery import BatchDelivery, DeliveryStrategy, PerJobDelivery
from .enums import DispatchMode
from .exceptions import ConfigurationError
from .job import Clock, Job
from .models import Event, JobOptions
from .transport import ErrorObserver, HttpTransport

log = structlog.get_logger()


class Synquer:
    """Synquer 客户端

    缓冲区与 single-flight 标志只由本类的方法读写；
    BatchDelivery 通过 enqueue() 间接访问缓冲区。
    """

    def __init__(
        self,
        api_key: str | SecretStr | None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        mode: str = DEFAULT_MODE,
        batch_interval_ms: int = DEFAULT_BATCH_INTERVAL_MS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        disabled: bool = False,
        on_error: ErrorObserver | None = None,
        clock: Clock | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """初始化客户端

        Args:
            api_key: API 密钥（必填）
            base_url: API 基础 URL
            mode: 投递模式 "per-job" / "batch"
            batch_interval_ms: batch 模式自动 flush 间隔（毫秒）
            batch_size: batch 模式缓冲区达到该事件数时立即 flush
            max_retries: 首次请求之后的最大重试次数
            disabled: 为 True 时不发出任何网络请求
            on_error: 每次最终投递失败（重试耗尽或 400/401）调用一次
            clock: 时间源（epoch 毫秒），默认墙钟
            http_transport: httpx transport（测试时注入 httpx.MockTransport）
            sleep: 重试退避的等待函数

        Raises:
            ConfigurationError: api_key 缺失或参数非法
        """
        if isinstance(api_key, SecretStr):
            api_key = api_key.get_secret_value()
        if not api_key:
            raise ConfigurationError("apiKey is required")

        try:
            self._config = SynquerConfig(
                api_key=SecretStr(api_key),
                base_url=base_url.rstrip("/"),
                mode=mode,
                batch_interval_ms=batch_interval_ms,
                batch_size=batch_size,
                max_retries=max_retries,
                disabled=disabled,
            )
        except ValidationError as e:
            raise ConfigurationError(f"invalid options: {e}") from e

        self._mode = DispatchMode(self._config.mode)
        self._clock = clock
        self._transport = HttpTransport(
            api_key=api_key,
            base_url=self._config.base_url,
            max_retries=self._config.max_retries,
            disabled=self._config.disabled,
            on_error=on_error,
            http_transport=http_transport,
            sleep=sleep,
        )

        self._buffer: list[Event] = []
        self._flush_task: asyncio.Task | None = None
        self._timer_flush: asyncio.Future | None = None
        self._flushing = False
        self._shutdown_called = False

        log.debug(
            "synquer_client_initialized",
            mode=self._mode.value,
            base_url=self._config.base_url,
            disabled=self._config.disabled,
        )

    @classmethod
    def from_config(cls, config: SynquerConfig, **kwargs: Any) -> "Synquer":
        """从 SynquerConfig 构造，kwargs 透传 on_error / clock 等运行时参数"""
        return cls(
            config.api_key,
            base_url=config.base_url,
            mode=config.mode,
            batch_interval_ms=config.batch_interval_ms,
            batch_size=config.batch_size,
            max_retries=config.max_retries,
            disabled=config.disabled,
            **kwargs,
        )

    @classmethod
    def from_env(cls, **kwargs: Any) -> "Synquer":
        """从 SYNQUER_* 环境变量构造

        Raises:
            ConfigurationError: 环境变量取值非法（如 SYNQUER_MODE、SYNQUER_BATCH_SIZE=0）
        """
        try:
            config = load_config()
        except ValidationError as e:
            raise ConfigurationError(f"invalid environment configuration: {e}") from e
        return cls.from_config(config, **kwargs)

    @property
    def mode(self) -> DispatchMode:
        return self._mode

    @property
    def config(self) -> SynquerConfig:
        return self._config

    @property
    def buffer_size(self) -> int:
        """batch 模式下尚未投递的事件数"""
        return len(self._buffer)

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown_called

    def job(self, options: JobOptions | None = None, **kwargs: Any) -> Job:
        """创建一个新 Job

        Args:
            options: Job 创建参数；也可直接以关键字参数传入
                （type / entity / external_id / metadata）

        Returns:
            已写入 job.started 的 Job
        """
        if options is None:
            options = JobOptions(**kwargs)

        return Job(
            str(ULID()),
            options,
            self._delivery_for_job(),
            clock=self._clock,
        )

    def _delivery_for_job(self) -> DeliveryStrategy:
        if self._mode == DispatchMode.PER_JOB:
            return PerJobDelivery(self._transport)
        return BatchDelivery(self)

    async def enqueue(self, events: Sequence[Event]) -> None:
        """batch 模式：把一个 Job 的事件追加到全局缓冲区

        缓冲区达到 batch_size 时立即 flush 并等待其完成。
        """
        self._buffer.extend(events)
        self._ensure_flush_task()

        if len(self._buffer) >= self._config.batch_size:
            await self.flush()

    async def flush(self) -> None:
        """把缓冲区内全部事件发送到 API

        缓冲区为空或已有 flush 在进行时直接返回（不排队）。
        失败时整批放回缓冲区队首，位于 flush 期间新追加的事件之前。
        """
        # 检查、置位与摘取缓冲区之间没有 await，对并发 flush 是原子的
        if not self._buffer or self._flushing:
            return
        self._flushing = True
        batch = self._buffer
        self._buffer = []

        try:
            await self._transport.send(batch)
            log.debug("flush_completed", event_count=len(batch))
        except asyncio.CancelledError:
            self._buffer[:0] = batch
            raise
        except Exception as e:
            self._buffer[:0] = batch
            log.warning(
                "flush_failed_requeued",
                event_count=len(batch),
                buffer_size=len(self._buffer),
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            self._flushing = False

    async def shutdown(self) -> None:
        """停止定时 flush 并发送剩余事件

        幂等：第二次及之后的调用为空操作。
        """
        if self._shutdown_called:
            return
        self._shutdown_called = True

        if self._flush_task is not None:
            task = self._flush_task
            self._flush_task = None
            task.cancel()
            if not task.done():
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        # 取消定时任务只打断等待；进行中的 flush 需等其自然结束
        if self._timer_flush is not None:
            inflight = self._timer_flush
            self._timer_flush = None
            if not inflight.done():
                await inflight

        if self._buffer:
            await self.flush()

        log.debug("synquer_client_shutdown", remaining=len(self._buffer))

    async def __aenter__(self) -> "Synquer":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    def _ensure_flush_task(self) -> None:
        """首个 batch 事件到达时启动后台定时 flush

        asyncio 后台任务不会阻止事件循环退出。
        """
        if self._flush_task is not None or self._shutdown_called:
            return
        self._flush_task = asyncio.get_running_loop().create_task(
            self._flush_loop(),
            name="synquer-periodic-flush",
        )

    async def _flush_loop(self) -> None:
        interval_s = self._config.batch_interval_ms / 1000
        while True:
            await asyncio.sleep(interval_s)
            self._timer_flush = asyncio.ensure_future(self.flush())
            try:
                await asyncio.shield(self._timer_flush)
            except Exception as e:
                # 事件仍留在缓冲区，下一轮重试
                log.error(
                    "periodic_flush_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
