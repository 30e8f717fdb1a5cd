"""HttpTransport -- 事件批量发送（带重试与指数退避）

每次 send() 发起一次 POST /v1/events/batch，请求体携带完整事件列表。
状态码分类：
- 2xx（含 207 部分成功）: 成功
- 400 / 401: 不可重试，立即失败
- 其他状态码、超时、连接异常: 可重试
"""

import asyncio
import json
import time
from collections.abc import Awaitable, Callable, Sequence

import httpx
import structlog
from pydantic import ValidationError

from .config import REQUEST_TIMEOUT_S, SDK_VERSION
from .exceptions import (
    DeliveryError,
    RetriesExhaustedError,
    RetryableDeliveryError,
    TerminalDeliveryError,
)
from .models import BatchResponse, Event

log = structlog.get_logger()

EVENTS_BATCH_PATH = "/v1/events/batch"

# 部分成功：部分事件被拒，整体仍视为投递成功
PARTIAL_SUCCESS_STATUS = 207

# 请求非法 / 凭证无效，重试无意义
NON_RETRYABLE_STATUSES = frozenset({400, 401})

BACKOFF_BASE_MS = 1000
BACKOFF_MAX_MS = 10_000

ErrorObserver = Callable[[Exception], None]

# 超时类异常（可重试）
_TIMEOUT_ERROR_TYPES = (httpx.TimeoutException, TimeoutError)

# 网络层异常（可重试）
_CONNECTION_ERROR_TYPES = (httpx.HTTPError, ConnectionError, OSError)


def backoff_delay_ms(attempt: int) -> int:
    """第 attempt 次失败（从 0 开始）之后的等待时长（毫秒）"""
    return min(BACKOFF_BASE_MS * 2**attempt, BACKOFF_MAX_MS)


def _extract_error_detail(response: httpx.Response) -> str:
    """从 400/401 响应体中提取 error 字段，解析失败时返回 Unknown error"""
    try:
        body = response.json()
    except ValueError:
        return "Unknown error"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return "Unknown error"


class HttpTransport:
    """Synquer ingestion API 的 HTTP 传输层

    除配置外不持有跨调用的可变状态：每次 send() 使用独立的 httpx.AsyncClient。
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        max_retries: int = 3,
        disabled: bool = False,
        on_error: ErrorObserver | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """初始化传输层

        Args:
            api_key: Bearer 凭证
            base_url: API 基础 URL（末尾斜杠会被去除）
            max_retries: 首次请求之后的最大重试次数
            disabled: 为 True 时 send() 恒为空操作
            on_error: 最终失败时调用一次的观察者回调
            http_transport: 自定义 httpx transport（测试时注入 MockTransport）
            sleep: 退避等待函数（测试时注入）
        """
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._max_retries = max_retries
        self._disabled = disabled
        self._on_error = on_error
        self._http_transport = http_transport
        self._sleep = sleep

    @property
    def url(self) -> str:
        return f"{self._base_url}{EVENTS_BATCH_PATH}"

    @property
    def disabled(self) -> bool:
        return self._disabled

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
            "User-Agent": f"synquer-python/{SDK_VERSION}",
        }

    async def send(self, events: Sequence[Event]) -> BatchResponse | None:
        """发送一批事件

        Args:
            events: 待发送事件，作为单个请求体整体发送

        Returns:
            服务端返回的 BatchResponse；禁用、空批次或响应体无法解析时为 None

        Raises:
            TerminalDeliveryError: 400 / 401，不重试
            RetriesExhaustedError: 可重试失败且重试次数耗尽
        """
        if self._disabled or not events:
            return None

        # 请求体只序列化一次，所有重试复用
        body = json.dumps(
            {"events": [event.to_wire() for event in events]},
            default=str,
        ).encode("utf-8")

        max_attempts = max(self._max_retries, 0) + 1
        attempts = 0

        async with httpx.AsyncClient(
            transport=self._http_transport,
            timeout=REQUEST_TIMEOUT_S,
        ) as http_client:
            while True:
                attempts += 1
                try:
                    return await self._attempt(http_client, body, len(events))
                except TerminalDeliveryError as e:
                    log.error(
                        "transport_terminal_failure",
                        status_code=e.status_code,
                        detail=e.detail,
                        event_count=len(events),
                    )
                    self._report(e)
                    raise
                except RetryableDeliveryError as e:
                    log.warning(
                        "transport_attempt_failed",
                        attempt=attempts,
                        max_attempts=max_attempts,
                        status_code=e.status_code,
                        error=str(e),
                    )
                    # 最后一次尝试之后不再退避
                    if attempts >= max_attempts:
                        raise self._exhausted(e, attempts, len(events)) from e

                await self._sleep(backoff_delay_ms(attempts - 1) / 1000)

    def _exhausted(
        self,
        last_error: RetryableDeliveryError,
        attempts: int,
        event_count: int,
    ) -> RetriesExhaustedError:
        """构造重试耗尽异常，记录日志并通知观察者"""
        exhausted = RetriesExhaustedError(last_error, attempts=attempts)
        log.error(
            "transport_retries_exhausted",
            attempts=attempts,
            status_code=exhausted.status_code,
            error=str(last_error),
            event_count=event_count,
        )
        self._report(exhausted)
        return exhausted

    async def _attempt(
        self,
        http_client: httpx.AsyncClient,
        body: bytes,
        event_count: int,
    ) -> BatchResponse | None:
        """执行单次请求并分类结果

        Returns:
            成功时的 BatchResponse（响应体不符合格式时为 None）

        Raises:
            TerminalDeliveryError: 400 / 401
            RetryableDeliveryError: 其他非成功状态码或网络层异常
        """
        start_time = time.monotonic()
        try:
            response = await http_client.post(
                self.url,
                content=body,
                headers=self._headers(),
            )
        except _TIMEOUT_ERROR_TYPES as e:
            raise RetryableDeliveryError(
                f"Synquer request timed out after {REQUEST_TIMEOUT_S:g}s",
                original_error=e,
            ) from e
        except _CONNECTION_ERROR_TYPES as e:
            raise RetryableDeliveryError(str(e) or type(e).__name__, original_error=e) from e

        duration_ms = int((time.monotonic() - start_time) * 1000)
        status = response.status_code

        if response.is_success or status == PARTIAL_SUCCESS_STATUS:
            result = self._parse_batch_response(response)
            if status == PARTIAL_SUCCESS_STATUS:
                log.warning(
                    "transport_partial_success",
                    event_count=event_count,
                    rejected=len(result.errors) if result else None,
                    duration_ms=duration_ms,
                )
            else:
                log.debug(
                    "transport_sent",
                    event_count=event_count,
                    status_code=status,
                    duration_ms=duration_ms,
                )
            return result

        if status in NON_RETRYABLE_STATUSES:
            raise TerminalDeliveryError(status, _extract_error_detail(response))

        raise RetryableDeliveryError(f"Synquer API error {status}", status_code=status)

    @staticmethod
    def _parse_batch_response(response: httpx.Response) -> BatchResponse | None:
        try:
            return BatchResponse.model_validate(response.json())
        except (ValueError, ValidationError):
            return None

    def _report(self, error: DeliveryError) -> None:
        """通知观察者；观察者自身抛出的异常只记录日志，不影响宿主"""
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception as e:
            log.warning(
                "on_error_callback_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
