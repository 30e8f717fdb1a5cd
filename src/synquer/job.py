"""Job -- 单个被跟踪的工作单元

Job 在本地累积事件，并在终态调用（done/failed/skip/review）时
把完整事件序列交给注入的投递策略。

状态机: OPEN -> COMPLETED
- 构造时同步写入 job.started
- 终态事件有且仅有一个；写入终态事件与切换到 COMPLETED 是同一步
- COMPLETED 后的 log_event / 终态调用均为静默空操作
"""

import time
import traceback
from collections.abc import Callable
from typing import Any

import structlog

from .delivery import DeliveryStrategy
from .enums import TERMINAL_EVENT_TYPES, EventType, JobState
from .models import Event, EventOptions, JobOptions

log = structlog.get_logger()

Clock = Callable[[], int]


def now_ms() -> int:
    """当前墙钟时间（epoch 毫秒）"""
    return int(time.time() * 1000)


def _normalize_error(error: Any) -> dict[str, Any]:
    """把任意 error 规范化为 {message, stack?}"""
    if isinstance(error, BaseException):
        error_data: dict[str, Any] = {"message": str(error) or type(error).__name__}
        if error.__traceback__ is not None:
            error_data["stack"] = "".join(traceback.format_exception(error))
        return error_data
    if isinstance(error, str):
        return {"message": error}
    return {"message": str(error)}


class Job:
    """一次同步操作的遥测记录

    由 Synquer.job() 创建，不要直接实例化。
    """

    def __init__(
        self,
        job_id: str,
        options: JobOptions,
        delivery: DeliveryStrategy,
        clock: Clock | None = None,
    ) -> None:
        """
        Args:
            job_id: 进程内唯一的 Job ID
            options: Job 创建参数
            delivery: 终态时使用的投递策略
            clock: 时间源（epoch 毫秒），默认墙钟
        """
        self._id = job_id
        self._delivery = delivery
        self._clock = clock or now_ms
        self._events: list[Event] = []
        self._state = JobState.OPEN

        data: dict[str, Any] = {"jobType": options.type}
        if options.entity is not None:
            if options.entity.type:
                data["entityType"] = options.entity.type
            if options.entity.id:
                data["entityId"] = options.entity.id
            if options.entity.ref:
                data["entityRef"] = options.entity.ref
        # 空 metadata 直接省略，不序列化为 {}
        if options.metadata:
            data["metadata"] = dict(options.metadata)

        self._events.append(
            Event(
                job_id=self._id,
                external_id=options.external_id,
                type=EventType.STARTED,
                timestamp=self._timestamp(),
                data=data,
            )
        )

    @property
    def id(self) -> str:
        return self._id

    @property
    def events(self) -> tuple[Event, ...]:
        """已累积事件的只读视图"""
        return tuple(self._events)

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def completed(self) -> bool:
        """是否已进入终态（done/failed/skip/review 任一已调用）"""
        return self._state == JobState.COMPLETED

    def _timestamp(self) -> int:
        # 墙钟回拨时钳制到上一条事件，保证 Job 内单调不减
        now = self._clock()
        if self._events and now < self._events[-1].timestamp:
            return self._events[-1].timestamp
        return now

    def log_event(
        self,
        message: str | EventOptions | None = None,
        *,
        data: dict[str, Any] | None = None,
    ) -> None:
        """记录一条处理过程中的事件（job.event）

        Args:
            message: 文本消息，或 EventOptions
            data: 附加数据；与 message 同名的 key 以 data 为准

        Job 已完成时静默忽略，已完成 Job 的结果不可被修改。
        """
        if self._state == JobState.COMPLETED:
            return

        if isinstance(message, EventOptions):
            text = message.message
            extra = {**(message.data or {}), **(data or {})}
        else:
            text = message
            extra = data or {}

        payload: dict[str, Any] = {}
        if text:
            payload["message"] = text
        payload.update(extra)

        self._events.append(
            Event(
                job_id=self._id,
                type=EventType.PROGRESS,
                timestamp=self._timestamp(),
                data=payload,
            )
        )

    async def done(self, result: Any = None) -> None:
        """标记 Job 成功完成

        Args:
            result: 可选的结果数据，None 时不写入 payload
        """
        now = self._timestamp()
        data: dict[str, Any] = {}
        if result is not None:
            data["result"] = result
        data["durationMs"] = self._duration_ms(now)
        await self._complete(EventType.DONE, data, now)

    async def failed(self, error: Any) -> None:
        """标记 Job 失败

        Args:
            error: 异常对象、错误字符串或任意对象
        """
        now = self._timestamp()
        await self._complete(
            EventType.FAILED,
            {"error": _normalize_error(error), "durationMs": self._duration_ms(now)},
            now,
        )

    async def skip(self, reason: str) -> None:
        """标记 Job 被跳过"""
        await self._complete(EventType.SKIPPED, {"message": reason}, self._timestamp())

    async def review(self, reason: str) -> None:
        """标记 Job 需要人工复核"""
        await self._complete(EventType.REVIEW, {"message": reason}, self._timestamp())

    def _duration_ms(self, now: int) -> int:
        started = self._events[0] if self._events else None
        if started is None or started.type != EventType.STARTED:
            return 0
        return now - started.timestamp

    async def _complete(self, event_type: EventType, data: dict[str, Any], now: int) -> None:
        """终态共享路径：追加终态事件、切换状态、交给投递策略

        第二次及之后的终态调用（无论类型）均为空操作：
        既不追加事件，也不再次投递。
        """
        if event_type not in TERMINAL_EVENT_TYPES:
            raise ValueError(f"{event_type} is not a terminal event type")
        if self._state == JobState.COMPLETED:
            return

        self._events.append(
            Event(job_id=self._id, type=event_type, timestamp=now, data=data)
        )
        self._state = JobState.COMPLETED

        log.debug(
            "job_completed",
            job_id=self._id,
            outcome=event_type.value,
            event_count=len(self._events),
        )

        # 投递失败不在此拦截，由投递策略决定如何处理
        await self._delivery.deliver(tuple(self._events))
