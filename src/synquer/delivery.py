"""投递策略 -- Job 完成后事件的去向

Synquer 按投递模式为每个 Job 构造一个策略对象：
- PerJobDelivery: 立即通过 HttpTransport 发送，失败在内部消化
- BatchDelivery: 追加到 Synquer 的全局缓冲区，由 flush 调度发送
"""

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

import structlog

from .models import Event
from .transport import HttpTransport

if TYPE_CHECKING:
    from .client import Synquer

log = structlog.get_logger()


class DeliveryStrategy(Protocol):
    """Job 终态调用时使用的投递接口"""

    async def deliver(self, events: Sequence[Event]) -> None: ...


class PerJobDelivery:
    """per-job 模式：Job 完成时一次性发送该 Job 的全部事件

    deliver() 不向调用方抛出异常：传输层已在最终失败时通知 on_error，
    此处只记录日志。遥测失败不能中断宿主的 await job.done()。
    """

    def __init__(self, transport: HttpTransport) -> None:
        self._transport = transport

    async def deliver(self, events: Sequence[Event]) -> None:
        try:
            await self._transport.send(events)
        except Exception as e:
            log.warning(
                "per_job_delivery_dropped",
                job_id=events[0].job_id if events else None,
                event_count=len(events),
                error=str(e),
                error_type=type(e).__name__,
            )


class BatchDelivery:
    """batch 模式：把 Job 的事件交给 Synquer 的全局缓冲区"""

    def __init__(self, client: "Synquer") -> None:
        self._client = client

    async def deliver(self, events: Sequence[Event]) -> None:
        await self._client.enqueue(events)
