"""枚举定义 -- 事件类型、投递模式、Job 状态

EventType 的取值即线上协议中的 type 字段（点分命名）。
"""

from enum import StrEnum


class EventType(StrEnum):
    """事件类型 -- 取值与 ingestion API 的 type 字段一致"""

    STARTED = "job.started"
    PROGRESS = "job.event"

    # 终态事件
    DONE = "job.done"
    FAILED = "job.failed"
    SKIPPED = "job.skipped"
    REVIEW = "job.review"


# 每个 Job 有且仅有一个终态事件
TERMINAL_EVENT_TYPES: set[EventType] = {
    EventType.DONE,
    EventType.FAILED,
    EventType.SKIPPED,
    EventType.REVIEW,
}


class DispatchMode(StrEnum):
    """投递模式

    - per-job: Job 完成时一次性发送该 Job 的全部事件（适合 serverless）
    - batch: 事件进入全局缓冲区，定时或达到阈值时批量发送（适合常驻进程）
    """

    PER_JOB = "per-job"
    BATCH = "batch"


class JobState(StrEnum):
    """Job 状态机：OPEN -> COMPLETED，COMPLETED 为终态"""

    OPEN = "open"
    COMPLETED = "completed"
