"""数据模型 -- Event / JobOptions / BatchResponse

Event 一经创建不可变（data 在构造时按 JSON 快照）；线上格式使用 camelCase 字段名，
值为 None 的可选字段在序列化时整体省略，而不是输出 null。
"""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import EventType


class Event(BaseModel):
    """单条遥测事件

    同一 Job 内 timestamp 单调不减；跨 Job 不保证全局有序。
    external_id 仅出现在 Job 的第一条事件（job.started）上。
    """

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(description="所属 Job ID")
    external_id: str | None = Field(default=None, description="幂等键，仅首条事件携带")
    type: EventType = Field(description="事件类型")
    timestamp: int = Field(ge=0, description="事件时间戳（epoch 毫秒）")
    data: dict[str, Any] | None = Field(default=None, description="事件 payload")

    @field_validator("data", mode="before")
    @classmethod
    def snapshot_data(cls, v: Any) -> Any:
        """按线上格式深拷贝 payload，宿主之后修改原对象不影响已记录的事件"""
        if isinstance(v, dict):
            return json.loads(json.dumps(v, default=str))
        return v

    def to_wire(self) -> dict[str, Any]:
        """转换为 ingestion API 的请求格式

        Returns:
            {jobId, externalId?, type, timestamp, data?}
        """
        wire: dict[str, Any] = {"jobId": self.job_id}
        if self.external_id is not None:
            wire["externalId"] = self.external_id
        wire["type"] = self.type.value
        wire["timestamp"] = self.timestamp
        if self.data is not None:
            wire["data"] = self.data
        return wire


class EntityRef(BaseModel):
    """被同步的业务实体"""

    type: str = Field(description="实体类型（如 order）")
    id: str = Field(description="实体 ID")
    ref: str | None = Field(default=None, description="便于人工识别的引用（如订单号）")


class JobOptions(BaseModel):
    """创建 Job 的参数"""

    type: str = Field(description="Job 类型（如 order_sync、inventory_update）")
    entity: EntityRef | None = Field(default=None, description="被同步的实体")
    external_id: str | None = Field(
        default=None,
        description="幂等键 -- 相同 external_id 在服务端视为同一 Job",
    )
    metadata: dict[str, Any] | None = Field(default=None, description="任意附加元数据")


class EventOptions(BaseModel):
    """job.event 的参数"""

    message: str | None = None
    data: dict[str, Any] | None = None


class BatchError(BaseModel):
    """207 部分成功时单条事件的错误"""

    index: int
    error: str


class BatchResponse(BaseModel):
    """/v1/events/batch 的响应体"""

    received: int = Field(default=0, ge=0, description="服务端收到的事件数")
    processed: int = Field(default=0, ge=0, description="成功处理的事件数")
    errors: list[BatchError] = Field(default_factory=list, description="逐条错误")
