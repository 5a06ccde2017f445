"""入口请求模型

前台创建任务、前台字段编辑、员工备注编辑、问题上报的结构化输入。
"""

from datetime import date
from typing import Any

from pydantic import BaseModel, Field, model_validator

from ..config import ISSUE_REF_MAX_LENGTH, NOTE_MAX_LENGTH
from .enums import CapacityCode, RoomGroup, TaskKind


class TaskCreateRequest(BaseModel):
    """前台创建任务请求"""

    room_id: str = Field(min_length=1, description="房间 ID")
    room_group: RoomGroup = Field(default=RoomGroup.OTHER, description="房间分组")
    scheduled_date: date = Field(description="任务日期")
    kind: TaskKind = Field(description="清扫类型")
    capacity_code: CapacityCode = Field(description="入住配置标签")
    assigned_worker_id: str | None = Field(default=None, description="分配的员工")
    front_desk_notes: str | None = Field(default=None, max_length=NOTE_MAX_LENGTH)
    idempotency_key: str | None = Field(
        default=None,
        description="幂等键，重试创建时返回已存在的任务",
    )


class TaskDetailsUpdate(BaseModel):
    """前台字段编辑（不触及状态/时间字段）

    只有显式给出的字段才会被写入（model_fields_set）。
    assigned_worker_id / front_desk_notes / time_limit_minutes 可显式置空，
    kind / capacity_code 不可。
    """

    assigned_worker_id: str | None = None
    front_desk_notes: str | None = Field(default=None, max_length=NOTE_MAX_LENGTH)
    kind: TaskKind | None = None
    capacity_code: CapacityCode | None = None
    time_limit_minutes: int | None = Field(
        default=None,
        ge=0,
        description="手动覆盖时间限额",
    )

    @model_validator(mode="after")
    def _reject_null_labels(self) -> "TaskDetailsUpdate":
        for name in ("kind", "capacity_code"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changed_fields(self) -> dict[str, Any]:
        """显式给出的字段 -> 新值"""
        return {name: getattr(self, name) for name in self.model_fields_set}


class WorkerNotesUpdate(BaseModel):
    """员工备注编辑（与前台备注互不影响）"""

    worker_notes: str | None = Field(default=None, max_length=NOTE_MAX_LENGTH)


class FlagIssueRequest(BaseModel):
    """问题上报：issue_ref 由外部问题记录系统生成，引擎不校验其内容"""

    issue_ref: str = Field(min_length=1, max_length=ISSUE_REF_MAX_LENGTH)
    force_repair: bool | None = Field(
        default=None,
        description="是否同时进入 NEEDS_REPAIR，缺省时使用 ROOMOPS_ISSUE_POLICY",
    )


class WorkerActionRequest(BaseModel):
    """start / resume 请求体；worker_id 缺省为调用方自身"""

    worker_id: str | None = Field(default=None, min_length=1)
