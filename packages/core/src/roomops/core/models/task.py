"""Task Domain Model

tasks 表保存每个任务的当前快照，version 每次提交严格 +1。
状态/时间字段只能通过生命周期操作修改，前台编辑只触及备注和分配字段。
"""

from datetime import date, datetime

from pydantic import BaseModel, Field, model_validator

from ..config import NOTE_MAX_LENGTH
from .enums import (
    ActorType,
    CapacityCode,
    RoomGroup,
    TaskKind,
    TaskStatus,
)


class Actor(BaseModel):
    """调用方身份（鉴权由外部完成）"""

    actor_id: str = Field(min_length=1, description="调用方标识")
    actor_type: ActorType = Field(description="调用方类型")

    @classmethod
    def worker(cls, worker_id: str) -> "Actor":
        return cls(actor_id=worker_id, actor_type=ActorType.WORKER)

    @classmethod
    def system(cls) -> "Actor":
        return cls(actor_id="system", actor_type=ActorType.SYSTEM)


class Task(BaseModel):
    """Task 数据模型

    不变量（构造时校验）：
    - pause_started_at 非空 当且仅当 status == PAUSED
    - RUNNING / PAUSED / FINISHED 必须有 started_at
    - actual_minutes 非空 当且仅当 status == FINISHED
    - difference_minutes 仅在 FINISHED 且有时间限额时非空
    """

    task_id: str = Field(description="唯一标识，ULID 格式")
    room_id: str = Field(description="房间 ID（外部实体）")
    room_group: RoomGroup = Field(default=RoomGroup.OTHER, description="房间分组")
    room_exclusive: bool = Field(
        default=True,
        description="是否受 同房间同日仅一个开放任务 约束",
    )
    scheduled_date: date = Field(description="任务所属日期")
    kind: TaskKind = Field(description="清扫类型")
    capacity_code: CapacityCode = Field(description="入住配置标签")
    time_limit_minutes: int | None = Field(default=None, ge=0, description="时间限额")
    assigned_worker_id: str | None = Field(default=None, description="分配的员工")
    status: TaskStatus = Field(default=TaskStatus.QUEUED, description="当前状态")

    started_at: datetime | None = None
    pause_started_at: datetime | None = None
    last_pause_ended_at: datetime | None = None
    total_pause_minutes: int = Field(default=0, ge=0)
    finished_at: datetime | None = None
    actual_minutes: int | None = Field(default=None, ge=0)
    difference_minutes: int | None = None

    issue_flag: bool = False
    issue_ref: str | None = None

    front_desk_notes: str | None = Field(default=None, max_length=NOTE_MAX_LENGTH)
    worker_notes: str | None = Field(default=None, max_length=NOTE_MAX_LENGTH)

    version: int = Field(default=1, ge=1, description="快照版本号")
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _check_invariants(self) -> "Task":
        if (self.status == TaskStatus.PAUSED) != (self.pause_started_at is not None):
            raise ValueError("pause_started_at must be set iff status is PAUSED")
        if (
            self.status in (TaskStatus.RUNNING, TaskStatus.PAUSED, TaskStatus.FINISHED)
            and self.started_at is None
        ):
            raise ValueError(f"started_at is required for status {self.status}")
        finished = self.status == TaskStatus.FINISHED
        if finished != (self.actual_minutes is not None):
            raise ValueError("actual_minutes must be set iff status is FINISHED")
        if self.difference_minutes is not None and not (
            finished and self.time_limit_minutes is not None
        ):
            raise ValueError(
                "difference_minutes requires a FINISHED task with a time limit"
            )
        return self

    @property
    def is_open(self) -> bool:
        return self.status != TaskStatus.FINISHED
