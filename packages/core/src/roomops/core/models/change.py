"""TaskChange 变更通知模型

每次提交生成一条 TaskChange：携带完整 Task 快照（而非 diff）和单调递增的 version。
task_changes 表 append-only，(task_id, version) 唯一。
"""

from datetime import date, datetime

from pydantic import BaseModel, Field

from .enums import ActorType, RoomGroup, TaskOperation, TaskStatus
from .task import Task


class TaskChange(BaseModel):
    """一次已提交的变更"""

    change_id: str = Field(description="唯一标识，ULID 格式，时间有序")
    task_id: str = Field(description="关联的 Task ID")
    version: int = Field(ge=1, description="提交后的 Task 版本号")
    ts: datetime = Field(description="提交时间")
    operation: TaskOperation = Field(description="触发本次变更的操作")
    actor_id: str = Field(description="调用方标识")
    actor_type: ActorType = Field(description="调用方类型")
    snapshot: Task = Field(description="提交后的完整 Task 快照")


class TaskFilter(BaseModel):
    """前台看板的订阅/查询筛选条件，空字段表示不过滤"""

    statuses: set[TaskStatus] | None = None
    room_group: RoomGroup | None = None
    worker_id: str | None = None
    room_id: str | None = None

    def matches(self, task: Task) -> bool:
        if self.statuses is not None and task.status not in self.statuses:
            return False
        if self.room_group is not None and task.room_group != self.room_group:
            return False
        if self.worker_id is not None and task.assigned_worker_id != self.worker_id:
            return False
        if self.room_id is not None and task.room_id != self.room_id:
            return False
        return True


def task_partition(task_id: str) -> str:
    return f"task:{task_id}"


def worker_partition(worker_id: str) -> str:
    return f"worker:{worker_id}"


def date_partition(day: date) -> str:
    return f"date:{day.isoformat()}"


def partitions_for(task: Task, previous_worker_id: str | None = None) -> list[str]:
    """计算一个快照需要投递到的全部分区

    重新分配时旧员工的分区也会收到快照，以便其设备移除该任务。
    """
    keys = [task_partition(task.task_id), date_partition(task.scheduled_date)]
    if task.assigned_worker_id:
        keys.append(worker_partition(task.assigned_worker_id))
    if previous_worker_id and previous_worker_id != task.assigned_worker_id:
        keys.append(worker_partition(previous_worker_id))
    return keys
