"""Store Protocol 接口定义

定义 TaskStore、ChangeStore、TimeLimitLookup 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
任何支持点查、(room_id, date) / 员工索引查询、版本条件更新和唯一约束的存储均可实现。
"""

from datetime import date, datetime
from typing import Any, Protocol

from ..models.change import TaskChange, TaskFilter
from ..models.enums import CapacityCode, RoomGroup, TaskKind
from ..models.task import Task


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: Task, idempotency_key: str | None = None) -> None:
        """创建任务记录（唯一约束冲突时抛出）"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        ...

    async def get_task_by_idempotency_key(self, key: str) -> Task | None:
        """按创建幂等键查询任务"""
        ...

    async def list_tasks(
        self,
        scheduled_date: date | None = None,
        task_filter: TaskFilter | None = None,
    ) -> list[Task]:
        """按日期和筛选条件查询任务"""
        ...

    async def find_open_task(self, room_id: str, scheduled_date: date) -> Task | None:
        """(room_id, date) 索引查询开放任务"""
        ...

    async def find_running_task(self, worker_id: str) -> Task | None:
        """员工索引查询 RUNNING 任务"""
        ...

    async def compare_and_swap(self, task: Task, expected_version: int) -> bool:
        """按版本号条件更新生命周期字段"""
        ...

    async def update_fields(
        self,
        task_id: str,
        fields: dict[str, Any],
        updated_at: datetime,
    ) -> bool:
        """字段级更新（不触及状态/时间字段）"""
        ...


class ChangeStore(Protocol):
    """变更日志接口

    task_changes append-only：只允许插入，不允许更新或删除。
    """

    async def append_change(self, change: TaskChange) -> None:
        """追加变更（append-only）"""
        ...

    async def get_changes_for_task(self, task_id: str) -> list[TaskChange]:
        """查询指定任务的所有变更"""
        ...

    async def get_all_changes(self) -> list[TaskChange]:
        """查询全部变更（用于重建）"""
        ...


class TimeLimitLookup(Protocol):
    """时间限额配置查询，查不到返回 None"""

    async def get_time_limit(
        self,
        room_group: RoomGroup,
        kind: TaskKind,
        capacity_code: CapacityCode,
    ) -> int | None: ...
