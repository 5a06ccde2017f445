"""TaskStore SQLite 实现

tasks 表保存每个任务的当前快照。
- 生命周期操作通过 compare_and_swap 整体替换状态/时间字段（version 检查）
- 前台编辑通过 update_fields 只更新对应列并 version + 1，不覆盖状态/时间字段
此处仅提供数据库操作，不提交事务，事务由 transaction 模块管理。
"""

from datetime import date, datetime
from typing import Any

import aiosqlite

from ..models.change import TaskFilter
from ..models.enums import TaskStatus
from ..models.task import Task

_TASK_COLUMNS = (
    "task_id",
    "room_id",
    "room_group",
    "room_exclusive",
    "scheduled_date",
    "kind",
    "capacity_code",
    "time_limit_minutes",
    "assigned_worker_id",
    "status",
    "started_at",
    "pause_started_at",
    "last_pause_ended_at",
    "total_pause_minutes",
    "finished_at",
    "actual_minutes",
    "difference_minutes",
    "issue_flag",
    "issue_ref",
    "front_desk_notes",
    "worker_notes",
    "version",
    "created_at",
    "updated_at",
)

_SELECT_TASK = f"SELECT {', '.join(_TASK_COLUMNS)} FROM tasks"

# 生命周期操作写入的列（CAS 保护）
_LIFECYCLE_COLUMNS = (
    "assigned_worker_id",
    "status",
    "started_at",
    "pause_started_at",
    "last_pause_ended_at",
    "total_pause_minutes",
    "finished_at",
    "actual_minutes",
    "difference_minutes",
    "issue_flag",
    "issue_ref",
)

# 前台/员工可直接编辑的列（不经过状态机）
EDITABLE_COLUMNS = frozenset(
    {
        "assigned_worker_id",
        "front_desk_notes",
        "worker_notes",
        "kind",
        "capacity_code",
        "time_limit_minutes",
    }
)

_DATETIME_COLUMNS = frozenset(
    {
        "started_at",
        "pause_started_at",
        "last_pause_ended_at",
        "finished_at",
        "created_at",
        "updated_at",
    }
)


def _to_db(column: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task, idempotency_key: str | None = None) -> None:
        """插入任务记录（违反准入唯一索引时抛出 aiosqlite.IntegrityError）"""
        columns = (*_TASK_COLUMNS, "idempotency_key")
        placeholders = ", ".join("?" for _ in columns)
        values = [_to_db(c, getattr(task, c)) for c in _TASK_COLUMNS]
        values.append(idempotency_key)
        await self._conn.execute(
            f"INSERT INTO tasks ({', '.join(columns)}) VALUES ({placeholders})",
            values,
        )

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            f"{_SELECT_TASK} WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def get_task_by_idempotency_key(self, key: str) -> Task | None:
        """按创建幂等键查询任务"""
        cursor = await self._conn.execute(
            f"{_SELECT_TASK} WHERE idempotency_key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(
        self,
        scheduled_date: date | None = None,
        task_filter: TaskFilter | None = None,
    ) -> list[Task]:
        """查询任务列表，按日期 + 筛选条件过滤，按 created_at 正序"""
        clauses: list[str] = []
        params: list[Any] = []
        if scheduled_date is not None:
            clauses.append("scheduled_date = ?")
            params.append(scheduled_date.isoformat())
        if task_filter is not None:
            if task_filter.statuses is not None:
                if not task_filter.statuses:
                    return []
                marks = ", ".join("?" for _ in task_filter.statuses)
                clauses.append(f"status IN ({marks})")
                params.extend(s.value for s in sorted(task_filter.statuses))
            if task_filter.room_group is not None:
                clauses.append("room_group = ?")
                params.append(task_filter.room_group.value)
            if task_filter.worker_id is not None:
                clauses.append("assigned_worker_id = ?")
                params.append(task_filter.worker_id)
            if task_filter.room_id is not None:
                clauses.append("room_id = ?")
                params.append(task_filter.room_id)

        sql = _SELECT_TASK
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at ASC, task_id ASC"
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def list_worker_tasks(
        self,
        worker_id: str,
        scheduled_date: date | None = None,
    ) -> list[Task]:
        """员工分区：分配给该员工的任务"""
        return await self.list_tasks(scheduled_date, TaskFilter(worker_id=worker_id))

    async def find_open_task(self, room_id: str, scheduled_date: date) -> Task | None:
        """查询 (room_id, scheduled_date) 上的开放任务（仅独占房间）"""
        cursor = await self._conn.execute(
            f"""
            {_SELECT_TASK}
            WHERE room_id = ? AND scheduled_date = ?
              AND status <> ? AND room_exclusive = 1
            LIMIT 1
            """,
            (room_id, scheduled_date.isoformat(), TaskStatus.FINISHED.value),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def find_running_task(self, worker_id: str) -> Task | None:
        """查询员工当前 RUNNING 的任务（派生查询，不缓存）"""
        cursor = await self._conn.execute(
            f"{_SELECT_TASK} WHERE assigned_worker_id = ? AND status = ? LIMIT 1",
            (worker_id, TaskStatus.RUNNING.value),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def compare_and_swap(self, task: Task, expected_version: int) -> bool:
        """按版本号条件写入生命周期字段

        Returns:
            True 如果写入成功；False 表示版本已被其他调用方推进
        """
        assignments = ", ".join(f"{c} = ?" for c in _LIFECYCLE_COLUMNS)
        values = [_to_db(c, getattr(task, c)) for c in _LIFECYCLE_COLUMNS]
        cursor = await self._conn.execute(
            f"""
            UPDATE tasks
            SET {assignments}, version = ?, updated_at = ?
            WHERE task_id = ? AND version = ?
            """,
            (
                *values,
                task.version,
                task.updated_at.isoformat(),
                task.task_id,
                expected_version,
            ),
        )
        return cursor.rowcount == 1

    async def update_fields(
        self,
        task_id: str,
        fields: dict[str, Any],
        updated_at: datetime,
    ) -> bool:
        """字段级更新（不经过状态机），version + 1

        修改 time_limit_minutes 时在同一语句内重算已完成任务的 difference_minutes。

        Returns:
            True 如果任务存在并已更新
        """
        unknown = set(fields) - EDITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns not editable: {sorted(unknown)}")
        if not fields:
            raise ValueError("No fields to update")

        assignments: list[str] = []
        params: list[Any] = []
        for column, value in fields.items():
            assignments.append(f"{column} = ?")
            params.append(_to_db(column, value))
        if "time_limit_minutes" in fields:
            limit = _to_db("time_limit_minutes", fields["time_limit_minutes"])
            assignments.append(
                "difference_minutes = CASE WHEN status = ? AND ? IS NOT NULL "
                "THEN actual_minutes - ? ELSE NULL END"
            )
            params.extend([TaskStatus.FINISHED.value, limit, limit])

        cursor = await self._conn.execute(
            f"""
            UPDATE tasks
            SET {', '.join(assignments)}, version = version + 1, updated_at = ?
            WHERE task_id = ?
            """,
            (*params, updated_at.isoformat(), task_id),
        )
        return cursor.rowcount == 1

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        data = dict(zip(_TASK_COLUMNS, tuple(row), strict=True))
        for column in _DATETIME_COLUMNS:
            if data[column] is not None:
                data[column] = datetime.fromisoformat(data[column])
        data["scheduled_date"] = date.fromisoformat(data["scheduled_date"])
        data["room_exclusive"] = bool(data["room_exclusive"])
        data["issue_flag"] = bool(data["issue_flag"])
        return Task.model_validate(data)
