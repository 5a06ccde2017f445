"""ChangeStore SQLite 实现

task_changes 表 append-only：只允许插入，不允许更新或删除。
每行保存一次提交后的完整快照，version 同一 task 内严格单调递增。
"""

from datetime import datetime

import aiosqlite

from ..models.change import TaskChange
from ..models.enums import ActorType, TaskOperation
from ..models.task import Task


class SqliteChangeStore:
    """ChangeStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_change(self, change: TaskChange) -> None:
        """追加变更（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            """
            INSERT INTO task_changes (change_id, task_id, version, ts, operation,
                                      actor_id, actor_type, snapshot)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                change.change_id,
                change.task_id,
                change.version,
                change.ts.isoformat(),
                change.operation.value,
                change.actor_id,
                change.actor_type.value,
                change.snapshot.model_dump_json(),
            ),
        )

    async def get_changes_for_task(self, task_id: str) -> list[TaskChange]:
        """查询指定任务的所有变更，按 version 正序"""
        cursor = await self._conn.execute(
            "SELECT * FROM task_changes WHERE task_id = ? ORDER BY version ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_change(row) for row in rows]

    async def get_latest_version(self, task_id: str) -> int:
        """获取指定任务已记录的最大 version（无记录返回 0）"""
        cursor = await self._conn.execute(
            "SELECT COALESCE(MAX(version), 0) FROM task_changes WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def get_all_changes(self) -> list[TaskChange]:
        """查询所有变更，按 task_id 和 version 排序（用于 tasks 表重建）"""
        cursor = await self._conn.execute(
            "SELECT * FROM task_changes ORDER BY task_id, version ASC"
        )
        rows = await cursor.fetchall()
        return [self._row_to_change(row) for row in rows]

    @staticmethod
    def _row_to_change(row: aiosqlite.Row) -> TaskChange:
        """将数据库行转换为 TaskChange 模型"""
        return TaskChange(
            change_id=row[0],
            task_id=row[1],
            version=row[2],
            ts=datetime.fromisoformat(row[3]),
            operation=TaskOperation(row[4]),
            actor_id=row[5],
            actor_type=ActorType(row[6]),
            snapshot=Task.model_validate_json(row[7]),
        )
