"""TimeLimit 配置表 SQLite 实现

(room_group, kind, capacity_code) -> 分钟。
查不到限额不是错误，任务只是没有时间限额。
"""

import asyncio

import aiosqlite

from ..models.enums import CapacityCode, RoomGroup, TaskKind


class SqliteTimeLimitStore:
    """时间限额查询的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        self._conn = conn
        self._write_lock = write_lock or asyncio.Lock()

    async def get_time_limit(
        self,
        room_group: RoomGroup,
        kind: TaskKind,
        capacity_code: CapacityCode,
    ) -> int | None:
        cursor = await self._conn.execute(
            """
            SELECT minutes FROM time_limits
            WHERE room_group = ? AND kind = ? AND capacity_code = ?
            """,
            (room_group.value, kind.value, capacity_code.value),
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    async def set_time_limit(
        self,
        room_group: RoomGroup,
        kind: TaskKind,
        capacity_code: CapacityCode,
        minutes: int,
    ) -> None:
        """写入或覆盖限额（独立事务）"""
        async with self._write_lock:
            try:
                await self._conn.execute(
                    """
                    INSERT INTO time_limits (room_group, kind, capacity_code, minutes)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (room_group, kind, capacity_code)
                    DO UPDATE SET minutes = excluded.minutes
                    """,
                    (room_group.value, kind.value, capacity_code.value, minutes),
                )
                await self._conn.commit()
            except Exception:
                await self._conn.rollback()
                raise

    async def list_time_limits(self) -> list[tuple[RoomGroup, TaskKind, CapacityCode, int]]:
        cursor = await self._conn.execute(
            "SELECT room_group, kind, capacity_code, minutes FROM time_limits "
            "ORDER BY room_group, kind, capacity_code"
        )
        rows = await cursor.fetchall()
        return [
            (RoomGroup(r[0]), TaskKind(r[1]), CapacityCode(r[2]), r[3]) for r in rows
        ]
