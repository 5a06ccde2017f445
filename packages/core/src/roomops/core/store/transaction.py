"""快照 + 变更日志原子事务封装

在同一 SQLite 事务内原子提交 Task 快照更新和 task_changes 记录：
状态与派生时间字段一次写入，失败时整体回滚，
不会出现 actual_minutes 已写入而 status 仍为 RUNNING 的中间态。

共享连接上的写事务由 write_lock 串行化，避免一个协程提交另一个协程的半截写入。
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import aiosqlite

from ..errors import StoreUnavailableError, TaskVersionConflictError
from ..models.change import TaskChange
from ..models.task import Task
from .change_store import SqliteChangeStore
from .task_store import SqliteTaskStore


async def create_task_with_change(
    conn: aiosqlite.Connection,
    write_lock: asyncio.Lock,
    task_store: SqliteTaskStore,
    change_store: SqliteChangeStore,
    change: TaskChange,
    idempotency_key: str | None = None,
) -> None:
    """单事务写入新任务及其 version=1 的创建记录

    Raises:
        aiosqlite.IntegrityError: 违反准入唯一索引或幂等键约束
        StoreUnavailableError: 数据库忙或 I/O 失败
    """
    async with write_lock:
        try:
            await task_store.create_task(change.snapshot, idempotency_key)
            await change_store.append_change(change)
            await conn.commit()
        except aiosqlite.OperationalError as e:
            await conn.rollback()
            raise StoreUnavailableError(e) from e
        except Exception:
            await conn.rollback()
            raise


async def commit_task_change(
    conn: aiosqlite.Connection,
    write_lock: asyncio.Lock,
    task_store: SqliteTaskStore,
    change_store: SqliteChangeStore,
    change: TaskChange,
    expected_version: int,
) -> None:
    """按版本号 CAS 写入生命周期字段并追加变更记录

    Args:
        change: 包含新快照（snapshot.version == expected_version + 1）的变更
        expected_version: 读取时的版本号

    Raises:
        TaskVersionConflictError: 版本已被推进（调用方应重读后重试）
        aiosqlite.IntegrityError: 违反准入唯一索引
        StoreUnavailableError: 数据库忙或 I/O 失败
    """
    async with write_lock:
        try:
            swapped = await task_store.compare_and_swap(change.snapshot, expected_version)
            if not swapped:
                raise TaskVersionConflictError(change.task_id, expected_version)
            await change_store.append_change(change)
            await conn.commit()
        except aiosqlite.OperationalError as e:
            await conn.rollback()
            raise StoreUnavailableError(e) from e
        except Exception:
            await conn.rollback()
            raise


async def update_fields_with_change(
    conn: aiosqlite.Connection,
    write_lock: asyncio.Lock,
    task_store: SqliteTaskStore,
    change_store: SqliteChangeStore,
    task_id: str,
    fields: dict[str, Any],
    now: datetime,
    change_builder: Callable[[Task], TaskChange],
) -> TaskChange | None:
    """字段级更新 + 回读快照 + 追加变更记录，单事务提交

    Returns:
        提交的 TaskChange；任务不存在时返回 None
    """
    async with write_lock:
        try:
            updated = await task_store.update_fields(task_id, fields, now)
            if not updated:
                await conn.rollback()
                return None
            task = await task_store.get_task(task_id)
            if task is None:
                await conn.rollback()
                return None
            change = change_builder(task)
            await change_store.append_change(change)
            await conn.commit()
            return change
        except aiosqlite.OperationalError as e:
            await conn.rollback()
            raise StoreUnavailableError(e) from e
        except Exception:
            await conn.rollback()
            raise
