"""Projection 重建模块

tasks 表是 task_changes 日志的物化视图：每个任务的当前快照
等于其日志中 version 最大的那条快照。
提供全量重建（rebuild_tasks）和一致性审计（audit_tasks）。
"""

import time
from collections import Counter
from dataclasses import dataclass, field

import aiosqlite
import structlog

from .models.change import TaskChange
from .models.enums import TaskStatus
from .models.task import Task
from .store.change_store import SqliteChangeStore
from .store.task_store import SqliteTaskStore

log = structlog.get_logger()


def apply_change(tasks: dict[str, Task], change: TaskChange) -> None:
    """将单条变更应用到内存快照表（只接受更高版本）

    Args:
        tasks: task_id -> Task 的映射表（会被就地修改）
        change: 要应用的变更
    """
    current = tasks.get(change.task_id)
    if current is None or change.version > current.version:
        tasks[change.task_id] = change.snapshot


async def rebuild_tasks(
    conn: aiosqlite.Connection,
    change_store: SqliteChangeStore,
    task_store: SqliteTaskStore,
) -> int:
    """从 task_changes 表重建 tasks 表

    流程：
    1. 读取所有变更（按 task_id, version 排序）
    2. 在内存中取每个任务的最新快照
    3. 保留现有的创建幂等键，清空 tasks 表
    4. 写入重建后的所有 Task

    Returns:
        处理的变更总数
    """
    start_time = time.monotonic()

    changes = await change_store.get_all_changes()
    change_count = len(changes)

    await log.ainfo("projection_rebuild_started", change_count=change_count)

    tasks: dict[str, Task] = {}
    for change in changes:
        apply_change(tasks, change)

    # 幂等键不在快照中，只能从现有行中保留
    cursor = await conn.execute(
        "SELECT task_id, idempotency_key FROM tasks WHERE idempotency_key IS NOT NULL"
    )
    keys = {row[0]: row[1] for row in await cursor.fetchall()}

    # task_changes 外键引用 tasks，重建期间临时关闭
    await conn.execute("PRAGMA foreign_keys = OFF")
    try:
        await conn.execute("DELETE FROM tasks")
        for task in tasks.values():
            await task_store.create_task(task, keys.get(task.task_id))
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
    finally:
        await conn.execute("PRAGMA foreign_keys = ON")

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    await log.ainfo(
        "projection_rebuild_completed",
        change_count=change_count,
        task_count=len(tasks),
        elapsed_ms=elapsed_ms,
    )

    return change_count


@dataclass
class AuditReport:
    """一致性审计结果，problems 为空表示通过"""

    task_count: int = 0
    change_count: int = 0
    problems: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


async def audit_tasks(
    change_store: SqliteChangeStore,
    task_store: SqliteTaskStore,
) -> AuditReport:
    """检查 tasks 快照与 task_changes 日志、准入规则是否一致"""
    tasks = await task_store.list_tasks()
    changes = await change_store.get_all_changes()
    report = AuditReport(task_count=len(tasks), change_count=len(changes))

    latest: dict[str, Task] = {}
    for change in changes:
        apply_change(latest, change)

    for task in tasks:
        logged = latest.get(task.task_id)
        if logged is None:
            report.problems.append(f"task {task.task_id} has no change log")
        elif logged.version != task.version:
            report.problems.append(
                f"task {task.task_id} is at version {task.version}, "
                f"change log at {logged.version}"
            )
        elif logged != task:
            report.problems.append(
                f"task {task.task_id} snapshot differs from change log"
            )

    for task_id in latest.keys() - {t.task_id for t in tasks}:
        report.problems.append(f"change log references missing task {task_id}")

    running = Counter(
        t.assigned_worker_id
        for t in tasks
        if t.status == TaskStatus.RUNNING and t.assigned_worker_id
    )
    for worker_id, count in running.items():
        if count > 1:
            report.problems.append(f"worker {worker_id} has {count} running tasks")

    open_rooms = Counter(
        (t.room_id, t.scheduled_date) for t in tasks if t.is_open and t.room_exclusive
    )
    for (room_id, day), count in open_rooms.items():
        if count > 1:
            report.problems.append(
                f"room {room_id} has {count} open tasks on {day.isoformat()}"
            )

    await log.ainfo(
        "projection_audit_completed",
        task_count=report.task_count,
        change_count=report.change_count,
        problem_count=len(report.problems),
    )
    return report
