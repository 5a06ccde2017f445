"""任务生命周期状态机 -- 纯函数，无 I/O

每个操作：校验当前状态 -> 计算新快照（version + 1）。
提交、加锁、准入检查和通知由 TaskService 负责。

    QUEUED ──start──> RUNNING ──pause──> PAUSED
       │                │  ^               │
       │                │  └────resume─────┘
       │                └──finish──> FINISHED <──finish── PAUSED
       └──flag_issue(force)──> NEEDS_REPAIR ──start──> RUNNING
"""

from datetime import datetime
from typing import Any

from .errors import InvalidTransitionError, TaskAssignmentError
from .models.enums import TaskOperation, TaskStatus, operation_allowed, validate_transition
from .models.task import Task
from .timekeeping import close_pause, finalize


def _require(task: Task, operation: TaskOperation) -> None:
    if not operation_allowed(operation, task.status):
        raise InvalidTransitionError(task.task_id, operation.value, task.status.value)


def _require_worker(task: Task, worker_id: str, operation: TaskOperation) -> None:
    if task.assigned_worker_id is not None and task.assigned_worker_id != worker_id:
        raise TaskAssignmentError(
            task.task_id,
            operation.value,
            task.status.value,
            task.assigned_worker_id,
        )


def _evolve(task: Task, operation: TaskOperation, now: datetime, **changes: Any) -> Task:
    """生成下一个版本的快照，并重新执行模型不变量校验"""
    new_status = changes.get("status", task.status)
    if new_status != task.status and not validate_transition(task.status, new_status):
        raise InvalidTransitionError(task.task_id, operation.value, task.status.value)
    data = task.model_dump()
    data.update(changes)
    data["version"] = task.version + 1
    data["updated_at"] = now
    return Task.model_validate(data)


def is_duplicate_start(task: Task, worker_id: str) -> bool:
    """同一员工对自己正在进行的任务重复 start，视为成功的空操作"""
    return task.status == TaskStatus.RUNNING and task.assigned_worker_id == worker_id


def start(task: Task, worker_id: str, now: datetime) -> Task:
    """QUEUED / NEEDS_REPAIR -> RUNNING

    维修后重新开始会丢弃之前的全部计时。未分配的任务分配给发起的员工。
    """
    _require(task, TaskOperation.START)
    _require_worker(task, worker_id, TaskOperation.START)
    return _evolve(
        task,
        TaskOperation.START,
        now,
        status=TaskStatus.RUNNING,
        assigned_worker_id=worker_id,
        started_at=now,
        pause_started_at=None,
        last_pause_ended_at=None,
        total_pause_minutes=0,
        finished_at=None,
        actual_minutes=None,
        difference_minutes=None,
    )


def pause(task: Task, now: datetime) -> Task:
    """RUNNING -> PAUSED，开启新的暂停区间"""
    _require(task, TaskOperation.PAUSE)
    return _evolve(
        task,
        TaskOperation.PAUSE,
        now,
        status=TaskStatus.PAUSED,
        pause_started_at=now,
    )


def resume(task: Task, worker_id: str, now: datetime) -> Task:
    """PAUSED -> RUNNING，关闭当前暂停区间并累加到 total_pause_minutes"""
    _require(task, TaskOperation.RESUME)
    if task.pause_started_at is None:
        raise InvalidTransitionError(
            task.task_id,
            TaskOperation.RESUME.value,
            task.status.value,
            message=f"Task {task.task_id} has no open pause interval",
        )
    _require_worker(task, worker_id, TaskOperation.RESUME)
    paused = close_pause(task.pause_started_at, now)
    return _evolve(
        task,
        TaskOperation.RESUME,
        now,
        status=TaskStatus.RUNNING,
        assigned_worker_id=worker_id,
        total_pause_minutes=task.total_pause_minutes + paused,
        pause_started_at=None,
        last_pause_ended_at=now,
    )


def finish(task: Task, now: datetime) -> Task:
    """RUNNING / PAUSED -> FINISHED

    PAUSED 时先按 resume 的规则关闭未结束的暂停区间（但不回到 RUNNING），
    再计算 actual_minutes / difference_minutes。
    """
    _require(task, TaskOperation.FINISH)
    total_pause = task.total_pause_minutes
    last_pause_ended_at = task.last_pause_ended_at
    if task.status == TaskStatus.PAUSED and task.pause_started_at is not None:
        total_pause += close_pause(task.pause_started_at, now)
        last_pause_ended_at = now

    if task.started_at is None:
        raise InvalidTransitionError(
            task.task_id,
            TaskOperation.FINISH.value,
            task.status.value,
            message=f"Task {task.task_id} has no start time",
        )
    actual, difference = finalize(
        task.started_at, total_pause, now, task.time_limit_minutes
    )
    return _evolve(
        task,
        TaskOperation.FINISH,
        now,
        status=TaskStatus.FINISHED,
        total_pause_minutes=total_pause,
        pause_started_at=None,
        last_pause_ended_at=last_pause_ended_at,
        finished_at=now,
        actual_minutes=actual,
        difference_minutes=difference,
    )


def flag_issue(
    task: Task,
    issue_ref: str,
    force_repair: bool,
    now: datetime,
) -> Task:
    """标记问题并保存外部问题记录引用

    force_repair=True 时同时进入 NEEDS_REPAIR；若任务处于 PAUSED，
    先关闭当前暂停区间，保证 pause_started_at 仅在 PAUSED 时非空。
    """
    _require(task, TaskOperation.FLAG_ISSUE)
    changes: dict[str, Any] = {"issue_flag": True, "issue_ref": issue_ref}
    if force_repair and task.status != TaskStatus.NEEDS_REPAIR:
        changes["status"] = TaskStatus.NEEDS_REPAIR
        if task.pause_started_at is not None:
            changes["total_pause_minutes"] = task.total_pause_minutes + close_pause(
                task.pause_started_at, now
            )
            changes["pause_started_at"] = None
            changes["last_pause_ended_at"] = now
    return _evolve(task, TaskOperation.FLAG_ISSUE, now, **changes)
