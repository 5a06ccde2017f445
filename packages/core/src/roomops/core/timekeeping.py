"""工时计算 -- 纯函数，无 I/O

暂停时长从经过时间中扣减（而不是从测量区间中排除），
因此长时间暂停的任务 actual_minutes 可以为 0。
所有分钟数向下取整并截断为非负，以吸收设备间的时钟偏差。
"""

from datetime import datetime, timedelta

from .models.enums import TaskStatus
from .models.task import Task


def floor_minutes(delta: timedelta) -> int:
    """timedelta 向下取整为分钟（可能为负）"""
    return int(delta.total_seconds() // 60)


def close_pause(pause_started_at: datetime, now: datetime) -> int:
    """结束一个暂停区间，返回其时长（分钟，>= 0）"""
    return max(0, floor_minutes(now - pause_started_at))


def finalize(
    started_at: datetime,
    total_pause_minutes: int,
    now: datetime,
    time_limit_minutes: int | None,
) -> tuple[int, int | None]:
    """计算完成时的实际工时和超时差值

    Args:
        started_at: 任务最近一次 start 的时间
        total_pause_minutes: 已关闭暂停区间的累计分钟数
        now: 完成时间
        time_limit_minutes: 时间限额，None 表示无限额

    Returns:
        (actual_minutes, difference_minutes)；无限额时 difference 为 None
    """
    actual = max(0, floor_minutes(now - started_at) - total_pause_minutes)
    difference = actual - time_limit_minutes if time_limit_minutes is not None else None
    return actual, difference


def elapsed_minutes(task: Task, now: datetime) -> int:
    """开放任务截至 now 的有效工时（看板实时计时用）

    PAUSED 状态下当前暂停区间也计入暂停时长；FINISHED 返回 actual_minutes。
    """
    if task.status == TaskStatus.FINISHED:
        return task.actual_minutes or 0
    if task.started_at is None or task.status not in (
        TaskStatus.RUNNING,
        TaskStatus.PAUSED,
    ):
        return 0
    pause = task.total_pause_minutes
    if task.pause_started_at is not None:
        pause += close_pause(task.pause_started_at, now)
    return max(0, floor_minutes(now - task.started_at) - pause)
