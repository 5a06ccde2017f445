"""枚举定义

包含 TaskStatus 状态机、TaskOperation、TaskKind、CapacityCode、RoomGroup、ActorType，
以及 VALID_TRANSITIONS 合法流转映射、OPERATION_SOURCES 操作前置状态表、
OPEN_STATES 开放状态集合和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    # 可再次 start，行为上等同于"尚未开始"
    NEEDS_REPAIR = "NEEDS_REPAIR"

    # 终态
    FINISHED = "FINISHED"


class TaskOperation(StrEnum):
    """生命周期操作（同时作为变更日志中的 operation 字段）"""

    CREATE = "create"
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    FINISH = "finish"
    FLAG_ISSUE = "flag_issue"
    # 前台字段编辑，不经过状态机
    EDIT_DETAILS = "edit_details"
    EDIT_WORKER_NOTES = "edit_worker_notes"


class TaskKind(StrEnum):
    """清扫类型（原系统字母代码）"""

    DEPARTURE = "W"
    ARRIVAL = "P"
    TRANSIT = "T"
    REFRESH = "O"
    GENERAL = "G"
    STANDARD = "S"


class CapacityCode(StrEnum):
    """入住配置标签，仅用于查询时间限额"""

    SINGLE = "1"
    SINGLE_PLUS_1 = "1+1"
    SINGLE_PLUS_2 = "1+1+1"
    DOUBLE = "2"
    DOUBLE_PLUS_1 = "2+1"
    DOUBLE_DOUBLE = "2+2"
    DOUBLE_DOUBLE_PLUS_1 = "2+2+1"
    TRIPLE_DOUBLE = "2+2+2"


class RoomGroup(StrEnum):
    """房间分组"""

    P1 = "P1"
    P2 = "P2"
    A1S = "A1S"
    A2S = "A2S"
    OTHER = "OTHER"


class ActorType(StrEnum):
    """操作者类型"""

    WORKER = "worker"
    FRONT_DESK = "front_desk"
    ADMIN = "admin"
    SYSTEM = "system"


VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.QUEUED: {TaskStatus.RUNNING, TaskStatus.NEEDS_REPAIR},
    TaskStatus.RUNNING: {
        TaskStatus.PAUSED,
        TaskStatus.FINISHED,
        TaskStatus.NEEDS_REPAIR,
    },
    TaskStatus.PAUSED: {
        TaskStatus.RUNNING,
        TaskStatus.FINISHED,
        TaskStatus.NEEDS_REPAIR,
    },
    TaskStatus.NEEDS_REPAIR: {TaskStatus.RUNNING},
    # 终态不可再流转
    TaskStatus.FINISHED: set(),
}

# 每个操作允许的当前状态
OPERATION_SOURCES: dict[TaskOperation, frozenset[TaskStatus]] = {
    TaskOperation.START: frozenset({TaskStatus.QUEUED, TaskStatus.NEEDS_REPAIR}),
    TaskOperation.PAUSE: frozenset({TaskStatus.RUNNING}),
    TaskOperation.RESUME: frozenset({TaskStatus.PAUSED}),
    TaskOperation.FINISH: frozenset({TaskStatus.RUNNING, TaskStatus.PAUSED}),
    TaskOperation.FLAG_ISSUE: frozenset(
        {
            TaskStatus.QUEUED,
            TaskStatus.RUNNING,
            TaskStatus.PAUSED,
            TaskStatus.NEEDS_REPAIR,
        }
    ),
}

OPEN_STATES: frozenset[TaskStatus] = frozenset(
    {
        TaskStatus.QUEUED,
        TaskStatus.RUNNING,
        TaskStatus.PAUSED,
        TaskStatus.NEEDS_REPAIR,
    }
)

TERMINAL_STATES: frozenset[TaskStatus] = frozenset({TaskStatus.FINISHED})


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed


def operation_allowed(operation: TaskOperation, status: TaskStatus) -> bool:
    """判断操作在当前状态下是否可执行"""
    return status in OPERATION_SOURCES.get(operation, frozenset())
