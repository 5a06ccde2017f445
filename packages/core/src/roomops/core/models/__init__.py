"""RoomOps Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .change import (
    TaskChange,
    TaskFilter,
    date_partition,
    partitions_for,
    task_partition,
    worker_partition,
)
from .enums import (
    OPEN_STATES,
    OPERATION_SOURCES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActorType,
    CapacityCode,
    RoomGroup,
    TaskKind,
    TaskOperation,
    TaskStatus,
    operation_allowed,
    validate_transition,
)
from .requests import (
    FlagIssueRequest,
    TaskCreateRequest,
    TaskDetailsUpdate,
    WorkerActionRequest,
    WorkerNotesUpdate,
)
from .task import Actor, Task

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskOperation",
    "TaskKind",
    "CapacityCode",
    "RoomGroup",
    "ActorType",
    # 状态机
    "VALID_TRANSITIONS",
    "OPERATION_SOURCES",
    "OPEN_STATES",
    "TERMINAL_STATES",
    "validate_transition",
    "operation_allowed",
    # Task
    "Task",
    "Actor",
    # 变更通知
    "TaskChange",
    "TaskFilter",
    "task_partition",
    "worker_partition",
    "date_partition",
    "partitions_for",
    # 请求
    "TaskCreateRequest",
    "TaskDetailsUpdate",
    "WorkerNotesUpdate",
    "FlagIssueRequest",
    "WorkerActionRequest",
]
