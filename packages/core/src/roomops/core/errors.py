"""任务引擎异常体系

所有异常同步返回给直接调用方，不做静默吞掉。
code 供网关映射为错误响应，recoverable 标识调用方能否通过重读状态/重试恢复。
冲突类异常（WORKER_BUSY / DUPLICATE_OPEN_TASK）是正常的并发使用结果，
消息以 "someone already ..." 形式描述。
"""


class TaskEngineError(Exception):
    """任务引擎基础异常"""

    code: str = "TASK_ENGINE_ERROR"

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重读状态或重试恢复
        """
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


class InvalidTransitionError(TaskEngineError):
    """当前状态下不允许该操作"""

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        task_id: str,
        operation: str,
        status: str,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message or f"Cannot {operation} task {task_id} while it is {status}",
            recoverable=True,
        )
        self.task_id = task_id
        self.operation = operation
        self.status = status


class TaskAssignmentError(InvalidTransitionError):
    """任务已分配给其他员工"""

    code = "TASK_ASSIGNED_ELSEWHERE"

    def __init__(
        self,
        task_id: str,
        operation: str,
        status: str,
        assigned_worker_id: str,
    ) -> None:
        super().__init__(
            task_id,
            operation,
            status,
            message=f"Someone else ({assigned_worker_id}) is already assigned to task {task_id}",
        )
        self.assigned_worker_id = assigned_worker_id


class WorkerBusyError(TaskEngineError):
    """员工已有 RUNNING 任务，不自动重试"""

    code = "WORKER_BUSY"

    def __init__(self, worker_id: str, running_task_id: str | None = None) -> None:
        super().__init__(
            f"Worker {worker_id} is already running another task",
            recoverable=False,
        )
        self.worker_id = worker_id
        self.running_task_id = running_task_id


class DuplicateOpenTaskError(TaskEngineError):
    """同房间同日已存在开放任务"""

    code = "DUPLICATE_OPEN_TASK"

    def __init__(self, room_id: str, scheduled_date: str, existing_task_id: str | None = None) -> None:
        super().__init__(
            f"Someone already created an open task for room {room_id} on {scheduled_date}",
            recoverable=False,
        )
        self.room_id = room_id
        self.scheduled_date = scheduled_date
        self.existing_task_id = existing_task_id


class TaskNotFoundError(TaskEngineError):
    """任务不存在"""

    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with id {task_id} does not exist", recoverable=False)
        self.task_id = task_id


class TaskVersionConflictError(TaskEngineError):
    """CAS 版本冲突重试耗尽"""

    code = "VERSION_CONFLICT"

    def __init__(self, task_id: str, expected_version: int) -> None:
        super().__init__(
            f"Task {task_id} was changed concurrently (expected version {expected_version})",
            recoverable=True,
        )
        self.task_id = task_id
        self.expected_version = expected_version


class StoreUnavailableError(TaskEngineError):
    """存储暂不可用（锁等待超时、I/O 失败），可退避重试"""

    code = "STORE_UNAVAILABLE"

    def __init__(self, original_error: Exception) -> None:
        super().__init__(f"Task store unavailable: {original_error}", recoverable=True)
        self.original_error = original_error
