"""错误响应 -- 统一 {"error": {"code", "message"}} 格式

任务引擎异常到 HTTP 状态码的映射：
冲突类（状态不合法、员工忙、重复开放任务、版本冲突）-> 409，
任务不存在 -> 404，存储不可用 -> 503。
"""

from roomops.core.errors import (
    DuplicateOpenTaskError,
    InvalidTransitionError,
    StoreUnavailableError,
    TaskEngineError,
    TaskNotFoundError,
    TaskVersionConflictError,
    WorkerBusyError,
)
from starlette.responses import JSONResponse

_STATUS_CODES: list[tuple[type[TaskEngineError], int]] = [
    (TaskNotFoundError, 404),
    (InvalidTransitionError, 409),
    (WorkerBusyError, 409),
    (DuplicateOpenTaskError, 409),
    (TaskVersionConflictError, 409),
    (StoreUnavailableError, 503),
]


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


def engine_error_response(error: TaskEngineError) -> JSONResponse:
    """将任务引擎异常转换为错误响应"""
    status_code = 500
    for error_type, code in _STATUS_CODES:
        if isinstance(error, error_type):
            status_code = code
            break
    response = error_response(status_code, error.code, error.message)
    if isinstance(error, StoreUnavailableError):
        response.headers["Retry-After"] = "1"
    return response


def task_not_found_response(task_id: str) -> JSONResponse:
    return engine_error_response(TaskNotFoundError(task_id))
