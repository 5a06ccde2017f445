"""TraceMiddleware -- 为任务/员工相关请求绑定 task_id、worker_id

从路径中提取：
- /api/tasks/{task_id}/...
- /api/stream/task/{task_id}
- /api/workers/{worker_id}/... 与 /api/stream/worker/{worker_id}
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# 路径段 -> 绑定到日志上下文的键
_PATH_KEYS = {
    "tasks": "task_id",
    "task": "task_id",
    "workers": "worker_id",
    "worker": "worker_id",
}


def extract_path_context(path: str) -> dict[str, str]:
    """从请求路径中提取 task_id / worker_id"""
    context: dict[str, str] = {}
    parts = [p for p in path.split("/") if p]
    for i, part in enumerate(parts[:-1]):
        key = _PATH_KEYS.get(part)
        if key is not None and key not in context:
            context[key] = parts[i + 1]
    return context


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        context = extract_path_context(request.url.path)
        if context:
            structlog.contextvars.bind_contextvars(**context)
        return await call_next(request)
