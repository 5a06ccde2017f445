"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭、ChangeHub 与 TaskService 初始化、路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from roomops.core.config import (
    CHANGE_QUEUE_SIZE,
    get_db_path,
    get_issue_policy,
    get_shared_rooms,
)
from roomops.core.store import create_store_group

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import actions, health, stream, tasks
from .services.change_hub import ChangeHub
from .services.task_service import TaskService

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化存储和服务，关闭时清理连接"""
    db_path = get_db_path()
    store_group = await create_store_group(db_path)
    app.state.store_group = store_group

    change_hub = ChangeHub(queue_maxsize=CHANGE_QUEUE_SIZE)
    app.state.change_hub = change_hub

    issue_policy = get_issue_policy()
    shared_rooms = get_shared_rooms()
    app.state.task_service = TaskService(
        store_group,
        change_hub,
        issue_policy=issue_policy,
        shared_rooms=shared_rooms,
    )
    log.info(
        "task_engine_initialized",
        db_path=db_path,
        issue_policy=issue_policy,
        shared_room_count=len(shared_rooms),
    )

    yield

    # 关闭：清理数据库连接
    if getattr(app.state, "store_group", None) is not None:
        await app.state.store_group.conn.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="RoomOps Gateway",
        version="0.1.0",
        description="RoomOps 任务生命周期引擎 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging，Logging 在最外层）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    # 初始化日志
    setup_logging()
    setup_logfire(app)

    # 注册路由
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(actions.router, tags=["actions"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
