"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、WAL 模式、磁盘空间、订阅者数量。
"""

import shutil
from pathlib import Path

import structlog
from fastapi import APIRouter, Request
from roomops.core.config import get_db_path
from roomops.core.store.sqlite_init import verify_wal_mode
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. wal_mode: WAL 模式（多进程共享数据库时需要）
    3. disk_space_mb: 数据库所在磁盘剩余空间
    4. subscribers: 当前 SSE 订阅者数量（仅信息）
    """
    checks: dict[str, object] = {}
    all_ok = True
    store_group = request.app.state.store_group

    try:
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        log.warning("ready_check_sqlite_failed", error=str(e))
        checks["sqlite"] = "unavailable"
        all_ok = False

    try:
        if await verify_wal_mode(store_group.conn):
            checks["wal_mode"] = "ok"
        else:
            checks["wal_mode"] = "disabled"
            all_ok = False
    except Exception as e:
        log.warning("ready_check_wal_failed", error=str(e))
        checks["wal_mode"] = "unavailable"
        all_ok = False

    try:
        db_dir = Path(get_db_path()).parent
        disk_usage = shutil.disk_usage(db_dir if db_dir.exists() else Path("."))
        checks["disk_space_mb"] = disk_usage.free // (1024 * 1024)
    except OSError:
        checks["disk_space_mb"] = 0
        all_ok = False

    change_hub = getattr(request.app.state, "change_hub", None)
    checks["subscribers"] = change_hub.subscriber_count() if change_hub else 0

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={"status": "ready" if all_ok else "not_ready", "checks": checks},
    )
