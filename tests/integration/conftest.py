"""集成测试共享 fixture"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from roomops.core.store import create_store_group
from roomops.gateway.services.change_hub import ChangeHub
from roomops.gateway.services.task_service import TaskService


async def attach_engine(app, db_path: str, clock, issue_policy: str = "keep_status"):
    """手动初始化 app.state（ASGITransport 不触发 lifespan）"""
    store_group = await create_store_group(db_path)
    change_hub = ChangeHub()
    app.state.store_group = store_group
    app.state.change_hub = change_hub
    app.state.task_service = TaskService(
        store_group,
        change_hub,
        clock=clock,
        issue_policy=issue_policy,
        shared_rooms=frozenset({"LAUNDRY"}),
    )
    return store_group


@pytest_asyncio.fixture
async def integration_app(tmp_path: Path, clock):
    """集成测试用 FastAPI app"""
    db_path = str(tmp_path / "test.db")
    os.environ["ROOMOPS_DB_PATH"] = db_path
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from roomops.gateway.main import create_app

    app = create_app()
    store_group = await attach_engine(app, db_path, clock)

    yield app

    await store_group.conn.close()
    os.environ.pop("ROOMOPS_DB_PATH", None)
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def engine_attacher():
    """供需要多次"启动进程"的测试使用"""
    return attach_engine
