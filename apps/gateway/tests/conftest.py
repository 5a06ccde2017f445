"""apps/gateway 测试配置 -- FastAPI app + httpx AsyncClient + 可控时钟"""

from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from roomops.core.models import (
    Actor,
    ActorType,
    CapacityCode,
    RoomGroup,
    TaskCreateRequest,
    TaskKind,
)
from roomops.core.store import StoreGroup, create_store_group
from roomops.gateway.services.change_hub import ChangeHub
from roomops.gateway.services.task_service import TaskService


@pytest.fixture
def desk() -> Actor:
    """前台调用方"""
    return Actor(actor_id="desk-1", actor_type=ActorType.FRONT_DESK)


@pytest.fixture
def make_request() -> Callable[..., TaskCreateRequest]:
    """构造 2026-03-02 的创建请求，可覆盖任意字段"""

    def factory(room_id: str = "101", **overrides) -> TaskCreateRequest:
        data = {
            "room_id": room_id,
            "room_group": RoomGroup.P1,
            "scheduled_date": "2026-03-02",
            "kind": TaskKind.DEPARTURE,
            "capacity_code": CapacityCode.DOUBLE,
        }
        data.update(overrides)
        return TaskCreateRequest(**data)

    return factory


@pytest_asyncio.fixture
async def gateway_store_group(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    group = await create_store_group(str(tmp_path / "sqlite" / "test.db"))
    yield group
    await group.conn.close()


@pytest_asyncio.fixture
async def change_hub() -> ChangeHub:
    return ChangeHub(queue_maxsize=10)


@pytest_asyncio.fixture
async def service(gateway_store_group, change_hub, clock) -> TaskService:
    """TaskService：保持状态策略，LAUNDRY 为共享房间"""
    return TaskService(
        gateway_store_group,
        change_hub,
        clock=clock,
        issue_policy="keep_status",
        shared_rooms=frozenset({"LAUNDRY"}),
    )


@pytest_asyncio.fixture
async def app(tmp_path: Path, monkeypatch, gateway_store_group, change_hub, service):
    """创建测试用 FastAPI app 实例（绕过 lifespan，手动注入 app.state）"""
    monkeypatch.setenv("ROOMOPS_DB_PATH", str(tmp_path / "sqlite" / "test.db"))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")

    from roomops.gateway.main import create_app

    application = create_app()
    application.state.store_group = gateway_store_group
    application.state.change_hub = change_hub
    application.state.task_service = service
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
