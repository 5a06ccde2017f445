"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator, Callable
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from roomops.core.models import CapacityCode, RoomGroup, Task, TaskKind
from roomops.core.store import StoreGroup, create_store_group
from ulid import ULID

SCHEDULED_DATE = date(2026, 3, 2)


@pytest_asyncio.fixture
async def store_group(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """核心层 StoreGroup（临时数据库）"""
    group = await create_store_group(str(tmp_path / "sqlite" / "core_test.db"))
    yield group
    await group.conn.close()


@pytest.fixture
def make_task(clock) -> Callable[..., Task]:
    """构造 QUEUED 状态的 Task，可覆盖任意字段"""

    def factory(**overrides: Any) -> Task:
        now: datetime = overrides.pop("now", clock.now())
        data: dict[str, Any] = {
            "task_id": str(ULID()),
            "room_id": "101",
            "room_group": RoomGroup.P1,
            "scheduled_date": SCHEDULED_DATE,
            "kind": TaskKind.DEPARTURE,
            "capacity_code": CapacityCode.DOUBLE,
            "created_at": now,
            "updated_at": now,
        }
        data.update(overrides)
        return Task(**data)

    return factory
