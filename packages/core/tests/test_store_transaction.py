"""快照 + 变更日志原子事务测试

测试内容：
1. 创建任务与 version=1 变更记录同一事务提交
2. CAS 失败抛出 TaskVersionConflictError 且不留下半截写入
3. 变更日志写入失败时快照回滚（不会出现 actual_minutes 已写入而状态仍为 RUNNING）
4. 字段级更新回读快照并记录变更
5. 时间限额配置读写
"""

import aiosqlite
import pytest
from roomops.core import lifecycle
from roomops.core.errors import StoreUnavailableError, TaskVersionConflictError
from roomops.core.models import (
    ActorType,
    CapacityCode,
    RoomGroup,
    Task,
    TaskChange,
    TaskKind,
    TaskOperation,
    TaskStatus,
)
from roomops.core.store.transaction import (
    commit_task_change,
    create_task_with_change,
    update_fields_with_change,
)
from ulid import ULID


def _change(task: Task, operation: TaskOperation, change_id: str | None = None) -> TaskChange:
    return TaskChange(
        change_id=change_id or str(ULID()),
        task_id=task.task_id,
        version=task.version,
        ts=task.updated_at,
        operation=operation,
        actor_id="w1",
        actor_type=ActorType.WORKER,
        snapshot=task,
    )


async def _create(store_group, task: Task, key: str | None = None) -> None:
    await create_task_with_change(
        store_group.conn,
        store_group.write_lock,
        store_group.task_store,
        store_group.change_store,
        _change(task, TaskOperation.CREATE),
        key,
    )


async def _commit(store_group, change: TaskChange, expected_version: int) -> None:
    await commit_task_change(
        store_group.conn,
        store_group.write_lock,
        store_group.task_store,
        store_group.change_store,
        change,
        expected_version,
    )


class TestCreateTaskWithChange:
    async def test_task_and_change_written(self, store_group, make_task):
        task = make_task()
        await _create(store_group, task)
        assert await store_group.task_store.get_task(task.task_id) == task
        changes = await store_group.change_store.get_changes_for_task(task.task_id)
        assert [c.version for c in changes] == [1]
        assert changes[0].operation == TaskOperation.CREATE
        assert changes[0].snapshot == task

    async def test_constraint_violation_rolls_back(self, store_group, make_task):
        await _create(store_group, make_task(room_id="101"))
        duplicate = make_task(room_id="101")
        with pytest.raises(aiosqlite.IntegrityError):
            await _create(store_group, duplicate)
        assert await store_group.task_store.get_task(duplicate.task_id) is None
        assert await store_group.change_store.get_changes_for_task(duplicate.task_id) == []


class TestCommitTaskChange:
    async def test_commit_appends_change(self, store_group, make_task, clock):
        task = make_task()
        await _create(store_group, task)
        running = lifecycle.start(task, "w1", clock.advance(minutes=1))
        await _commit(store_group, _change(running, TaskOperation.START), task.version)

        loaded = await store_group.task_store.get_task(task.task_id)
        assert loaded == running
        assert await store_group.change_store.get_latest_version(task.task_id) == 2

    async def test_version_conflict(self, store_group, make_task, clock):
        task = make_task()
        await _create(store_group, task)
        running = lifecycle.start(task, "w1", clock.advance(minutes=1))
        await _commit(store_group, _change(running, TaskOperation.START), task.version)

        # 基于过期快照计算的变更
        stale = lifecycle.flag_issue(task, "ISS-1", True, clock.advance(minutes=1))
        with pytest.raises(TaskVersionConflictError) as exc_info:
            await _commit(store_group, _change(stale, TaskOperation.FLAG_ISSUE), task.version)
        assert exc_info.value.expected_version == task.version

        loaded = await store_group.task_store.get_task(task.task_id)
        assert loaded.status == TaskStatus.RUNNING
        assert await store_group.change_store.get_latest_version(task.task_id) == 2

    async def test_failed_change_append_rolls_back_snapshot(self, store_group, make_task, clock):
        task = make_task()
        first = _change(task, TaskOperation.CREATE)
        await create_task_with_change(
            store_group.conn,
            store_group.write_lock,
            store_group.task_store,
            store_group.change_store,
            first,
        )
        running = lifecycle.start(task, "w1", clock.advance(minutes=1))
        await _commit(store_group, _change(running, TaskOperation.START), task.version)

        finished = lifecycle.finish(running, clock.advance(minutes=30))
        # change_id 与已有记录冲突 -> 追加变更失败
        bad = _change(finished, TaskOperation.FINISH, change_id=first.change_id)
        with pytest.raises(aiosqlite.IntegrityError):
            await _commit(store_group, bad, running.version)

        loaded = await store_group.task_store.get_task(task.task_id)
        assert loaded.status == TaskStatus.RUNNING
        assert loaded.actual_minutes is None
        assert loaded.version == running.version

    async def test_operational_error_becomes_store_unavailable(
        self, store_group, make_task, clock, monkeypatch
    ):
        task = make_task()
        await _create(store_group, task)

        async def locked(*args, **kwargs):
            raise aiosqlite.OperationalError("database is locked")

        monkeypatch.setattr(store_group.task_store, "compare_and_swap", locked)
        running = lifecycle.start(task, "w1", clock.advance(minutes=1))
        with pytest.raises(StoreUnavailableError) as exc_info:
            await _commit(store_group, _change(running, TaskOperation.START), task.version)
        assert exc_info.value.code == "STORE_UNAVAILABLE"
        assert exc_info.value.recoverable is True


class TestUpdateFieldsWithChange:
    async def test_update_records_change(self, store_group, make_task, clock):
        task = make_task()
        await _create(store_group, task)
        now = clock.advance(minutes=2)
        change = await update_fields_with_change(
            store_group.conn,
            store_group.write_lock,
            store_group.task_store,
            store_group.change_store,
            task.task_id,
            {"worker_notes": "床垫有污渍"},
            now,
            lambda snapshot: _change(snapshot, TaskOperation.EDIT_WORKER_NOTES),
        )
        assert change is not None
        assert change.version == 2
        assert change.snapshot.worker_notes == "床垫有污渍"
        assert change.snapshot.updated_at == now
        history = await store_group.change_store.get_changes_for_task(task.task_id)
        assert [c.operation for c in history] == [
            TaskOperation.CREATE,
            TaskOperation.EDIT_WORKER_NOTES,
        ]

    async def test_missing_task_returns_none(self, store_group, clock):
        change = await update_fields_with_change(
            store_group.conn,
            store_group.write_lock,
            store_group.task_store,
            store_group.change_store,
            "missing",
            {"worker_notes": "x"},
            clock.now(),
            lambda snapshot: _change(snapshot, TaskOperation.EDIT_WORKER_NOTES),
        )
        assert change is None


class TestTimeLimitStore:
    async def test_missing_limit_is_none(self, store_group):
        limit = await store_group.limit_store.get_time_limit(
            RoomGroup.P1, TaskKind.DEPARTURE, CapacityCode.DOUBLE
        )
        assert limit is None

    async def test_set_and_overwrite(self, store_group):
        limits = store_group.limit_store
        await limits.set_time_limit(RoomGroup.P1, TaskKind.DEPARTURE, CapacityCode.DOUBLE, 45)
        await limits.set_time_limit(RoomGroup.P1, TaskKind.DEPARTURE, CapacityCode.DOUBLE, 50)
        await limits.set_time_limit(RoomGroup.A1S, TaskKind.REFRESH, CapacityCode.SINGLE, 20)
        assert (
            await limits.get_time_limit(RoomGroup.P1, TaskKind.DEPARTURE, CapacityCode.DOUBLE)
            == 50
        )
        assert await limits.list_time_limits() == [
            (RoomGroup.A1S, TaskKind.REFRESH, CapacityCode.SINGLE, 20),
            (RoomGroup.P1, TaskKind.DEPARTURE, CapacityCode.DOUBLE, 50),
        ]

    async def test_negative_limit_rejected(self, store_group):
        with pytest.raises(aiosqlite.IntegrityError):
            await store_group.limit_store.set_time_limit(
                RoomGroup.P1, TaskKind.GENERAL, CapacityCode.SINGLE, -5
            )
