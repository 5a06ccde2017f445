"""TaskService -- 任务生命周期编排

每个变更操作的流程：
1. 获取 task 级别锁（进程内线性化同一任务的操作）
2. 读取当前快照，AdmissionGuard 快速路径检查
3. lifecycle 纯函数计算新快照（version + 1）
4. 单事务提交：版本号 CAS + 变更日志（跨进程线性化）
5. 锁内发布到 ChangeHub，保证同一任务的通知按版本顺序投递

CAS 失败（其他进程已推进版本）时重读并重新计算，最多 CAS_MAX_RETRIES 次。
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import date, datetime

import aiosqlite
import structlog
from roomops.core import lifecycle
from roomops.core.admission import AdmissionGuard
from roomops.core.clock import Clock, SystemClock
from roomops.core.config import (
    CAS_MAX_RETRIES,
    ISSUE_POLICY_FORCE_REPAIR,
    ISSUE_REF_MAX_LENGTH,
    NOTE_MAX_LENGTH,
    get_issue_policy,
    get_shared_rooms,
)
from roomops.core.errors import (
    DuplicateOpenTaskError,
    TaskNotFoundError,
    TaskVersionConflictError,
)
from roomops.core.models import (
    OPEN_STATES,
    TERMINAL_STATES,
    Actor,
    Task,
    TaskChange,
    TaskCreateRequest,
    TaskDetailsUpdate,
    TaskFilter,
    TaskOperation,
    TaskStatus,
    partitions_for,
)
from roomops.core.store import StoreGroup
from roomops.core.store.transaction import (
    commit_task_change,
    create_task_with_change,
    update_fields_with_change,
)
from roomops.core.timekeeping import elapsed_minutes
from ulid import ULID

from .change_hub import ChangeHub

log = structlog.get_logger()

# 计算新快照：返回 None 表示无需提交（幂等空操作）
Transition = Callable[[Task, datetime], Task | None]


class TaskService:
    """任务业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        change_hub: ChangeHub | None = None,
        clock: Clock | None = None,
        issue_policy: str | None = None,
        shared_rooms: frozenset[str] | None = None,
        max_retries: int = CAS_MAX_RETRIES,
    ) -> None:
        self._stores = store_group
        self._change_hub = change_hub
        self._clock = clock or SystemClock()
        self._issue_policy = issue_policy or get_issue_policy()
        self._guard = AdmissionGuard(
            store_group.task_store,
            shared_rooms if shared_rooms is not None else get_shared_rooms(),
            read_lock=store_group.write_lock,
        )
        self._max_retries = max(1, max_retries)
        self._task_locks: dict[str, asyncio.Lock] = {}
        self._task_locks_guard = asyncio.Lock()

    @property
    def guard(self) -> AdmissionGuard:
        return self._guard

    @property
    def clock(self) -> Clock:
        return self._clock

    # ------------------------------------------------------------------
    # 创建
    # ------------------------------------------------------------------

    async def create_task(
        self,
        request: TaskCreateRequest,
        actor: Actor,
    ) -> tuple[Task, bool]:
        """创建任务（前台准入请求）

        Returns:
            (task, created) -- created=False 表示幂等键命中，返回已存在的任务

        Raises:
            DuplicateOpenTaskError: 该房间当天已有开放任务
        """
        key = request.idempotency_key
        existing = await self._find_idempotent(key)
        if existing is not None:
            return existing, False

        try:
            await self._guard.ensure_room_date_open(
                request.room_id, request.scheduled_date
            )
        except DuplicateOpenTaskError:
            # 同一幂等键的并发请求可能先于本请求提交
            existing = await self._find_idempotent(key)
            if existing is not None:
                return existing, False
            raise

        time_limit = await self._stores.limit_store.get_time_limit(
            request.room_group, request.kind, request.capacity_code
        )
        now = self._clock.now()
        task = Task(
            task_id=str(ULID()),
            room_id=request.room_id,
            room_group=request.room_group,
            room_exclusive=self._guard.is_exclusive_room(request.room_id),
            scheduled_date=request.scheduled_date,
            kind=request.kind,
            capacity_code=request.capacity_code,
            time_limit_minutes=time_limit,
            assigned_worker_id=request.assigned_worker_id,
            front_desk_notes=request.front_desk_notes,
            created_at=now,
            updated_at=now,
        )
        change = self._build_change(task, TaskOperation.CREATE, actor, now)

        # 单事务写入 task + version=1 的变更记录
        try:
            await create_task_with_change(
                self._stores.conn,
                self._stores.write_lock,
                self._stores.task_store,
                self._stores.change_store,
                change,
                key,
            )
        except aiosqlite.IntegrityError as e:
            # 并发重复请求：无论先触发哪个唯一索引，都回查幂等键
            existing = await self._find_idempotent(key)
            if existing is not None:
                return existing, False
            if self._guard.is_idempotency_conflict(e):
                raise
            translated = self._guard.translate_integrity_error(e, task)
            if translated is not None:
                log.info(
                    "admission_rejected_by_constraint",
                    room_id=task.room_id,
                    scheduled_date=task.scheduled_date.isoformat(),
                    code=translated.code,
                )
                raise translated from e
            raise

        log.info(
            "task_created",
            task_id=task.task_id,
            room_id=task.room_id,
            scheduled_date=task.scheduled_date.isoformat(),
            time_limit_minutes=time_limit,
            actor_id=actor.actor_id,
        )
        await self._publish(change)
        return task, True

    # ------------------------------------------------------------------
    # 生命周期操作
    # ------------------------------------------------------------------

    async def start(
        self,
        task_id: str,
        worker_id: str,
        actor: Actor | None = None,
        now: datetime | None = None,
    ) -> Task:
        """QUEUED / NEEDS_REPAIR -> RUNNING

        同一员工重复 start 自己正在进行的任务是成功的空操作。

        Raises:
            InvalidTransitionError: 当前状态不可 start
            TaskAssignmentError: 任务已分配给其他员工
            WorkerBusyError: 该员工已有其他 RUNNING 任务
        """

        def apply(task: Task, at: datetime) -> Task | None:
            if lifecycle.is_duplicate_start(task, worker_id):
                log.info("task_start_duplicate_ignored", task_id=task_id, worker_id=worker_id)
                return None
            return lifecycle.start(task, worker_id, at)

        return await self._transition(
            task_id,
            TaskOperation.START,
            actor or Actor.worker(worker_id),
            apply,
            now=now,
            worker_id=worker_id,
        )

    async def pause(
        self,
        task_id: str,
        actor: Actor,
        now: datetime | None = None,
    ) -> Task:
        """RUNNING -> PAUSED"""
        return await self._transition(
            task_id,
            TaskOperation.PAUSE,
            actor,
            lifecycle.pause,
            now=now,
        )

    async def resume(
        self,
        task_id: str,
        worker_id: str,
        actor: Actor | None = None,
        now: datetime | None = None,
    ) -> Task:
        """PAUSED -> RUNNING，关闭当前暂停区间"""
        return await self._transition(
            task_id,
            TaskOperation.RESUME,
            actor or Actor.worker(worker_id),
            lambda task, at: lifecycle.resume(task, worker_id, at),
            now=now,
            worker_id=worker_id,
        )

    async def finish(
        self,
        task_id: str,
        actor: Actor,
        now: datetime | None = None,
    ) -> Task:
        """RUNNING / PAUSED -> FINISHED，计算 actual / difference"""
        task = await self._transition(
            task_id,
            TaskOperation.FINISH,
            actor,
            lifecycle.finish,
            now=now,
        )
        if task.status in TERMINAL_STATES:
            await self._cleanup_task_lock(task_id)
        return task

    async def flag_issue(
        self,
        task_id: str,
        issue_ref: str,
        actor: Actor,
        force_repair: bool | None = None,
        now: datetime | None = None,
    ) -> Task:
        """标记问题

        Args:
            force_repair: 是否同时进入 NEEDS_REPAIR；None 时使用配置的策略
        """
        if not issue_ref or len(issue_ref) > ISSUE_REF_MAX_LENGTH:
            raise ValueError(
                f"issue_ref must be 1..{ISSUE_REF_MAX_LENGTH} characters"
            )
        if force_repair is None:
            force_repair = self._issue_policy == ISSUE_POLICY_FORCE_REPAIR
        return await self._transition(
            task_id,
            TaskOperation.FLAG_ISSUE,
            actor,
            lambda task, at: lifecycle.flag_issue(task, issue_ref, force_repair, at),
            now=now,
        )

    # ------------------------------------------------------------------
    # 字段级编辑（不经过状态机）
    # ------------------------------------------------------------------

    async def update_details(
        self,
        task_id: str,
        update: TaskDetailsUpdate,
        actor: Actor,
    ) -> Task:
        """前台编辑：重新分配、前台备注、类型/入住配置、限额覆盖

        修改 kind / capacity_code 且未显式给出限额时，按新配置重新查询限额。
        只更新给出的列，不会覆盖并发进行中的状态流转。
        """
        fields = update.changed_fields()
        async with self._locked(task_id):
            task = await self._require_task(task_id)
            relabel = {"kind", "capacity_code"} & fields.keys()
            if relabel and "time_limit_minutes" not in fields:
                fields["time_limit_minutes"] = await self._stores.limit_store.get_time_limit(
                    task.room_group,
                    fields.get("kind", task.kind),
                    fields.get("capacity_code", task.capacity_code),
                )
            return await self._apply_fields(
                task, fields, TaskOperation.EDIT_DETAILS, actor
            )

    async def update_worker_notes(
        self,
        task_id: str,
        notes: str | None,
        actor: Actor,
    ) -> Task:
        """员工备注编辑（与前台备注互不影响）"""
        if notes is not None and len(notes) > NOTE_MAX_LENGTH:
            raise ValueError(f"worker_notes exceeds {NOTE_MAX_LENGTH} characters")
        async with self._locked(task_id):
            task = await self._require_task(task_id)
            return await self._apply_fields(
                task,
                {"worker_notes": notes},
                TaskOperation.EDIT_WORKER_NOTES,
                actor,
            )

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str) -> Task | None:
        """查询任务详情"""
        return await self._stores.task_store.get_task(task_id)

    async def get_changes(self, task_id: str) -> list[TaskChange]:
        """查询任务的变更历史（按 version 正序）"""
        return await self._stores.change_store.get_changes_for_task(task_id)

    async def list_tasks(
        self,
        scheduled_date: date | None = None,
        task_filter: TaskFilter | None = None,
    ) -> list[Task]:
        """查询任务列表"""
        return await self._stores.task_store.list_tasks(scheduled_date, task_filter)

    async def list_worker_tasks(
        self,
        worker_id: str,
        scheduled_date: date | None = None,
    ) -> list[Task]:
        return await self._stores.task_store.list_worker_tasks(worker_id, scheduled_date)

    async def list_partition(
        self,
        partition: str,
        task_filter: TaskFilter | None = None,
    ) -> list[Task]:
        """分区全量拉取（订阅方重连后用于重新对齐）

        Args:
            partition: task:<id> / worker:<worker_id> / date:<YYYY-MM-DD>
        """
        kind, _, key = partition.partition(":")
        if kind == "task":
            task = await self.get_task(key)
            tasks = [task] if task is not None else []
        elif kind == "worker":
            tasks = await self._worker_board(key)
        elif kind == "date":
            return await self.list_tasks(date.fromisoformat(key), task_filter)
        else:
            raise ValueError(f"Unknown partition: {partition}")
        if task_filter is None:
            return tasks
        return [t for t in tasks if task_filter.matches(t)]

    async def _worker_board(self, worker_id: str) -> list[Task]:
        """员工设备重连拉取：所有未完成任务 + 今天排期的任务，不含历史"""
        open_tasks = await self.list_tasks(
            task_filter=TaskFilter(worker_id=worker_id, statuses=set(OPEN_STATES))
        )
        today = await self.list_worker_tasks(worker_id, self._clock.now().date())
        merged = {t.task_id: t for t in (*open_tasks, *today)}
        return sorted(merged.values(), key=lambda t: (t.created_at, t.task_id))

    async def get_active_task(self, worker_id: str) -> Task | None:
        """员工当前 RUNNING 的任务（每次从存储派生，不缓存）"""
        return await self._stores.task_store.find_running_task(worker_id)

    def elapsed_minutes(self, task: Task) -> int:
        """截至当前时钟的有效工时"""
        return elapsed_minutes(task, self._clock.now())

    # ------------------------------------------------------------------
    # 内部实现
    # ------------------------------------------------------------------

    async def _transition(
        self,
        task_id: str,
        operation: TaskOperation,
        actor: Actor,
        apply: Transition,
        now: datetime | None = None,
        worker_id: str | None = None,
    ) -> Task:
        """锁内执行：读取 -> 准入检查 -> 计算 -> CAS 提交 -> 发布"""
        async with self._locked(task_id):
            for attempt in range(1, self._max_retries + 1):
                task = await self._require_task(task_id)
                at = now or self._clock.now()
                updated = apply(task, at)
                if updated is None:
                    return task

                if worker_id and updated.status == TaskStatus.RUNNING:
                    await self._guard.ensure_worker_idle(worker_id, task_id)

                change = self._build_change(updated, operation, actor, at)
                try:
                    await commit_task_change(
                        self._stores.conn,
                        self._stores.write_lock,
                        self._stores.task_store,
                        self._stores.change_store,
                        change,
                        expected_version=task.version,
                    )
                except TaskVersionConflictError:
                    if attempt < self._max_retries:
                        log.warning(
                            "task_cas_retry",
                            task_id=task_id,
                            operation=operation.value,
                            attempt=attempt,
                            expected_version=task.version,
                        )
                        continue
                    raise
                except aiosqlite.IntegrityError as e:
                    translated = self._guard.translate_integrity_error(e, updated)
                    if translated is not None:
                        log.info(
                            "admission_rejected_by_constraint",
                            task_id=task_id,
                            operation=operation.value,
                            code=translated.code,
                        )
                        raise translated from e
                    raise

                log.info(
                    "task_transition_committed",
                    task_id=task_id,
                    operation=operation.value,
                    from_status=task.status.value,
                    to_status=updated.status.value,
                    version=updated.version,
                    actor_id=actor.actor_id,
                )
                await self._publish(change, previous_worker_id=task.assigned_worker_id)
                return updated

        raise TaskVersionConflictError(task_id, -1)

    async def _apply_fields(
        self,
        task: Task,
        fields: dict,
        operation: TaskOperation,
        actor: Actor,
    ) -> Task:
        """字段级更新（调用方已持有 task 锁）"""
        if not fields:
            return task
        now = self._clock.now()
        try:
            change = await update_fields_with_change(
                self._stores.conn,
                self._stores.write_lock,
                self._stores.task_store,
                self._stores.change_store,
                task.task_id,
                fields,
                now,
                lambda snapshot: self._build_change(snapshot, operation, actor, now),
            )
        except aiosqlite.IntegrityError as e:
            # 把 RUNNING 任务改派给已有 RUNNING 任务的员工
            translated = self._guard.translate_integrity_error(
                e, task.model_copy(update=fields)
            )
            if translated is not None:
                raise translated from e
            raise
        if change is None:
            raise TaskNotFoundError(task.task_id)

        log.info(
            "task_fields_updated",
            task_id=task.task_id,
            operation=operation.value,
            fields=sorted(fields),
            version=change.version,
            actor_id=actor.actor_id,
        )
        await self._publish(change, previous_worker_id=task.assigned_worker_id)
        return change.snapshot

    async def _find_idempotent(self, key: str | None) -> Task | None:
        if not key:
            return None
        return await self._stores.task_store.get_task_by_idempotency_key(key)

    async def _require_task(self, task_id: str) -> Task:
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    @staticmethod
    def _build_change(
        task: Task,
        operation: TaskOperation,
        actor: Actor,
        now: datetime,
    ) -> TaskChange:
        return TaskChange(
            change_id=str(ULID()),
            task_id=task.task_id,
            version=task.version,
            ts=now,
            operation=operation,
            actor_id=actor.actor_id,
            actor_type=actor.actor_type,
            snapshot=task,
        )

    async def _publish(
        self,
        change: TaskChange,
        previous_worker_id: str | None = None,
    ) -> None:
        if self._change_hub is None:
            return
        await self._change_hub.publish(
            change, partitions_for(change.snapshot, previous_worker_id)
        )

    @asynccontextmanager
    async def _locked(self, task_id: str) -> AsyncIterator[None]:
        """持有 task 锁执行；任务不存在时不保留该锁"""
        lock = await self._get_task_lock(task_id)
        try:
            async with lock:
                yield
        except TaskNotFoundError:
            await self._cleanup_task_lock(task_id)
            raise

    async def _get_task_lock(self, task_id: str) -> asyncio.Lock:
        """获取 task 级别锁，序列化同一任务的变更"""
        async with self._task_locks_guard:
            lock = self._task_locks.get(task_id)
            if lock is None:
                lock = asyncio.Lock()
                self._task_locks[task_id] = lock
            return lock

    async def _cleanup_task_lock(self, task_id: str) -> None:
        """清理未被持有的 lock（任务终态或不存在），避免字典无限增长"""
        async with self._task_locks_guard:
            lock = self._task_locks.get(task_id)
            if lock is not None and not lock.locked():
                self._task_locks.pop(task_id, None)
