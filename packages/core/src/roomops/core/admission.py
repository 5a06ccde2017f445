"""AdmissionGuard -- 准入控制

两条跨任务不变量：
1. 独占房间同一天仅一个开放任务（创建时检查）
2. 每个员工同一时刻仅一个 RUNNING 任务（start / resume 时检查）

此处的查询只是快速路径；先查后写在并发下天然有竞态，
真正的保证来自存储层部分唯一索引，违反时由 translate_integrity_error
转换为与快速路径相同的领域异常。

共享连接上其他协程的写事务提交前，其未提交的行对本连接可见；
快速路径查询与写事务共用 read_lock（即 StoreGroup.write_lock），
只读取已提交的状态。
"""

import asyncio
from datetime import date

import aiosqlite
import structlog

from .errors import DuplicateOpenTaskError, TaskEngineError, WorkerBusyError
from .models.task import Task
from .store.protocols import TaskStore

log = structlog.get_logger()

# SQLite 唯一约束报错中的列清单
_ROOM_DATE_CONSTRAINT = "tasks.room_id, tasks.scheduled_date"
_RUNNING_WORKER_CONSTRAINT = "tasks.assigned_worker_id"
_IDEMPOTENCY_CONSTRAINT = "tasks.idempotency_key"


class AdmissionGuard:
    """准入检查"""

    def __init__(
        self,
        task_store: TaskStore,
        shared_rooms: frozenset[str] = frozenset(),
        read_lock: asyncio.Lock | None = None,
    ) -> None:
        self._task_store = task_store
        self._shared_rooms = shared_rooms
        self._read_lock = read_lock or asyncio.Lock()

    def is_exclusive_room(self, room_id: str) -> bool:
        """共享房间（洗衣房、早餐服务等）不受 同房间同日 约束"""
        return room_id not in self._shared_rooms

    async def check_room_date_open(self, room_id: str, scheduled_date: date) -> bool:
        """True 表示可以为该 (room_id, date) 创建新任务"""
        if not self.is_exclusive_room(room_id):
            return True
        existing = await self._find_open_task(room_id, scheduled_date)
        return existing is None

    async def check_worker_idle(
        self,
        worker_id: str,
        exclude_task_id: str | None = None,
    ) -> bool:
        """True 表示该员工没有其他 RUNNING 任务"""
        running = await self._find_running_task(worker_id)
        return running is None or running.task_id == exclude_task_id

    async def ensure_room_date_open(self, room_id: str, scheduled_date: date) -> None:
        if not self.is_exclusive_room(room_id):
            return
        existing = await self._find_open_task(room_id, scheduled_date)
        if existing is not None:
            log.info(
                "admission_rejected_duplicate_open_task",
                room_id=room_id,
                scheduled_date=scheduled_date.isoformat(),
                existing_task_id=existing.task_id,
            )
            raise DuplicateOpenTaskError(
                room_id, scheduled_date.isoformat(), existing.task_id
            )

    async def ensure_worker_idle(self, worker_id: str, task_id: str) -> None:
        running = await self._find_running_task(worker_id)
        if running is not None and running.task_id != task_id:
            log.info(
                "admission_rejected_worker_busy",
                worker_id=worker_id,
                task_id=task_id,
                running_task_id=running.task_id,
            )
            raise WorkerBusyError(worker_id, running.task_id)

    async def _find_open_task(self, room_id: str, scheduled_date: date) -> Task | None:
        async with self._read_lock:
            return await self._task_store.find_open_task(room_id, scheduled_date)

    async def _find_running_task(self, worker_id: str) -> Task | None:
        async with self._read_lock:
            return await self._task_store.find_running_task(worker_id)

    @staticmethod
    def translate_integrity_error(
        error: Exception,
        task: Task,
    ) -> TaskEngineError | None:
        """将准入唯一索引冲突转换为领域异常，其他错误返回 None"""
        if not isinstance(error, aiosqlite.IntegrityError):
            return None
        text = str(error)
        if "idx_tasks_open_room_date" in text or _ROOM_DATE_CONSTRAINT in text:
            return DuplicateOpenTaskError(task.room_id, task.scheduled_date.isoformat())
        if "idx_tasks_running_worker" in text or _RUNNING_WORKER_CONSTRAINT in text:
            return WorkerBusyError(task.assigned_worker_id or "")
        return None

    @staticmethod
    def is_idempotency_conflict(error: Exception) -> bool:
        if not isinstance(error, aiosqlite.IntegrityError):
            return False
        text = str(error)
        return "idx_tasks_idempotency_key" in text or _IDEMPOTENCY_CONSTRAINT in text
