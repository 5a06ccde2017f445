"""任务路由

POST  /api/tasks: 前台创建任务（201；幂等键命中返回 200）
GET   /api/tasks: 任务列表，支持 date / status / worker_id / room_group / room_id 筛选
GET   /api/tasks/{task_id}: 任务详情，含变更历史
PATCH /api/tasks/{task_id}: 前台字段编辑（分配、备注、类型、限额覆盖）
PUT   /api/tasks/{task_id}/worker-notes: 员工备注
GET   /api/workers/{worker_id}/active-task: 员工当前 RUNNING 的任务
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from roomops.core.errors import TaskEngineError
from roomops.core.models import (
    Actor,
    RoomGroup,
    Task,
    TaskCreateRequest,
    TaskDetailsUpdate,
    TaskFilter,
    TaskStatus,
    WorkerNotesUpdate,
)
from starlette.responses import JSONResponse

from ..deps import get_actor, get_task_service
from ..errors import engine_error_response, error_response, task_not_found_response
from ..services.task_service import TaskService

router = APIRouter()


class TaskListResponse(BaseModel):
    """任务列表响应"""

    tasks: list[Task]


class ChangeSummary(BaseModel):
    """变更历史条目（不含快照）"""

    change_id: str
    version: int
    ts: str
    operation: str
    actor_id: str
    actor_type: str


@router.post("/api/tasks")
async def create_task(
    request: TaskCreateRequest,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """创建任务

    - 新建返回 201
    - 幂等键命中返回 200 + 已存在的任务
    - 该房间当天已有开放任务返回 409 DUPLICATE_OPEN_TASK
    """
    try:
        task, created = await service.create_task(request, actor)
    except TaskEngineError as e:
        return engine_error_response(e)

    return JSONResponse(
        status_code=201 if created else 200,
        content={"task": task.model_dump(mode="json"), "created": created},
    )


@router.get("/api/tasks", response_model=TaskListResponse)
async def list_tasks(
    scheduled_date: date | None = Query(default=None, alias="date", description="任务日期"),
    status: list[TaskStatus] | None = Query(default=None, description="按状态筛选，可重复"),
    worker_id: str | None = Query(default=None, description="按员工筛选"),
    room_group: RoomGroup | None = Query(default=None, description="按房间分组筛选"),
    room_id: str | None = Query(default=None, description="按房间筛选"),
    service: TaskService = Depends(get_task_service),
):
    """查询任务列表，按 created_at 正序"""
    task_filter = TaskFilter(
        statuses=set(status) if status else None,
        room_group=room_group,
        worker_id=worker_id,
        room_id=room_id,
    )
    tasks = await service.list_tasks(scheduled_date, task_filter)
    return TaskListResponse(tasks=tasks)


@router.get("/api/tasks/{task_id}")
async def get_task_detail(
    task_id: str,
    service: TaskService = Depends(get_task_service),
):
    """查询任务详情，包含变更历史和实时工时"""
    task = await service.get_task(task_id)
    if task is None:
        return task_not_found_response(task_id)

    changes = await service.get_changes(task_id)
    return {
        "task": task.model_dump(mode="json"),
        "elapsed_minutes": service.elapsed_minutes(task),
        "changes": [
            ChangeSummary(
                change_id=c.change_id,
                version=c.version,
                ts=c.ts.isoformat(),
                operation=c.operation.value,
                actor_id=c.actor_id,
                actor_type=c.actor_type.value,
            ).model_dump()
            for c in changes
        ],
    }


@router.patch("/api/tasks/{task_id}")
async def update_task_details(
    task_id: str,
    update: TaskDetailsUpdate,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """前台字段编辑，不触及状态/时间字段"""
    try:
        task = await service.update_details(task_id, update, actor)
    except TaskEngineError as e:
        return engine_error_response(e)
    return {"task": task.model_dump(mode="json")}


@router.put("/api/tasks/{task_id}/worker-notes")
async def update_worker_notes(
    task_id: str,
    body: WorkerNotesUpdate,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """员工备注编辑"""
    try:
        task = await service.update_worker_notes(task_id, body.worker_notes, actor)
    except TaskEngineError as e:
        return engine_error_response(e)
    except ValueError as e:
        return error_response(422, "INVALID_NOTES", str(e))
    return {"task": task.model_dump(mode="json")}


@router.get("/api/workers/{worker_id}/active-task")
async def get_active_task(
    worker_id: str,
    service: TaskService = Depends(get_task_service),
):
    """员工当前 RUNNING 的任务（没有时 task 为 null）"""
    task = await service.get_active_task(worker_id)
    return {
        "worker_id": worker_id,
        "task": task.model_dump(mode="json") if task is not None else None,
    }
