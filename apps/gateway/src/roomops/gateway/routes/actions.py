"""任务生命周期操作路由

POST /api/tasks/{task_id}/start       QUEUED / NEEDS_REPAIR -> RUNNING
POST /api/tasks/{task_id}/pause       RUNNING -> PAUSED
POST /api/tasks/{task_id}/resume      PAUSED -> RUNNING
POST /api/tasks/{task_id}/finish      RUNNING / PAUSED -> FINISHED
POST /api/tasks/{task_id}/flag-issue  标记问题（可选进入 NEEDS_REPAIR）

- 200: 操作成功，返回最新快照
- 404: 任务不存在
- 409: 状态不合法 / 员工已有 RUNNING 任务 / 任务已分配给其他员工
"""

from fastapi import APIRouter, Depends
from roomops.core.errors import TaskEngineError
from roomops.core.models import Actor, FlagIssueRequest, WorkerActionRequest

from ..deps import get_actor, get_task_service
from ..errors import engine_error_response, error_response
from ..services.task_service import TaskService

router = APIRouter()


@router.post("/api/tasks/{task_id}/start")
async def start_task(
    task_id: str,
    body: WorkerActionRequest | None = None,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """开始任务；同一员工重复 start 返回当前快照"""
    worker_id = (body.worker_id if body else None) or actor.actor_id
    try:
        task = await service.start(task_id, worker_id, actor)
    except TaskEngineError as e:
        return engine_error_response(e)
    return {"task": task.model_dump(mode="json")}


@router.post("/api/tasks/{task_id}/pause")
async def pause_task(
    task_id: str,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    try:
        task = await service.pause(task_id, actor)
    except TaskEngineError as e:
        return engine_error_response(e)
    return {"task": task.model_dump(mode="json")}


@router.post("/api/tasks/{task_id}/resume")
async def resume_task(
    task_id: str,
    body: WorkerActionRequest | None = None,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    worker_id = (body.worker_id if body else None) or actor.actor_id
    try:
        task = await service.resume(task_id, worker_id, actor)
    except TaskEngineError as e:
        return engine_error_response(e)
    return {"task": task.model_dump(mode="json")}


@router.post("/api/tasks/{task_id}/finish")
async def finish_task(
    task_id: str,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """完成任务，返回 actual_minutes / difference_minutes"""
    try:
        task = await service.finish(task_id, actor)
    except TaskEngineError as e:
        return engine_error_response(e)
    return {"task": task.model_dump(mode="json")}


@router.post("/api/tasks/{task_id}/flag-issue")
async def flag_issue(
    task_id: str,
    body: FlagIssueRequest,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """标记问题，issue_ref 指向外部问题记录"""
    try:
        task = await service.flag_issue(
            task_id, body.issue_ref, actor, force_repair=body.force_repair
        )
    except TaskEngineError as e:
        return engine_error_response(e)
    except ValueError as e:
        return error_response(422, "INVALID_ISSUE_REF", str(e))
    return {"task": task.model_dump(mode="json")}
