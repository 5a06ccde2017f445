"""SSE 变更流路由

GET /api/stream/worker/{worker_id}: 员工设备订阅（分配给该员工的任务）
GET /api/stream/date/{day}: 前台看板订阅（当天任务，可带筛选条件）
GET /api/stream/task/{task_id}: 单任务订阅，任务 FINISHED 后携带 final: true 并结束

连接流程：
1. 先注册订阅，再全量拉取分区（避免拉取与订阅之间的变更丢失）
2. 推送 snapshot 事件（分区内全部任务）
3. 实时推送 task_change 事件，按版本号去重（只推送严格更大的版本）
4. 订阅因积压被关闭时推送 resync 事件并结束，客户端应重连
5. 心跳保活
"""

import asyncio
import json
from collections.abc import AsyncGenerator
from datetime import date

from fastapi import APIRouter, Depends, Query
from roomops.core.config import SSE_HEARTBEAT_INTERVAL
from roomops.core.models import (
    TERMINAL_STATES,
    RoomGroup,
    Task,
    TaskFilter,
    TaskStatus,
    date_partition,
    task_partition,
    worker_partition,
)
from roomops.core.reconcile import SnapshotReconciler
from sse_starlette.sse import EventSourceResponse

from ..deps import get_change_hub, get_task_service
from ..errors import task_not_found_response
from ..services.change_hub import ChangeHub
from ..services.task_service import TaskService

router = APIRouter()


def _snapshot_data(partition: str, tasks: list[Task]) -> str:
    return json.dumps(
        {
            "partition": partition,
            "tasks": [t.model_dump(mode="json") for t in tasks],
        },
        ensure_ascii=False,
    )


async def partition_events(
    service: TaskService,
    change_hub: ChangeHub,
    partition: str,
    task_filter: TaskFilter | None = None,
    stop_when_terminal: bool = False,
    heartbeat_interval: float = SSE_HEARTBEAT_INTERVAL,
) -> AsyncGenerator[dict, None]:
    """分区变更流（SSE 事件字典）"""
    subscription = await change_hub.subscribe(partition, task_filter)
    reconciler = SnapshotReconciler()
    try:
        tasks = await service.list_partition(partition, task_filter)
        for task in tasks:
            reconciler.apply_snapshot(task)
            subscription.mark_visible(task.task_id)
        yield {"event": "snapshot", "data": _snapshot_data(partition, tasks)}

        if stop_when_terminal and tasks and all(
            t.status in TERMINAL_STATES for t in tasks
        ):
            return

        while True:
            try:
                change = await asyncio.wait_for(
                    subscription.get(), timeout=heartbeat_interval
                )
            except TimeoutError:
                yield {"comment": "heartbeat"}
                continue

            if change is None:
                # 积压溢出被关闭：通知客户端重新拉取
                yield {
                    "event": "resync",
                    "data": json.dumps({"partition": partition}),
                }
                return

            if not reconciler.apply(change):
                continue

            is_final = stop_when_terminal and change.snapshot.status in TERMINAL_STATES
            data = change.model_dump(mode="json")
            data["final"] = is_final
            yield {
                "id": f"{change.task_id}:{change.version}",
                "event": "task_change",
                "data": json.dumps(data, ensure_ascii=False),
            }
            if is_final:
                return
    finally:
        await change_hub.unsubscribe(subscription)


@router.get("/api/stream/worker/{worker_id}")
async def stream_worker(
    worker_id: str,
    service: TaskService = Depends(get_task_service),
    change_hub: ChangeHub = Depends(get_change_hub),
):
    """员工设备变更流"""
    return EventSourceResponse(
        partition_events(service, change_hub, worker_partition(worker_id))
    )


@router.get("/api/stream/date/{day}")
async def stream_date(
    day: date,
    status: list[TaskStatus] | None = Query(default=None, description="按状态筛选，可重复"),
    worker_id: str | None = Query(default=None),
    room_group: RoomGroup | None = Query(default=None),
    room_id: str | None = Query(default=None),
    service: TaskService = Depends(get_task_service),
    change_hub: ChangeHub = Depends(get_change_hub),
):
    """前台看板变更流"""
    task_filter = TaskFilter(
        statuses=set(status) if status else None,
        room_group=room_group,
        worker_id=worker_id,
        room_id=room_id,
    )
    return EventSourceResponse(
        partition_events(service, change_hub, date_partition(day), task_filter)
    )


@router.get("/api/stream/task/{task_id}")
async def stream_task(
    task_id: str,
    service: TaskService = Depends(get_task_service),
    change_hub: ChangeHub = Depends(get_change_hub),
):
    """单任务变更流"""
    task = await service.get_task(task_id)
    if task is None:
        return task_not_found_response(task_id)

    return EventSourceResponse(
        partition_events(
            service,
            change_hub,
            task_partition(task_id),
            stop_when_terminal=True,
        )
    )
