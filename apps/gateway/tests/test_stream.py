"""SSE 变更流测试

测试内容：
1. 先推送 snapshot，再推送实时 task_change
2. 按版本号去重（订阅与全量拉取之间的重复投递）
3. 积压溢出后推送 resync 并结束
4. 单任务流在 FINISHED 后携带 final 并结束
5. HTTP：已完成任务的流、任务不存在返回 404
"""

import asyncio
import json

import pytest
from roomops.core.models import Actor, TaskFilter, TaskStatus
from roomops.gateway.routes.stream import partition_events


async def _next(events) -> dict:
    return await asyncio.wait_for(anext(events), timeout=2.0)


class TestPartitionEvents:
    async def test_snapshot_then_live_change(self, service, change_hub, make_request, desk):
        task, _ = await service.create_task(make_request(assigned_worker_id="w1"), desk)
        events = partition_events(service, change_hub, "worker:w1")

        snapshot = await _next(events)
        assert snapshot["event"] == "snapshot"
        payload = json.loads(snapshot["data"])
        assert payload["partition"] == "worker:w1"
        assert [t["task_id"] for t in payload["tasks"]] == [task.task_id]
        assert change_hub.subscriber_count("worker:w1") == 1

        await service.start(task.task_id, "w1")
        live = await _next(events)
        assert live["event"] == "task_change"
        assert live["id"] == f"{task.task_id}:2"
        data = json.loads(live["data"])
        assert data["snapshot"]["status"] == "RUNNING"
        assert data["final"] is False

        await events.aclose()
        assert change_hub.subscriber_count() == 0

    async def test_stale_change_skipped(self, service, change_hub, make_request, desk):
        task, _ = await service.create_task(make_request(assigned_worker_id="w1"), desk)
        events = partition_events(service, change_hub, "worker:w1")
        await _next(events)

        # 创建时的变更在全量拉取中已包含，重复投递应被丢弃
        created = (await service.get_changes(task.task_id))[0]
        await change_hub.publish(created, ["worker:w1"])
        await service.update_worker_notes(task.task_id, "门卡失效", Actor.worker("w1"))

        live = await _next(events)
        assert live["id"] == f"{task.task_id}:2"
        await events.aclose()

    async def test_heartbeat(self, service, change_hub):
        events = partition_events(
            service, change_hub, "worker:idle", heartbeat_interval=0.01
        )
        await _next(events)
        assert await _next(events) == {"comment": "heartbeat"}
        await events.aclose()

    async def test_overflow_triggers_resync(self, service, change_hub, make_request, desk):
        task, _ = await service.create_task(make_request(assigned_worker_id="w1"), desk)
        events = partition_events(service, change_hub, "worker:w1")
        await _next(events)

        # 队列长度为 10，不消费时第 11 条变更触发溢出
        for i in range(11):
            await service.update_worker_notes(task.task_id, f"note {i}", Actor.worker("w1"))

        resync = await _next(events)
        assert resync["event"] == "resync"
        assert json.loads(resync["data"]) == {"partition": "worker:w1"}
        with pytest.raises(StopAsyncIteration):
            await _next(events)
        assert change_hub.subscriber_count() == 0

    async def test_task_stream_ends_when_finished(
        self, service, change_hub, make_request, desk, clock
    ):
        task, _ = await service.create_task(make_request(), desk)
        await service.start(task.task_id, "w1")
        events = partition_events(
            service, change_hub, f"task:{task.task_id}", stop_when_terminal=True
        )
        await _next(events)

        clock.advance(minutes=25)
        await service.finish(task.task_id, desk)
        final = await _next(events)
        data = json.loads(final["data"])
        assert data["final"] is True
        assert data["snapshot"]["actual_minutes"] == 25
        with pytest.raises(StopAsyncIteration):
            await _next(events)

    async def test_filtered_board(self, service, change_hub, make_request, desk):
        task, _ = await service.create_task(make_request(), desk)
        events = partition_events(
            service,
            change_hub,
            "date:2026-03-02",
            TaskFilter(statuses={TaskStatus.QUEUED}),
        )
        snapshot = json.loads((await _next(events))["data"])
        assert [t["task_id"] for t in snapshot["tasks"]] == [task.task_id]

        # 任务离开筛选范围：看板收到一次以便移除
        await service.start(task.task_id, "w1")
        left = json.loads((await _next(events))["data"])
        assert left["snapshot"]["status"] == "RUNNING"
        await events.aclose()


class TestStreamRoutes:
    async def test_missing_task_404(self, client):
        resp = await client.get("/api/stream/task/01JNONEXISTENT0000000000")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "TASK_NOT_FOUND"

    async def test_finished_task_stream_closes(
        self, client, service, make_request, desk, clock
    ):
        task, _ = await service.create_task(make_request(), desk)
        await service.start(task.task_id, "w1")
        clock.advance(minutes=30)
        await service.finish(task.task_id, desk)

        events_received = []
        async with client.stream("GET", f"/api/stream/task/{task.task_id}") as response:
            assert response.status_code == 200
            async for line in response.aiter_lines():
                if line.startswith("event:"):
                    events_received.append(line[len("event:"):].strip())
                elif line.startswith("data:"):
                    data = json.loads(line[len("data:"):].strip())
                    assert data["tasks"][0]["status"] == "FINISHED"

        assert events_received == ["snapshot"]
