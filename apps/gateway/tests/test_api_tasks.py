"""任务 API 测试

测试内容：
1. POST /api/tasks 创建（201）、幂等（200）、重复开放任务（409）
2. GET /api/tasks 列表与筛选
3. GET /api/tasks/{task_id} 详情含变更历史
4. 生命周期操作路由与错误码映射
5. 字段编辑与员工备注
"""

from httpx import AsyncClient

DESK_HEADERS = {"X-Actor-Id": "desk-1", "X-Actor-Type": "front_desk"}
W1_HEADERS = {"X-Actor-Id": "w1"}
W2_HEADERS = {"X-Actor-Id": "w2"}


def _body(room_id: str = "101", **overrides) -> dict:
    data = {
        "room_id": room_id,
        "room_group": "P1",
        "scheduled_date": "2026-03-02",
        "kind": "W",
        "capacity_code": "2",
    }
    data.update(overrides)
    return data


async def _create(client: AsyncClient, room_id: str = "101", **overrides) -> dict:
    resp = await client.post("/api/tasks", json=_body(room_id, **overrides), headers=DESK_HEADERS)
    assert resp.status_code == 201
    return resp.json()["task"]


class TestCreate:
    async def test_create_returns_201(self, client):
        resp = await client.post(
            "/api/tasks",
            json=_body(front_desk_notes="延迟退房"),
            headers=DESK_HEADERS,
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["created"] is True
        task = data["task"]
        assert task["status"] == "QUEUED"
        assert task["version"] == 1
        assert task["front_desk_notes"] == "延迟退房"
        assert len(task["task_id"]) == 26

    async def test_idempotent_create_returns_200(self, client):
        body = _body(idempotency_key="desk-req-7")
        first = await client.post("/api/tasks", json=body, headers=DESK_HEADERS)
        second = await client.post("/api/tasks", json=body, headers=DESK_HEADERS)
        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["created"] is False
        assert second.json()["task"]["task_id"] == first.json()["task"]["task_id"]

    async def test_duplicate_open_task_409(self, client):
        await _create(client, "101")
        resp = await client.post("/api/tasks", json=_body("101"), headers=DESK_HEADERS)
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "DUPLICATE_OPEN_TASK"
        assert error["message"].startswith("Someone already")

    async def test_missing_actor_header_422(self, client):
        resp = await client.post("/api/tasks", json=_body())
        assert resp.status_code == 422

    async def test_invalid_body_422(self, client):
        resp = await client.post(
            "/api/tasks", json=_body(kind="Z"), headers=DESK_HEADERS
        )
        assert resp.status_code == 422


class TestQuery:
    async def test_list_with_filters(self, client, clock):
        first = await _create(client, "101")
        clock.advance(minutes=1)
        second = await _create(client, "201", room_group="P2")
        clock.advance(minutes=1)
        await _create(client, "101", scheduled_date="2026-03-03")

        resp = await client.get("/api/tasks", params={"date": "2026-03-02"})
        assert resp.status_code == 200
        ids = [t["task_id"] for t in resp.json()["tasks"]]
        assert ids == [first["task_id"], second["task_id"]]

        resp = await client.get("/api/tasks", params={"room_group": "P2"})
        assert [t["task_id"] for t in resp.json()["tasks"]] == [second["task_id"]]

        await client.post(f"/api/tasks/{first['task_id']}/start", headers=W1_HEADERS)
        resp = await client.get(
            "/api/tasks", params=[("status", "RUNNING"), ("status", "PAUSED")]
        )
        assert [t["task_id"] for t in resp.json()["tasks"]] == [first["task_id"]]

        resp = await client.get("/api/tasks", params={"worker_id": "w1"})
        assert len(resp.json()["tasks"]) == 1

    async def test_detail_includes_history(self, client, clock):
        task = await _create(client)
        await client.post(f"/api/tasks/{task['task_id']}/start", headers=W1_HEADERS)
        clock.advance(minutes=12)

        resp = await client.get(f"/api/tasks/{task['task_id']}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["task"]["status"] == "RUNNING"
        assert data["elapsed_minutes"] == 12
        assert [c["operation"] for c in data["changes"]] == ["create", "start"]
        assert data["changes"][1]["actor_id"] == "w1"
        assert "snapshot" not in data["changes"][0]

    async def test_detail_404(self, client):
        resp = await client.get("/api/tasks/missing")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "TASK_NOT_FOUND"

    async def test_active_task(self, client):
        task = await _create(client)
        resp = await client.get("/api/workers/w1/active-task")
        assert resp.json() == {"worker_id": "w1", "task": None}

        await client.post(f"/api/tasks/{task['task_id']}/start", headers=W1_HEADERS)
        resp = await client.get("/api/workers/w1/active-task")
        assert resp.json()["task"]["task_id"] == task["task_id"]


class TestActions:
    async def test_full_lifecycle(self, client, clock):
        task_id = (await _create(client))["task_id"]

        resp = await client.post(f"/api/tasks/{task_id}/start", headers=W1_HEADERS)
        assert resp.status_code == 200
        assert resp.json()["task"]["assigned_worker_id"] == "w1"

        clock.advance(minutes=10)
        resp = await client.post(f"/api/tasks/{task_id}/pause", headers=W1_HEADERS)
        assert resp.json()["task"]["status"] == "PAUSED"

        clock.advance(minutes=4)
        resp = await client.post(f"/api/tasks/{task_id}/resume", headers=W1_HEADERS)
        assert resp.json()["task"]["total_pause_minutes"] == 4

        clock.advance(minutes=20)
        resp = await client.post(f"/api/tasks/{task_id}/finish", headers=W1_HEADERS)
        task = resp.json()["task"]
        assert task["status"] == "FINISHED"
        assert task["actual_minutes"] == 30
        assert task["version"] == 5

    async def test_start_on_behalf_of_worker(self, client):
        task_id = (await _create(client))["task_id"]
        resp = await client.post(
            f"/api/tasks/{task_id}/start",
            json={"worker_id": "w7"},
            headers=DESK_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["task"]["assigned_worker_id"] == "w7"

    async def test_duplicate_start_returns_current(self, client):
        task_id = (await _create(client))["task_id"]
        first = await client.post(f"/api/tasks/{task_id}/start", headers=W1_HEADERS)
        again = await client.post(f"/api/tasks/{task_id}/start", headers=W1_HEADERS)
        assert again.status_code == 200
        assert again.json()["task"]["version"] == first.json()["task"]["version"]

    async def test_conflicts_are_409(self, client):
        first = (await _create(client, "101"))["task_id"]
        second = (await _create(client, "102"))["task_id"]
        await client.post(f"/api/tasks/{first}/start", headers=W1_HEADERS)

        resp = await client.post(f"/api/tasks/{second}/start", headers=W1_HEADERS)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "WORKER_BUSY"

        resp = await client.post(f"/api/tasks/{first}/start", headers=W2_HEADERS)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INVALID_TRANSITION"

        assigned = (await _create(client, "103", assigned_worker_id="w1"))["task_id"]
        resp = await client.post(f"/api/tasks/{assigned}/start", headers=W2_HEADERS)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "TASK_ASSIGNED_ELSEWHERE"

        resp = await client.post(f"/api/tasks/{second}/pause", headers=W1_HEADERS)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INVALID_TRANSITION"

    async def test_action_on_missing_task_404(self, client):
        resp = await client.post("/api/tasks/missing/finish", headers=W1_HEADERS)
        assert resp.status_code == 404

    async def test_flag_issue(self, client):
        task_id = (await _create(client))["task_id"]
        resp = await client.post(
            f"/api/tasks/{task_id}/flag-issue",
            json={"issue_ref": "MAINT-42"},
            headers=W1_HEADERS,
        )
        assert resp.status_code == 200
        task = resp.json()["task"]
        assert task["issue_flag"] is True
        assert task["status"] == "QUEUED"

        resp = await client.post(
            f"/api/tasks/{task_id}/flag-issue",
            json={"issue_ref": "MAINT-43", "force_repair": True},
            headers=W1_HEADERS,
        )
        assert resp.json()["task"]["status"] == "NEEDS_REPAIR"

    async def test_flag_issue_requires_ref(self, client):
        task_id = (await _create(client))["task_id"]
        resp = await client.post(
            f"/api/tasks/{task_id}/flag-issue",
            json={"issue_ref": ""},
            headers=W1_HEADERS,
        )
        assert resp.status_code == 422


class TestEdits:
    async def test_patch_details(self, client):
        task_id = (await _create(client, front_desk_notes="VIP"))["task_id"]
        resp = await client.patch(
            f"/api/tasks/{task_id}",
            json={"assigned_worker_id": "w3", "time_limit_minutes": 35},
            headers=DESK_HEADERS,
        )
        assert resp.status_code == 200
        task = resp.json()["task"]
        assert task["assigned_worker_id"] == "w3"
        assert task["time_limit_minutes"] == 35
        assert task["front_desk_notes"] == "VIP"
        assert task["version"] == 2

    async def test_patch_rejects_null_kind(self, client):
        task_id = (await _create(client))["task_id"]
        resp = await client.patch(
            f"/api/tasks/{task_id}", json={"kind": None}, headers=DESK_HEADERS
        )
        assert resp.status_code == 422

    async def test_patch_ignores_lifecycle_fields(self, client):
        task_id = (await _create(client))["task_id"]
        resp = await client.patch(
            f"/api/tasks/{task_id}",
            json={"status": "FINISHED", "front_desk_notes": "x"},
            headers=DESK_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["task"]["status"] == "QUEUED"

    async def test_worker_notes(self, client):
        task_id = (await _create(client, front_desk_notes="VIP"))["task_id"]
        resp = await client.put(
            f"/api/tasks/{task_id}/worker-notes",
            json={"worker_notes": "浴室灯坏了"},
            headers=W1_HEADERS,
        )
        assert resp.status_code == 200
        task = resp.json()["task"]
        assert task["worker_notes"] == "浴室灯坏了"
        assert task["front_desk_notes"] == "VIP"

    async def test_worker_notes_too_long(self, client):
        task_id = (await _create(client))["task_id"]
        resp = await client.put(
            f"/api/tasks/{task_id}/worker-notes",
            json={"worker_notes": "x" * 2001},
            headers=W1_HEADERS,
        )
        assert resp.status_code == 422

    async def test_request_id_header(self, client):
        resp = await client.get("/api/tasks", headers={"X-Request-ID": "req-abc"})
        assert resp.headers["x-request-id"] == "req-abc"
        resp = await client.get("/api/tasks")
        assert len(resp.headers["x-request-id"]) == 26
