"""Task endpoint tests."""

from __future__ import annotations

import pytest

from tests.unit.routers.conftest import OWNER, STRANGER, create_task, post_as


@pytest.mark.unit
class TestCreateTask:
    """POST /tasks."""

    async def test_create_draft(self, client):
        response = await create_task(client, publish=False)
        assert response.status_code == 201

        data = response.json()
        assert data["task_id"].startswith("t-")
        assert data["owner_id"] == OWNER
        assert data["status"] == "draft"
        assert data["pay_amount_cents"] == 8000
        assert data["budget_type"] == "fixed"

    async def test_create_published(self, client):
        response = await create_task(client, scheduled_at="2026-11-02T08:00:00Z")
        assert response.status_code == 201
        assert response.json()["status"] == "open"
        assert response.json()["scheduled_at"] == "2026-11-02T08:00:00Z"

    async def test_missing_title(self, client):
        response = await post_as(
            client,
            OWNER,
            "/tasks",
            {
                "category": "plumbing",
                "location": "Leipzig",
                "pay_amount_cents": 100,
                "budget_type": "fixed",
            },
        )
        assert response.status_code == 400
        assert response.json()["details"] == {"field": "title"}

    async def test_invalid_budget_type(self, client):
        response = await post_as(
            client,
            OWNER,
            "/tasks",
            {
                "title": "Fix",
                "category": "plumbing",
                "location": "Leipzig",
                "pay_amount_cents": 100,
                "budget_type": "weekly",
            },
        )
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"


@pytest.mark.unit
class TestReadTasks:
    """GET /tasks and GET /tasks/{task_id}."""

    async def test_get_task(self, client):
        task_id = (await create_task(client)).json()["task_id"]

        response = await client.get(f"/tasks/{task_id}")
        assert response.status_code == 200
        assert response.json()["task_id"] == task_id

    async def test_get_missing_task(self, client):
        response = await client.get("/tasks/t-missing")
        assert response.status_code == 404
        assert response.json()["error"] == "TASK_NOT_FOUND"

    async def test_list_filters(self, client):
        await create_task(client, publish=False)
        await create_task(client)
        await create_task(client, STRANGER)

        all_tasks = (await client.get("/tasks")).json()["tasks"]
        assert len(all_tasks) == 3

        open_tasks = (await client.get("/tasks", params={"status": "open"})).json()["tasks"]
        assert len(open_tasks) == 2

        mine = (await client.get("/tasks", params={"owner_id": OWNER})).json()["tasks"]
        assert {task["owner_id"] for task in mine} == {OWNER}

        page = (await client.get("/tasks", params={"limit": "1", "offset": "1"})).json()["tasks"]
        assert len(page) == 1

    @pytest.mark.parametrize("params", [{"limit": "0"}, {"limit": "ten"}, {"offset": "-1"}])
    async def test_list_rejects_bad_paging(self, client, params):
        response = await client.get("/tasks", params=params)
        assert response.status_code == 400


@pytest.mark.unit
class TestPublish:
    """POST /tasks/{task_id}/publish."""

    async def test_publish_draft(self, client):
        task_id = (await create_task(client, publish=False)).json()["task_id"]

        response = await post_as(client, OWNER, f"/tasks/{task_id}/publish")
        assert response.status_code == 200
        assert response.json()["status"] == "open"

        again = await post_as(client, OWNER, f"/tasks/{task_id}/publish")
        assert again.status_code == 409
        assert again.json()["error"] == "INVALID_STATE_TRANSITION"

    async def test_publish_by_stranger(self, client):
        task_id = (await create_task(client, publish=False)).json()["task_id"]

        response = await post_as(client, STRANGER, f"/tasks/{task_id}/publish")
        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"
