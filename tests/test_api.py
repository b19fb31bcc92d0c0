"""Tests for the stageflow REST API endpoints.

Covers workflow/stage/status CRUD, projects, task CRUD with status
transitions and automatic project completion. Uses httpx.AsyncClient
with ASGITransport for async FastAPI testing.
"""

import time
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from api.app import create_app
from db.migrations import init_db


# ── Fixtures ──────────────────────────────────────────────


@pytest.fixture()
def db_path(tmp_path: Path) -> str:
    path = str(tmp_path / "test.db")
    conn = init_db(path)
    conn.close()
    return path


@pytest_asyncio.fixture()
async def client(db_path: str) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(db_path=db_path)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture()
async def strict_client(db_path: str) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(
        db_path=db_path,
        config={"db_path": db_path, "allow_unvalidated_transitions": False},
    )
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


async def _create_workflow(client: AsyncClient, name: str = "Dev") -> dict:
    resp = await client.post("/workflows", json={"name": name})
    assert resp.status_code == 201
    return resp.json()


async def _create_stage(
    client: AsyncClient, workflow_id: str, name: str, order: int
) -> dict:
    resp = await client.post(
        f"/workflows/{workflow_id}/stages", json={"name": name, "order": order}
    )
    assert resp.status_code == 201
    return resp.json()


async def _create_status(
    client: AsyncClient,
    workflow_id: str,
    stage_id: str,
    name: str,
    order: int,
    **flags: bool,
) -> dict:
    resp = await client.post(
        f"/workflows/{workflow_id}/stages/{stage_id}/statuses",
        json={"name": name, "order": order, **flags},
    )
    assert resp.status_code == 201
    return resp.json()


async def _seed_dev_workflow(client: AsyncClient) -> dict[str, str]:
    """Workflow "Dev": Todo(Open default) -> Done(Closed completion)."""
    wf = await _create_workflow(client)
    todo = await _create_stage(client, wf["id"], "Todo", 0)
    done = await _create_stage(client, wf["id"], "Done", 1)
    open_ = await _create_status(client, wf["id"], todo["id"], "Open", 0, is_default=True)
    closed = await _create_status(
        client, wf["id"], done["id"], "Closed", 0, is_completion_status=True
    )
    return {
        "workflow": wf["id"],
        "todo": todo["id"],
        "done": done["id"],
        "open": open_["id"],
        "closed": closed["id"],
    }


async def _create_project(
    client: AsyncClient, name: str = "Test Project", workflow_id: str | None = None
) -> dict:
    resp = await client.post(
        "/projects", json={"name": name, "client": "Acme", "workflow_id": workflow_id}
    )
    assert resp.status_code == 201
    return resp.json()


async def _create_task(
    client: AsyncClient, project_id: str, title: str = "Test Task", **extra: object
) -> dict:
    resp = await client.post(
        "/tasks", json={"project_id": project_id, "title": title, **extra}
    )
    assert resp.status_code == 201
    return resp.json()


# ── Workflows ─────────────────────────────────────────────


class TestWorkflows:
    @pytest.mark.asyncio
    async def test_create_returns_201(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/workflows", json={"name": "Dev", "organization_id": "acme"}
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["name"] == "Dev"
        assert data["organization_id"] == "acme"
        assert "id" in data
        assert "created_at" in data

    @pytest.mark.asyncio
    async def test_create_requires_name(self, client: AsyncClient) -> None:
        resp = await client.post("/workflows", json={"name": ""})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_list_and_get(self, client: AsyncClient) -> None:
        wf = await _create_workflow(client)
        resp = await client.get("/workflows")
        assert resp.status_code == 200
        assert [w["id"] for w in resp.json()] == [wf["id"]]

        resp = await client.get(f"/workflows/{wf['id']}")
        assert resp.status_code == 200
        assert resp.json()["name"] == "Dev"

    @pytest.mark.asyncio
    async def test_get_missing_returns_404(self, client: AsyncClient) -> None:
        resp = await client.get("/workflows/nope")
        assert resp.status_code == 404
        assert "nope" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_update(self, client: AsyncClient) -> None:
        wf = await _create_workflow(client)
        resp = await client.put(f"/workflows/{wf['id']}", json={"name": "Delivery"})
        assert resp.status_code == 200
        assert resp.json()["name"] == "Delivery"

    @pytest.mark.asyncio
    async def test_update_clears_organization(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/workflows", json={"name": "Dev", "organization_id": "acme"}
        )
        wf = resp.json()
        resp = await client.put(f"/workflows/{wf['id']}", json={"organization_id": None})
        assert resp.status_code == 200
        assert resp.json()["organization_id"] is None
        assert resp.json()["name"] == "Dev"

    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncClient) -> None:
        ids = await _seed_dev_workflow(client)
        resp = await client.delete(f"/workflows/{ids['workflow']}")
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        resp = await client.get(f"/workflows/{ids['workflow']}/stages")
        assert resp.status_code == 200
        assert resp.json() == []

    @pytest.mark.asyncio
    async def test_delete_in_use_returns_409(self, client: AsyncClient) -> None:
        ids = await _seed_dev_workflow(client)
        await _create_project(client, workflow_id=ids["workflow"])
        resp = await client.delete(f"/workflows/{ids['workflow']}")
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_catalog(self, client: AsyncClient) -> None:
        ids = await _seed_dev_workflow(client)
        resp = await client.get(f"/workflows/{ids['workflow']}/catalog")
        assert resp.status_code == 200
        stages = resp.json()["stages"]
        assert [s["name"] for s in stages] == ["Todo", "Done"]
        assert stages[1]["statuses"][0]["id"] == ids["closed"]


# ── Stages ────────────────────────────────────────────────


class TestStages:
    @pytest.mark.asyncio
    async def test_list_sorted_by_order(self, client: AsyncClient) -> None:
        wf = await _create_workflow(client)
        await _create_stage(client, wf["id"], "Review", 2)
        await _create_stage(client, wf["id"], "Todo", 0)
        await _create_stage(client, wf["id"], "Doing", 1)

        resp = await client.get(f"/workflows/{wf['id']}/stages")

        assert resp.status_code == 200
        assert [s["name"] for s in resp.json()] == ["Todo", "Doing", "Review"]

    @pytest.mark.asyncio
    async def test_create_in_missing_workflow_returns_404(
        self, client: AsyncClient
    ) -> None:
        resp = await client.post(
            "/workflows/nope/stages", json={"name": "Todo", "order": 0}
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_negative_order_rejected(self, client: AsyncClient) -> None:
        wf = await _create_workflow(client)
        resp = await client.post(
            f"/workflows/{wf['id']}/stages", json={"name": "Todo", "order": -1}
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_body_workflow_mismatch_returns_400(
        self, client: AsyncClient
    ) -> None:
        wf = await _create_workflow(client)
        resp = await client.post(
            f"/workflows/{wf['id']}/stages",
            json={"name": "Todo", "order": 0, "workflow_id": "other"},
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_get_through_wrong_workflow_returns_404(
        self, client: AsyncClient
    ) -> None:
        ids = await _seed_dev_workflow(client)
        other = await _create_workflow(client, "Other")
        resp = await client.get(f"/workflows/{other['id']}/stages/{ids['todo']}")
        assert resp.status_code == 404

        resp = await client.get(f"/workflows/{ids['workflow']}/stages/{ids['todo']}")
        assert resp.status_code == 200
        assert resp.json()["name"] == "Todo"

    @pytest.mark.asyncio
    async def test_update(self, client: AsyncClient) -> None:
        ids = await _seed_dev_workflow(client)
        resp = await client.put(
            f"/workflows/{ids['workflow']}/stages/{ids['done']}",
            json={"name": "Shipped", "order": 9},
        )
        assert resp.status_code == 200
        assert resp.json()["name"] == "Shipped"
        assert resp.json()["order"] == 9

    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncClient) -> None:
        ids = await _seed_dev_workflow(client)
        resp = await client.delete(f"/workflows/{ids['workflow']}/stages/{ids['done']}")
        assert resp.status_code == 200

        resp = await client.get(f"/workflows/{ids['workflow']}/stages")
        assert [s["id"] for s in resp.json()] == [ids["todo"]]


# ── Statuses ──────────────────────────────────────────────


class TestStatuses:
    @pytest.mark.asyncio
    async def test_create_defaults(self, client: AsyncClient) -> None:
        wf = await _create_workflow(client)
        stage = await _create_stage(client, wf["id"], "Todo", 0)
        status = await _create_status(client, wf["id"], stage["id"], "Open", 0)
        assert status["stage_id"] == stage["id"]
        assert status["is_default"] is False
        assert status["is_completion_status"] is False

    @pytest.mark.asyncio
    async def test_create_in_missing_stage_returns_404(
        self, client: AsyncClient
    ) -> None:
        wf = await _create_workflow(client)
        resp = await client.post(
            f"/workflows/{wf['id']}/stages/nope/statuses",
            json={"name": "Open", "order": 0},
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_list_sorted_by_order(self, client: AsyncClient) -> None:
        wf = await _create_workflow(client)
        stage = await _create_stage(client, wf["id"], "Doing", 0)
        await _create_status(client, wf["id"], stage["id"], "Review", 1)
        await _create_status(client, wf["id"], stage["id"], "InProgress", 0)

        resp = await client.get(f"/workflows/{wf['id']}/stages/{stage['id']}/statuses")

        assert resp.status_code == 200
        assert [s["name"] for s in resp.json()] == ["InProgress", "Review"]

    @pytest.mark.asyncio
    async def test_get_through_wrong_stage_returns_404(
        self, client: AsyncClient
    ) -> None:
        ids = await _seed_dev_workflow(client)
        resp = await client.get(
            f"/workflows/{ids['workflow']}/stages/{ids['done']}/statuses/{ids['open']}"
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_update_flags(self, client: AsyncClient) -> None:
        ids = await _seed_dev_workflow(client)
        resp = await client.put(
            f"/workflows/{ids['workflow']}/stages/{ids['todo']}/statuses/{ids['open']}",
            json={"is_completion_status": True},
        )
        assert resp.status_code == 200
        assert resp.json()["is_completion_status"] is True
        assert resp.json()["is_default"] is True

    @pytest.mark.asyncio
    async def test_delete_held_status_returns_409(self, client: AsyncClient) -> None:
        ids = await _seed_dev_workflow(client)
        project = await _create_project(client, workflow_id=ids["workflow"])
        await _create_task(client, project["id"])
        resp = await client.delete(
            f"/workflows/{ids['workflow']}/stages/{ids['todo']}/statuses/{ids['open']}"
        )
        assert resp.status_code == 409


# ── Projects ──────────────────────────────────────────────


class TestProjects:
    @pytest.mark.asyncio
    async def test_create_without_workflow(self, client: AsyncClient) -> None:
        project = await _create_project(client)
        assert project["status"] == "new"
        assert project["client"] == "Acme"
        assert project["tech_stack"] == []

    @pytest.mark.asyncio
    async def test_create_with_workflow(self, client: AsyncClient) -> None:
        ids = await _seed_dev_workflow(client)
        project = await _create_project(client, workflow_id=ids["workflow"])
        assert project["status"] == "Open"
        assert project["workflow_id"] == ids["workflow"]

    @pytest.mark.asyncio
    async def test_create_with_missing_workflow_returns_404(
        self, client: AsyncClient
    ) -> None:
        resp = await client.post("/projects", json={"name": "P", "workflow_id": "nope"})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_list_newest_first(self, client: AsyncClient) -> None:
        first = await _create_project(client, "First")
        time.sleep(0.001)
        second = await _create_project(client, "Second")
        resp = await client.get("/projects")
        assert [p["id"] for p in resp.json()] == [second["id"], first["id"]]

    @pytest.mark.asyncio
    async def test_get_missing_returns_404(self, client: AsyncClient) -> None:
        resp = await client.get("/projects/nope")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_update_status(self, client: AsyncClient) -> None:
        project = await _create_project(client)
        resp = await client.patch(
            f"/projects/{project['id']}/status", json={"status": "predicting"}
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "predicting"

        resp = await client.patch(
            f"/projects/{project['id']}/status", json={"status": "bogus"}
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_mark_report_generated(self, client: AsyncClient) -> None:
        project = await _create_project(client)
        resp = await client.patch(f"/projects/{project['id']}/mark-report-generated")
        assert resp.status_code == 200
        assert resp.json()["report_generated"] is True

    @pytest.mark.asyncio
    async def test_check_completion(self, client: AsyncClient) -> None:
        ids = await _seed_dev_workflow(client)
        project = await _create_project(client, workflow_id=ids["workflow"])
        await _create_task(client, project["id"], status_id=ids["closed"])

        resp = await client.post(f"/projects/{project['id']}/check-completion")

        assert resp.status_code == 200
        assert resp.json()["changed"] is True
        resp = await client.post(f"/projects/{project['id']}/check-completion")
        assert resp.json()["changed"] is False
        assert resp.json()["status"] == "completed"


# ── Tasks ─────────────────────────────────────────────────


class TestTasks:
    @pytest.mark.asyncio
    async def test_create_gets_entry_status(self, client: AsyncClient) -> None:
        ids = await _seed_dev_workflow(client)
        project = await _create_project(client, workflow_id=ids["workflow"])
        task = await _create_task(client, project["id"])
        assert task["status_id"] == ids["open"]
        assert task["status"]["name"] == "Open"
        assert task["version"] == 1

    @pytest.mark.asyncio
    async def test_create_for_missing_project_returns_404(
        self, client: AsyncClient
    ) -> None:
        resp = await client.post("/tasks", json={"project_id": "nope", "title": "T"})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_list_by_project(self, client: AsyncClient) -> None:
        project = await _create_project(client)
        await _create_task(client, project["id"], "A")
        time.sleep(0.001)
        await _create_task(client, project["id"], "B")

        resp = await client.get(f"/tasks/project/{project['id']}")

        assert resp.status_code == 200
        assert [t["title"] for t in resp.json()] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_list_for_missing_project_returns_404(
        self, client: AsyncClient
    ) -> None:
        resp = await client.get("/tasks/project/nope")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_completing_only_task_completes_project(
        self, client: AsyncClient
    ) -> None:
        ids = await _seed_dev_workflow(client)
        project = await _create_project(client, workflow_id=ids["workflow"])
        task = await _create_task(client, project["id"])

        resp = await client.put(f"/tasks/{task['id']}", json={"status_id": ids["closed"]})

        assert resp.status_code == 200
        data = resp.json()
        assert data["status_id"] == ids["closed"]
        assert data["project_completed"] is True
        resp = await client.get(f"/projects/{project['id']}")
        assert resp.json()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_backward_move_returns_400(self, client: AsyncClient) -> None:
        ids = await _seed_dev_workflow(client)
        project = await _create_project(client, workflow_id=ids["workflow"])
        task = await _create_task(client, project["id"], status_id=ids["closed"])

        resp = await client.put(f"/tasks/{task['id']}", json={"status_id": ids["open"]})

        assert resp.status_code == 400
        assert "earlier stage" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_stale_version_returns_409(self, client: AsyncClient) -> None:
        project = await _create_project(client)
        task = await _create_task(client, project["id"])
        resp = await client.put(f"/tasks/{task['id']}", json={"title": "v2", "version": 1})
        assert resp.status_code == 200
        assert resp.json()["version"] == 2

        resp = await client.put(f"/tasks/{task['id']}", json={"title": "v3", "version": 1})
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_unvalidated_update_allowed_by_default(
        self, client: AsyncClient
    ) -> None:
        project = await _create_project(client)
        task = await _create_task(client, project["id"])
        resp = await client.put(f"/tasks/{task['id']}", json={"status_id": "anything"})
        assert resp.status_code == 200
        assert resp.json()["status_id"] == "anything"

    @pytest.mark.asyncio
    async def test_unvalidated_update_rejected_when_disabled(
        self, strict_client: AsyncClient
    ) -> None:
        project = await _create_project(strict_client)
        task = await _create_task(strict_client, project["id"])
        resp = await strict_client.put(
            f"/tasks/{task['id']}", json={"status_id": "anything"}
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_clear_description(self, client: AsyncClient) -> None:
        project = await _create_project(client)
        task = await _create_task(client, project["id"], description="text")
        resp = await client.put(f"/tasks/{task['id']}", json={"description": None})
        assert resp.status_code == 200
        assert resp.json()["description"] is None

    @pytest.mark.asyncio
    async def test_transitions(self, client: AsyncClient) -> None:
        ids = await _seed_dev_workflow(client)
        project = await _create_project(client, workflow_id=ids["workflow"])
        task = await _create_task(client, project["id"])

        resp = await client.get(f"/tasks/{task['id']}/transitions")

        assert resp.status_code == 200
        statuses = resp.json()["statuses"]
        assert [s["name"] for s in statuses] == ["Open", "Closed"]
        assert statuses[1]["stage_name"] == "Done"

    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncClient) -> None:
        project = await _create_project(client)
        task = await _create_task(client, project["id"])
        resp = await client.delete(f"/tasks/{task['id']}")
        assert resp.status_code == 200
        resp = await client.get(f"/tasks/{task['id']}")
        assert resp.status_code == 404
