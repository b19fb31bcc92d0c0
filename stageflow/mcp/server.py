"""MCP server for stageflow.

Exposes workflow, project and task tools via stdio transport.
Launched by `stageflow mcp`.
"""

from __future__ import annotations

import json
import os
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import Context, FastMCP

from db.migrations import init_db
from stageflow.mcp import tools


@dataclass
class AppState:
    """Lifespan state accessible by tools via Context."""

    conn: sqlite3.Connection
    allow_unvalidated: bool


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppState]:  # type: ignore[type-arg]
    """Open DB connection at startup, close on shutdown."""
    db_path = os.environ.get("STAGEFLOW_DB", "~/.stageflow/stageflow.db")
    db_path = str(Path(db_path).expanduser())
    allow_unvalidated = os.environ.get("STAGEFLOW_ALLOW_UNVALIDATED", "1") != "0"

    conn = init_db(db_path)
    try:
        yield AppState(conn=conn, allow_unvalidated=allow_unvalidated)
    finally:
        conn.close()


def _state(ctx: Context) -> AppState:
    return ctx.request_context.lifespan_context


def _get_conn(ctx: Context) -> sqlite3.Connection:
    """Extract DB connection from Context lifespan state."""
    return _state(ctx).conn


def _dump(result: dict[str, Any]) -> str:
    return json.dumps(result, indent=2)


def create_server() -> FastMCP:
    """Create and configure the MCP server with all tools registered."""
    server = FastMCP(
        name="stageflow",
        instructions="Workflow catalog and task status tools for stageflow projects.",
        lifespan=app_lifespan,
    )

    # ── Workflow catalog ──

    @server.tool(description="Create a new workflow")
    def create_workflow(
        name: str,
        organization_id: str | None = None,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        return _dump(tools.create_workflow(_get_conn(ctx), name, organization_id))

    @server.tool(description="List all workflows")
    def list_workflows(ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.list_workflows(_get_conn(ctx)))

    @server.tool(description="Return a workflow")
    def get_workflow(workflow_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.get_workflow(_get_conn(ctx), workflow_id))

    @server.tool(
        description="Return a workflow with its ordered stages and each stage's ordered statuses"
    )
    def get_workflow_catalog(workflow_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.get_workflow_catalog(_get_conn(ctx), workflow_id))

    @server.tool(description="Rename a workflow or change its organization")
    def update_workflow(
        workflow_id: str,
        fields: dict[str, Any],
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        return _dump(tools.update_workflow(_get_conn(ctx), workflow_id, fields))

    @server.tool(
        description="Delete a workflow with its stages and statuses (refused while in use)"
    )
    def delete_workflow(workflow_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.delete_workflow(_get_conn(ctx), workflow_id))

    @server.tool(description="Add a stage to a workflow at the given order")
    def create_stage(
        workflow_id: str,
        name: str,
        order: int,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        return _dump(tools.create_stage(_get_conn(ctx), workflow_id, name, order))

    @server.tool(description="List a workflow's stages in order")
    def list_stages(workflow_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.list_stages(_get_conn(ctx), workflow_id))

    @server.tool(description="Return a workflow stage")
    def get_stage(stage_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.get_stage(_get_conn(ctx), stage_id))

    @server.tool(description="Update a workflow stage")
    def update_stage(
        stage_id: str,
        fields: dict[str, Any],
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        return _dump(tools.update_stage(_get_conn(ctx), stage_id, fields))

    @server.tool(description="Delete a workflow stage with its statuses (refused while in use)")
    def delete_stage(stage_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.delete_stage(_get_conn(ctx), stage_id))

    @server.tool(description="Add a status to a stage")
    def create_status(
        stage_id: str,
        name: str,
        order: int,
        is_default: bool = False,
        is_completion_status: bool = False,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        conn = _get_conn(ctx)
        result = tools.create_status(
            conn, stage_id, name, order, is_default, is_completion_status
        )
        return _dump(result)

    @server.tool(description="List a stage's statuses in order")
    def list_statuses(stage_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.list_statuses(_get_conn(ctx), stage_id))

    @server.tool(description="Return a stage status")
    def get_status(status_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.get_status(_get_conn(ctx), status_id))

    @server.tool(description="Update a stage status")
    def update_status(
        status_id: str,
        fields: dict[str, Any],
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        return _dump(tools.update_status(_get_conn(ctx), status_id, fields))

    @server.tool(description="Delete a stage status (refused while a task holds it)")
    def delete_status(status_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.delete_status(_get_conn(ctx), status_id))

    # ── Projects ──

    @server.tool(description="Create a project, optionally assigned to a workflow")
    def create_project(
        name: str,
        client: str = "",
        description: str = "",
        workflow_id: str | None = None,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        conn = _get_conn(ctx)
        result = tools.create_project(
            conn, name, client=client, description=description, workflow_id=workflow_id
        )
        return _dump(result)

    @server.tool(description="Return a project")
    def get_project(project_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.get_project(_get_conn(ctx), project_id))

    @server.tool(description="List projects, newest first")
    def list_projects(ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.list_projects(_get_conn(ctx)))

    @server.tool(description="Set a project's status")
    def update_project_status(
        project_id: str,
        status: str,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        return _dump(tools.update_project_status(_get_conn(ctx), project_id, status))

    @server.tool(description="Flag a project's report as generated")
    def mark_report_generated(project_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.mark_report_generated(_get_conn(ctx), project_id))

    @server.tool(description="Re-check whether every task of a project is complete")
    def check_project_completion(project_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.check_project_completion(_get_conn(ctx), project_id))

    # ── Tasks ──

    @server.tool(
        description="Create a task; its status defaults to the workflow's entry status"
    )
    def create_task(
        project_id: str,
        title: str,
        description: str | None = None,
        status_id: str | None = None,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        conn = _get_conn(ctx)
        result = tools.create_task(conn, project_id, title, description, status_id)
        return _dump(result)

    @server.tool(description="Return a task with its resolved status")
    def get_task(task_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.get_task(_get_conn(ctx), task_id))

    @server.tool(description="List a project's tasks with their resolved statuses")
    def list_tasks(project_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.list_tasks_by_project(_get_conn(ctx), project_id))

    @server.tool(
        description="Move a task to another status (enforces workflow stage/status order)"
    )
    def set_task_status(
        task_id: str,
        status_id: str,
        expected_version: int | None = None,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        state = _state(ctx)
        result = tools.update_task(
            state.conn,
            task_id,
            {"status_id": status_id},
            expected_version=expected_version,
            allow_unvalidated=state.allow_unvalidated,
        )
        return _dump(result)

    @server.tool(
        description="Update a task's title, description, status_id or extra_data"
    )
    def update_task(
        task_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        state = _state(ctx)
        result = tools.update_task(
            state.conn,
            task_id,
            fields,
            expected_version=expected_version,
            allow_unvalidated=state.allow_unvalidated,
        )
        return _dump(result)

    @server.tool(description="Return the statuses a task may move to")
    def get_valid_statuses(task_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.get_valid_statuses(_get_conn(ctx), task_id))

    @server.tool(description="Delete a task")
    def delete_task(task_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.delete_task(_get_conn(ctx), task_id))

    return server


def run_server(db_path: str | None = None, allow_unvalidated: bool = True) -> None:
    """Entry point: create server and run on stdio."""
    if db_path:
        os.environ["STAGEFLOW_DB"] = db_path
    os.environ["STAGEFLOW_ALLOW_UNVALIDATED"] = "1" if allow_unvalidated else "0"

    server = create_server()
    server.run(transport="stdio")
