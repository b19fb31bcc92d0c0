"""REST route handlers for the stageflow API.

Routes wrap tool functions with HTTP semantics. All reads and mutations
go through the tools (source of truth for business logic).
"""

import sqlite3
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.websockets import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from api.deps import get_db
from api.models import (
    CompletionCheckResponse,
    CreateProjectRequest,
    CreateStageRequest,
    CreateStatusRequest,
    CreateTaskRequest,
    CreateWorkflowRequest,
    DeleteResponse,
    TaskUpdateResponse,
    UpdateProjectStatusRequest,
    UpdateStageRequest,
    UpdateStatusRequest,
    UpdateTaskRequest,
    UpdateWorkflowRequest,
    ValidStatusesResponse,
)
from api.ws import manager
from db.records import (
    Project,
    StageStatus,
    Task,
    Workflow,
    WorkflowCatalog,
    WorkflowStage,
)
from stageflow.mcp import tools

router = APIRouter()

_STATUS_CODES = {
    "not_found": 404,
    "invalid_input": 400,
    "invalid_transition": 400,
    "conflict": 409,
    "persistence_error": 500,
}


def _check_error(result: dict[str, Any]) -> dict[str, Any]:
    """Convert tool error dicts to HTTPException; pass results through."""
    if "error" not in result:
        return result
    message = result.get("message", "Unknown error")
    raise HTTPException(
        status_code=_STATUS_CODES.get(result["error"], 400), detail=message
    )


def _fields(body: BaseModel, nullable: tuple[str, ...] = ()) -> dict[str, Any]:
    """Fields the client sent; explicit nulls are kept only for nullable columns."""
    return {
        k: v
        for k, v in body.model_dump(exclude_unset=True).items()
        if v is not None or k in nullable
    }


def _check_parent(body_value: str | None, path_value: str, field: str) -> None:
    if body_value is not None and body_value != path_value:
        raise HTTPException(
            status_code=400,
            detail=f"Body {field} '{body_value}' does not match path '{path_value}'",
        )


# Store config reference for the unvalidated-transition policy
_config: dict[str, Any] | None = None


def set_config(config: dict[str, Any] | None) -> None:
    """Set the config dict used by task updates."""
    global _config  # noqa: PLW0603
    _config = config


def _allow_unvalidated() -> bool:
    if _config is None:
        return True
    return bool(_config.get("allow_unvalidated_transitions", True))


# ── Workflow endpoints ─────────────────────────────────────


@router.post("/workflows", status_code=201, response_model=Workflow)
def create_workflow_endpoint(
    body: CreateWorkflowRequest,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return _check_error(tools.create_workflow(conn, body.name, body.organization_id))


@router.get("/workflows", response_model=list[Workflow])
def list_workflows_endpoint(
    conn: sqlite3.Connection = Depends(get_db),
) -> list[dict[str, Any]]:
    return _check_error(tools.list_workflows(conn))["workflows"]


@router.get("/workflows/{workflow_id}", response_model=Workflow)
def get_workflow_endpoint(
    workflow_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return _check_error(tools.get_workflow(conn, workflow_id))


@router.get("/workflows/{workflow_id}/catalog", response_model=WorkflowCatalog)
def get_workflow_catalog_endpoint(
    workflow_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Return the workflow with its ordered stages and statuses."""
    return _check_error(tools.get_workflow_catalog(conn, workflow_id))


@router.put("/workflows/{workflow_id}", response_model=Workflow)
def update_workflow_endpoint(
    workflow_id: str,
    body: UpdateWorkflowRequest,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    fields = _fields(body, nullable=("organization_id",))
    return _check_error(tools.update_workflow(conn, workflow_id, fields))


@router.delete("/workflows/{workflow_id}", response_model=DeleteResponse)
def delete_workflow_endpoint(
    workflow_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return _check_error(tools.delete_workflow(conn, workflow_id))


# ── Stage endpoints ────────────────────────────────────────


@router.post(
    "/workflows/{workflow_id}/stages", status_code=201, response_model=WorkflowStage
)
def create_stage_endpoint(
    workflow_id: str,
    body: CreateStageRequest,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    _check_parent(body.workflow_id, workflow_id, "workflow_id")
    return _check_error(tools.create_stage(conn, workflow_id, body.name, body.order))


@router.get("/workflows/{workflow_id}/stages", response_model=list[WorkflowStage])
def list_stages_endpoint(
    workflow_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> list[dict[str, Any]]:
    """Return the workflow's stages ordered by `order`."""
    return _check_error(tools.list_stages(conn, workflow_id))["stages"]


@router.get(
    "/workflows/{workflow_id}/stages/{stage_id}", response_model=WorkflowStage
)
def get_stage_endpoint(
    workflow_id: str,
    stage_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return _check_error(tools.get_stage(conn, stage_id, workflow_id))


@router.put(
    "/workflows/{workflow_id}/stages/{stage_id}", response_model=WorkflowStage
)
def update_stage_endpoint(
    workflow_id: str,
    stage_id: str,
    body: UpdateStageRequest,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    fields = _fields(body)
    return _check_error(tools.update_stage(conn, stage_id, fields, workflow_id))


@router.delete(
    "/workflows/{workflow_id}/stages/{stage_id}", response_model=DeleteResponse
)
def delete_stage_endpoint(
    workflow_id: str,
    stage_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return _check_error(tools.delete_stage(conn, stage_id, workflow_id))


# ── Status endpoints ───────────────────────────────────────


@router.post(
    "/workflows/{workflow_id}/stages/{stage_id}/statuses",
    status_code=201,
    response_model=StageStatus,
)
def create_status_endpoint(
    workflow_id: str,
    stage_id: str,
    body: CreateStatusRequest,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    _check_parent(body.stage_id, stage_id, "stage_id")
    result = tools.create_status(
        conn,
        stage_id,
        body.name,
        body.order,
        is_default=body.is_default,
        is_completion_status=body.is_completion_status,
        workflow_id=workflow_id,
    )
    return _check_error(result)


@router.get(
    "/workflows/{workflow_id}/stages/{stage_id}/statuses",
    response_model=list[StageStatus],
)
def list_statuses_endpoint(
    workflow_id: str,
    stage_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> list[dict[str, Any]]:
    """Return the stage's statuses ordered by `order`."""
    return _check_error(tools.list_statuses(conn, stage_id, workflow_id))["statuses"]


@router.get(
    "/workflows/{workflow_id}/stages/{stage_id}/statuses/{status_id}",
    response_model=StageStatus,
)
def get_status_endpoint(
    workflow_id: str,
    stage_id: str,
    status_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return _check_error(tools.get_status(conn, status_id, stage_id, workflow_id))


@router.put(
    "/workflows/{workflow_id}/stages/{stage_id}/statuses/{status_id}",
    response_model=StageStatus,
)
def update_status_endpoint(
    workflow_id: str,
    stage_id: str,
    status_id: str,
    body: UpdateStatusRequest,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    fields = _fields(body)
    result = tools.update_status(conn, status_id, fields, stage_id, workflow_id)
    return _check_error(result)


@router.delete(
    "/workflows/{workflow_id}/stages/{stage_id}/statuses/{status_id}",
    response_model=DeleteResponse,
)
def delete_status_endpoint(
    workflow_id: str,
    stage_id: str,
    status_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return _check_error(tools.delete_status(conn, status_id, stage_id, workflow_id))


# ── Project endpoints ──────────────────────────────────────


@router.post("/projects", status_code=201, response_model=Project)
def create_project_endpoint(
    body: CreateProjectRequest,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Create a project; its status starts at the workflow's entry status."""
    return _check_error(tools.create_project(conn, **body.model_dump()))


@router.get("/projects", response_model=list[Project])
def list_projects_endpoint(
    conn: sqlite3.Connection = Depends(get_db),
) -> list[dict[str, Any]]:
    return _check_error(tools.list_projects(conn))["projects"]


@router.get("/projects/{project_id}", response_model=Project)
def get_project_endpoint(
    project_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return _check_error(tools.get_project(conn, project_id))


@router.patch("/projects/{project_id}/status", response_model=Project)
def update_project_status_endpoint(
    project_id: str,
    body: UpdateProjectStatusRequest,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return _check_error(tools.update_project_status(conn, project_id, body.status))


@router.patch("/projects/{project_id}/mark-report-generated", response_model=Project)
def mark_report_generated_endpoint(
    project_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return _check_error(tools.mark_report_generated(conn, project_id))


@router.post(
    "/projects/{project_id}/check-completion", response_model=CompletionCheckResponse
)
def check_completion_endpoint(
    project_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Re-run completion detection, e.g. after a failed automatic check."""
    return _check_error(tools.check_project_completion(conn, project_id))


# ── Task endpoints ─────────────────────────────────────────


@router.post("/tasks", status_code=201, response_model=Task)
def create_task_endpoint(
    body: CreateTaskRequest,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Create a task; status_id defaults to the workflow's entry status."""
    result = tools.create_task(
        conn,
        project_id=body.project_id,
        title=body.title,
        description=body.description,
        status_id=body.status_id,
        extra_data=body.extra_data,
    )
    return _check_error(result)


@router.get("/tasks/project/{project_id}", response_model=list[Task])
def list_project_tasks_endpoint(
    project_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> list[dict[str, Any]]:
    return _check_error(tools.list_tasks_by_project(conn, project_id))["tasks"]


@router.get("/tasks/{task_id}", response_model=Task)
def get_task_endpoint(
    task_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return _check_error(tools.get_task(conn, task_id))


@router.get("/tasks/{task_id}/transitions", response_model=ValidStatusesResponse)
def get_task_transitions_endpoint(
    task_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Return the statuses the task may move to."""
    return _check_error(tools.get_valid_statuses(conn, task_id))


@router.put("/tasks/{task_id}", response_model=TaskUpdateResponse)
def update_task_endpoint(
    task_id: str,
    body: UpdateTaskRequest,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Update a task; a status change must follow the workflow order."""
    fields = _fields(
        body, nullable=("description", "status_id", "extra_data", "version")
    )
    version = fields.pop("version", None)
    result = tools.update_task(
        conn,
        task_id,
        fields,
        expected_version=version,
        allow_unvalidated=_allow_unvalidated(),
    )
    return _check_error(result)


@router.delete("/tasks/{task_id}", response_model=DeleteResponse)
def delete_task_endpoint(
    task_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    return _check_error(tools.delete_task(conn, task_id))


# ── WebSocket endpoint ─────────────────────────────────────


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for live updates."""
    await manager.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
