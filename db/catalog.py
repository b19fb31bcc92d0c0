"""Workflow catalog: workflows, their stages, and each stage's statuses.

Stages and statuses are always returned sorted ascending by ``order``
(ties by creation time, then id). Initial status resolution and the
transition rules both read the catalog in this order.

Deleting cascades down the composition (workflow -> stages -> statuses)
but is refused with ConflictError while a project is assigned the
workflow or a task holds one of the statuses being removed.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from db.errors import ConflictError, NotFoundError
from db.records import (
    StageStatus,
    StageWithStatuses,
    Workflow,
    WorkflowCatalog,
    WorkflowStage,
    to_record,
)
from db.repository import Repository

CATALOG_ORDER = ("order", "created_at", "id")

WORKFLOW_FIELDS = ("name", "organization_id")
STAGE_FIELDS = ("name", "order", "workflow_id")
STATUS_FIELDS = ("name", "order", "stage_id", "is_default", "is_completion_status")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _uuid() -> str:
    return str(uuid.uuid4())


def _partial(fields: dict[str, Any], allowed: tuple[str, ...]) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if k in allowed}


def _update_one(
    repo: Repository, table: str, row_id: str, fields: dict[str, Any], label: str
) -> dict[str, Any]:
    values = dict(fields)
    if values:
        values["updated_at"] = _now()
    rows = repo.update(table, {"id": row_id}, values)
    if not rows:
        raise NotFoundError(f"{label} with ID '{row_id}' not found")
    return rows[0]


def _tasks_holding(repo: Repository, status_ids: list[str]) -> int:
    if not status_ids:
        return 0
    return repo.count("tasks", {"status_id": status_ids})


# ── Workflows ─────────────────────────────────────────────


def create_workflow(
    repo: Repository, name: str, organization_id: str | None = None
) -> Workflow:
    now = _now()
    row = repo.insert(
        "workflows",
        {
            "id": _uuid(),
            "name": name,
            "organization_id": organization_id,
            "created_at": now,
            "updated_at": now,
        },
    )
    return to_record(Workflow, row)


def list_workflows(repo: Repository) -> list[Workflow]:
    rows = repo.select("workflows", order_by=("created_at", "id"))
    return [to_record(Workflow, r) for r in rows]


def get_workflow(repo: Repository, workflow_id: str) -> Workflow:
    row = repo.select_one("workflows", {"id": workflow_id})
    if row is None:
        raise NotFoundError(f"Workflow with ID '{workflow_id}' not found")
    return to_record(Workflow, row)


def update_workflow(
    repo: Repository, workflow_id: str, fields: dict[str, Any]
) -> Workflow:
    row = _update_one(
        repo, "workflows", workflow_id, _partial(fields, WORKFLOW_FIELDS), "Workflow"
    )
    return to_record(Workflow, row)


def delete_workflow(repo: Repository, workflow_id: str) -> None:
    """Delete a workflow together with its stages and their statuses."""
    get_workflow(repo, workflow_id)

    assigned = repo.count("projects", {"workflow_id": workflow_id})
    if assigned:
        raise ConflictError(
            f"Workflow '{workflow_id}' is assigned to {assigned} project(s)",
            {"projects": assigned},
        )

    stage_ids = [s.id for s in list_stages_by_workflow(repo, workflow_id)]
    status_ids = [
        r["id"] for r in repo.select("stage_statuses", {"stage_id": stage_ids})
    ]
    holding = _tasks_holding(repo, status_ids)
    if holding:
        raise ConflictError(
            f"Workflow '{workflow_id}' has statuses held by {holding} task(s)",
            {"tasks": holding},
        )

    repo.delete("workflows", {"id": workflow_id})


def get_workflow_catalog(repo: Repository, workflow_id: str) -> WorkflowCatalog:
    """Return the workflow with its ordered stages and their ordered statuses."""
    workflow = get_workflow(repo, workflow_id)
    stages = [
        StageWithStatuses(
            **stage.model_dump(), statuses=list_statuses_by_stage(repo, stage.id)
        )
        for stage in list_stages_by_workflow(repo, workflow_id)
    ]
    return WorkflowCatalog(**workflow.model_dump(), stages=stages)


# ── Stages ────────────────────────────────────────────────


def create_stage(
    repo: Repository, name: str, order: int, workflow_id: str
) -> WorkflowStage:
    get_workflow(repo, workflow_id)
    now = _now()
    row = repo.insert(
        "workflow_stages",
        {
            "id": _uuid(),
            "workflow_id": workflow_id,
            "name": name,
            "order": order,
            "created_at": now,
            "updated_at": now,
        },
    )
    return to_record(WorkflowStage, row)


def list_stages_by_workflow(repo: Repository, workflow_id: str) -> list[WorkflowStage]:
    rows = repo.select(
        "workflow_stages", {"workflow_id": workflow_id}, order_by=CATALOG_ORDER
    )
    return [to_record(WorkflowStage, r) for r in rows]


def get_stage(repo: Repository, stage_id: str) -> WorkflowStage:
    row = repo.select_one("workflow_stages", {"id": stage_id})
    if row is None:
        raise NotFoundError(f"Workflow stage with ID '{stage_id}' not found")
    return to_record(WorkflowStage, row)


def update_stage(
    repo: Repository, stage_id: str, fields: dict[str, Any]
) -> WorkflowStage:
    values = _partial(fields, STAGE_FIELDS)
    if "workflow_id" in values:
        get_workflow(repo, values["workflow_id"])
    row = _update_one(repo, "workflow_stages", stage_id, values, "Workflow stage")
    return to_record(WorkflowStage, row)


def delete_stage(repo: Repository, stage_id: str) -> None:
    """Delete a stage together with its statuses."""
    get_stage(repo, stage_id)
    status_ids = [s.id for s in list_statuses_by_stage(repo, stage_id)]
    holding = _tasks_holding(repo, status_ids)
    if holding:
        raise ConflictError(
            f"Workflow stage '{stage_id}' has statuses held by {holding} task(s)",
            {"tasks": holding},
        )
    repo.delete("workflow_stages", {"id": stage_id})


# ── Statuses ──────────────────────────────────────────────


def create_status(
    repo: Repository,
    name: str,
    order: int,
    stage_id: str,
    is_default: bool = False,
    is_completion_status: bool = False,
) -> StageStatus:
    get_stage(repo, stage_id)
    now = _now()
    row = repo.insert(
        "stage_statuses",
        {
            "id": _uuid(),
            "stage_id": stage_id,
            "name": name,
            "order": order,
            "is_default": is_default,
            "is_completion_status": is_completion_status,
            "created_at": now,
            "updated_at": now,
        },
    )
    return to_record(StageStatus, row)


def list_statuses_by_stage(repo: Repository, stage_id: str) -> list[StageStatus]:
    rows = repo.select("stage_statuses", {"stage_id": stage_id}, order_by=CATALOG_ORDER)
    return [to_record(StageStatus, r) for r in rows]


def get_status(repo: Repository, status_id: str) -> StageStatus:
    row = repo.select_one("stage_statuses", {"id": status_id})
    if row is None:
        raise NotFoundError(f"Stage status with ID '{status_id}' not found")
    return to_record(StageStatus, row)


def update_status(
    repo: Repository, status_id: str, fields: dict[str, Any]
) -> StageStatus:
    values = _partial(fields, STATUS_FIELDS)
    if "stage_id" in values:
        get_stage(repo, values["stage_id"])
    row = _update_one(repo, "stage_statuses", status_id, values, "Stage status")
    return to_record(StageStatus, row)


def delete_status(repo: Repository, status_id: str) -> None:
    get_status(repo, status_id)
    holding = _tasks_holding(repo, [status_id])
    if holding:
        raise ConflictError(
            f"Stage status '{status_id}' is held by {holding} task(s)",
            {"tasks": holding},
        )
    repo.delete("stage_statuses", {"id": status_id})
