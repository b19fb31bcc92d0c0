"""Tool implementations for stageflow.

Each function takes a sqlite3.Connection and explicit params, returns a dict.
The MCP server registers these as tools and the REST routes wrap them with
HTTP semantics, so this module is the single place where a request becomes
one transaction: a tool commits on success and rolls back on any error,
which keeps a task's status write and the project completion it triggers
together.

Errors come back as {"error": <code>, "message": ...} dicts.
"""

import functools
import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from db import catalog
from db.bootstrap import resolve_initial_status
from db.completion import check_and_complete_project
from db.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    StageflowError,
    ValidationError,
)
from db.records import (
    COMPLETED,
    DEFAULT_PROJECT_STATUS,
    PROJECT_STATUSES,
    Project,
    StageStatus,
    Task,
    WorkflowStage,
    to_record,
)
from db.repository import Repository
from db.state_machine import (
    build_status_catalog,
    get_valid_statuses as _get_valid_statuses,
    validate_status_transition,
)
from stageflow.mcp.events import emit_event

logger = logging.getLogger(__name__)

TASK_FIELDS = ("title", "description", "status_id", "extra_data")

F = TypeVar("F", bound=Callable[..., dict[str, Any]])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _uuid() -> str:
    return str(uuid.uuid4())


def tool(func: F) -> F:
    """Run a tool as one transaction and turn errors into error dicts."""

    @functools.wraps(func)
    def wrapper(conn: sqlite3.Connection, *args: Any, **kwargs: Any) -> dict[str, Any]:
        try:
            result = func(conn, *args, **kwargs)
        except StageflowError as e:
            conn.rollback()
            return e.to_dict()
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("Database error in %s", func.__name__)
            return PersistenceError(str(e)).to_dict()
        except Exception:
            conn.rollback()
            logger.exception("Unexpected error in %s", func.__name__)
            raise
        conn.commit()
        return result

    return wrapper  # type: ignore[return-value]


def _deleted(label: str, row_id: str) -> dict[str, Any]:
    return {"success": True, "message": f"{label} with ID '{row_id}' deleted"}


# ── Workflow catalog tools ────────────────────────────────


def _scoped_stage(
    repo: Repository, stage_id: str, workflow_id: str | None
) -> WorkflowStage:
    stage = catalog.get_stage(repo, stage_id)
    if workflow_id is not None and stage.workflow_id != workflow_id:
        raise NotFoundError(
            f"Workflow stage with ID '{stage_id}' not found in workflow '{workflow_id}'"
        )
    return stage


def _scoped_status(
    repo: Repository,
    status_id: str,
    stage_id: str | None,
    workflow_id: str | None,
) -> StageStatus:
    status = catalog.get_status(repo, status_id)
    if stage_id is not None:
        if status.stage_id != stage_id:
            raise NotFoundError(
                f"Stage status with ID '{status_id}' not found in stage '{stage_id}'"
            )
        _scoped_stage(repo, stage_id, workflow_id)
    return status


@tool
def create_workflow(
    conn: sqlite3.Connection, name: str, organization_id: str | None = None
) -> dict[str, Any]:
    """Create a new, empty workflow."""
    if not name:
        raise ValidationError("Workflow name is required")
    workflow = catalog.create_workflow(Repository(conn), name, organization_id)
    emit_event(conn, "workflow_created", {"workflow_id": workflow.id})
    return workflow.model_dump()


@tool
def list_workflows(conn: sqlite3.Connection) -> dict[str, Any]:
    workflows = catalog.list_workflows(Repository(conn))
    return {"workflows": [w.model_dump() for w in workflows]}


@tool
def get_workflow(conn: sqlite3.Connection, workflow_id: str) -> dict[str, Any]:
    return catalog.get_workflow(Repository(conn), workflow_id).model_dump()


@tool
def get_workflow_catalog(conn: sqlite3.Connection, workflow_id: str) -> dict[str, Any]:
    """Return a workflow with its ordered stages and statuses."""
    return catalog.get_workflow_catalog(Repository(conn), workflow_id).model_dump()


@tool
def update_workflow(
    conn: sqlite3.Connection, workflow_id: str, fields: dict[str, Any]
) -> dict[str, Any]:
    workflow = catalog.update_workflow(Repository(conn), workflow_id, fields)
    emit_event(conn, "workflow_updated", {"workflow_id": workflow_id})
    return workflow.model_dump()


@tool
def delete_workflow(conn: sqlite3.Connection, workflow_id: str) -> dict[str, Any]:
    """Delete a workflow and, with it, its stages and statuses."""
    catalog.delete_workflow(Repository(conn), workflow_id)
    emit_event(conn, "workflow_deleted", {"workflow_id": workflow_id})
    return _deleted("Workflow", workflow_id)


@tool
def create_stage(
    conn: sqlite3.Connection, workflow_id: str, name: str, order: int
) -> dict[str, Any]:
    """Create a stage in a workflow at the given order."""
    if order < 0:
        raise ValidationError("Stage order must be a non-negative integer")
    stage = catalog.create_stage(Repository(conn), name, order, workflow_id)
    emit_event(
        conn, "stage_created", {"stage_id": stage.id, "workflow_id": workflow_id}
    )
    return stage.model_dump()


@tool
def list_stages(conn: sqlite3.Connection, workflow_id: str) -> dict[str, Any]:
    """Return a workflow's stages ordered by their order."""
    stages = catalog.list_stages_by_workflow(Repository(conn), workflow_id)
    return {"stages": [s.model_dump() for s in stages]}


@tool
def get_stage(
    conn: sqlite3.Connection, stage_id: str, workflow_id: str | None = None
) -> dict[str, Any]:
    return _scoped_stage(Repository(conn), stage_id, workflow_id).model_dump()


@tool
def update_stage(
    conn: sqlite3.Connection,
    stage_id: str,
    fields: dict[str, Any],
    workflow_id: str | None = None,
) -> dict[str, Any]:
    repo = Repository(conn)
    _scoped_stage(repo, stage_id, workflow_id)
    if fields.get("order") is not None and fields["order"] < 0:
        raise ValidationError("Stage order must be a non-negative integer")
    stage = catalog.update_stage(repo, stage_id, fields)
    emit_event(
        conn, "stage_updated", {"stage_id": stage_id, "workflow_id": stage.workflow_id}
    )
    return stage.model_dump()


@tool
def delete_stage(
    conn: sqlite3.Connection, stage_id: str, workflow_id: str | None = None
) -> dict[str, Any]:
    repo = Repository(conn)
    stage = _scoped_stage(repo, stage_id, workflow_id)
    catalog.delete_stage(repo, stage_id)
    emit_event(
        conn, "stage_deleted", {"stage_id": stage_id, "workflow_id": stage.workflow_id}
    )
    return _deleted("Workflow stage", stage_id)


@tool
def create_status(
    conn: sqlite3.Connection,
    stage_id: str,
    name: str,
    order: int,
    is_default: bool = False,
    is_completion_status: bool = False,
    workflow_id: str | None = None,
) -> dict[str, Any]:
    """Create a status in a stage."""
    if order < 0:
        raise ValidationError("Status order must be a non-negative integer")
    repo = Repository(conn)
    _scoped_stage(repo, stage_id, workflow_id)
    status = catalog.create_status(
        repo, name, order, stage_id, is_default, is_completion_status
    )
    emit_event(conn, "status_created", {"status_id": status.id, "stage_id": stage_id})
    return status.model_dump()


@tool
def list_statuses(
    conn: sqlite3.Connection, stage_id: str, workflow_id: str | None = None
) -> dict[str, Any]:
    """Return a stage's statuses ordered by their order."""
    repo = Repository(conn)
    if workflow_id is not None:
        _scoped_stage(repo, stage_id, workflow_id)
    statuses = catalog.list_statuses_by_stage(repo, stage_id)
    return {"statuses": [s.model_dump() for s in statuses]}


@tool
def get_status(
    conn: sqlite3.Connection,
    status_id: str,
    stage_id: str | None = None,
    workflow_id: str | None = None,
) -> dict[str, Any]:
    repo = Repository(conn)
    return _scoped_status(repo, status_id, stage_id, workflow_id).model_dump()


@tool
def update_status(
    conn: sqlite3.Connection,
    status_id: str,
    fields: dict[str, Any],
    stage_id: str | None = None,
    workflow_id: str | None = None,
) -> dict[str, Any]:
    repo = Repository(conn)
    _scoped_status(repo, status_id, stage_id, workflow_id)
    if fields.get("order") is not None and fields["order"] < 0:
        raise ValidationError("Status order must be a non-negative integer")
    status = catalog.update_status(repo, status_id, fields)
    emit_event(
        conn, "status_updated", {"status_id": status_id, "stage_id": status.stage_id}
    )
    return status.model_dump()


@tool
def delete_status(
    conn: sqlite3.Connection,
    status_id: str,
    stage_id: str | None = None,
    workflow_id: str | None = None,
) -> dict[str, Any]:
    repo = Repository(conn)
    status = _scoped_status(repo, status_id, stage_id, workflow_id)
    catalog.delete_status(repo, status_id)
    emit_event(
        conn, "status_deleted", {"status_id": status_id, "stage_id": status.stage_id}
    )
    return _deleted("Stage status", status_id)


# ── Project tools ─────────────────────────────────────────


def _load_project(repo: Repository, project_id: str) -> Project:
    row = repo.select_one("projects", {"id": project_id})
    if row is None:
        raise NotFoundError(f"Project with ID '{project_id}' not found")
    return to_record(Project, row)


@tool
def create_project(
    conn: sqlite3.Connection,
    name: str,
    client: str = "",
    description: str = "",
    project_type: str = "",
    client_industry: str = "",
    tech_stack: list[str] | None = None,
    team_size: str = "",
    duration: str = "",
    keywords: str = "",
    business_specification: str = "",
    workflow_id: str | None = None,
) -> dict[str, Any]:
    """Create a project whose status starts at its workflow's entry status."""
    repo = Repository(conn)
    if workflow_id:
        catalog.get_workflow(repo, workflow_id)

    initial = resolve_initial_status(repo, workflow_id)
    now = _now()
    row = repo.insert(
        "projects",
        {
            "id": _uuid(),
            "name": name,
            "client": client,
            "status": initial.name if initial else DEFAULT_PROJECT_STATUS,
            "description": description,
            "project_type": project_type,
            "client_industry": client_industry,
            "tech_stack": tech_stack or [],
            "team_size": team_size,
            "duration": duration,
            "keywords": keywords,
            "business_specification": business_specification,
            "report_generated": False,
            "workflow_id": workflow_id,
            "created_at": now,
            "updated_at": now,
        },
    )
    emit_event(conn, "project_created", {"project_id": row["id"]})
    return to_record(Project, row).model_dump()


@tool
def list_projects(conn: sqlite3.Connection) -> dict[str, Any]:
    rows = Repository(conn).select("projects", order_by="created_at", descending=True)
    return {"projects": [to_record(Project, r).model_dump() for r in rows]}


@tool
def get_project(conn: sqlite3.Connection, project_id: str) -> dict[str, Any]:
    return _load_project(Repository(conn), project_id).model_dump()


@tool
def update_project_status(
    conn: sqlite3.Connection, project_id: str, status: str
) -> dict[str, Any]:
    """Set a project's status.

    Without a workflow the status must be one of new/predicting/completed;
    with one, any non-empty status name is accepted.
    """
    repo = Repository(conn)
    project = _load_project(repo, project_id)
    if not status:
        raise ValidationError("Project status must not be empty")
    if not project.workflow_id and status not in PROJECT_STATUSES:
        raise ValidationError(
            f"Invalid project status '{status}'. "
            f"Must be one of: {', '.join(PROJECT_STATUSES)}"
        )
    rows = repo.update(
        "projects", {"id": project_id}, {"status": status, "updated_at": _now()}
    )
    emit_event(
        conn,
        "project_status_changed",
        {"project_id": project_id, "old_status": project.status, "new_status": status},
    )
    return to_record(Project, rows[0]).model_dump()


@tool
def mark_report_generated(conn: sqlite3.Connection, project_id: str) -> dict[str, Any]:
    repo = Repository(conn)
    _load_project(repo, project_id)
    rows = repo.update(
        "projects", {"id": project_id}, {"report_generated": True, "updated_at": _now()}
    )
    return to_record(Project, rows[0]).model_dump()


@tool
def check_project_completion(conn: sqlite3.Connection, project_id: str) -> dict[str, Any]:
    """Re-run completion detection for a project. Safe to repeat."""
    repo = Repository(conn)
    changed = check_and_complete_project(repo, project_id)
    if changed:
        emit_event(conn, "project_completed", {"project_id": project_id})
    project = _load_project(repo, project_id)
    return {
        "project_id": project_id,
        "status": project.status,
        "completed": project.status == COMPLETED,
        "changed": changed,
    }


# ── Task tools ────────────────────────────────────────────


def _attach_statuses(repo: Repository, tasks: list[Task]) -> list[Task]:
    """Embed each task's StageStatus, fetched in one query."""
    status_ids = {t.status_id for t in tasks if t.status_id}
    rows = repo.select("stage_statuses", {"id": status_ids}) if status_ids else []
    by_id = {r["id"]: to_record(StageStatus, r) for r in rows}
    for t in tasks:
        t.status = by_id.get(t.status_id) if t.status_id else None
    return tasks


def _load_task(repo: Repository, task_id: str) -> Task:
    row = repo.select_one("tasks", {"id": task_id})
    if row is None:
        raise NotFoundError(f"Task with ID '{task_id}' not found")
    return _attach_statuses(repo, [to_record(Task, row)])[0]


def _check_task_fields(fields: dict[str, Any]) -> None:
    """Reject unknown task fields and values a Task record cannot hold."""
    unknown = sorted(set(fields) - set(TASK_FIELDS))
    if unknown:
        raise ValidationError(
            f"Unknown task field(s): {', '.join(unknown)}",
            {"allowed": list(TASK_FIELDS)},
        )
    if "title" in fields and (not isinstance(fields["title"], str) or not fields["title"]):
        raise ValidationError("Task title must be a non-empty string")
    for name in ("description", "status_id"):
        value = fields.get(name)
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"Task {name} must be a string or null")
    extra_data = fields.get("extra_data")
    if extra_data is not None and not isinstance(extra_data, dict):
        raise ValidationError("Task extra_data must be a JSON object or null")


@tool
def create_task(
    conn: sqlite3.Connection,
    project_id: str,
    title: str,
    description: str | None = None,
    status_id: str | None = None,
    extra_data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Create a task, starting at its workflow's entry status unless one is given."""
    repo = Repository(conn)
    project = _load_project(repo, project_id)
    _check_task_fields(
        {"title": title, "description": description, "extra_data": extra_data}
    )

    if status_id is None:
        initial = resolve_initial_status(repo, project.workflow_id)
        status_id = initial.id if initial else None
    elif project.workflow_id:
        if status_id not in build_status_catalog(repo, project.workflow_id):
            raise ValidationError(
                f"Status '{status_id}' does not belong to the workflow of project '{project_id}'"
            )

    now = _now()
    row = repo.insert(
        "tasks",
        {
            "id": _uuid(),
            "project_id": project_id,
            "title": title,
            "description": description,
            "status_id": status_id,
            "extra_data": extra_data,
            "version": 1,
            "created_at": now,
            "updated_at": now,
        },
    )
    emit_event(conn, "task_created", {"task_id": row["id"], "project_id": project_id})
    return _attach_statuses(repo, [to_record(Task, row)])[0].model_dump()


@tool
def list_tasks_by_project(conn: sqlite3.Connection, project_id: str) -> dict[str, Any]:
    """Return a project's tasks, each with its resolved status."""
    repo = Repository(conn)
    _load_project(repo, project_id)
    rows = repo.select("tasks", {"project_id": project_id}, order_by=("created_at", "id"))
    tasks = _attach_statuses(repo, [to_record(Task, r) for r in rows])
    return {"tasks": [t.model_dump() for t in tasks]}


@tool
def get_task(conn: sqlite3.Connection, task_id: str) -> dict[str, Any]:
    """Return a single task with its resolved status."""
    return _load_task(Repository(conn), task_id).model_dump()


@tool
def update_task(
    conn: sqlite3.Connection,
    task_id: str,
    fields: dict[str, Any],
    expected_version: int | None = None,
    allow_unvalidated: bool = True,
) -> dict[str, Any]:
    """Update a task; a status change is validated against its workflow.

    The write is a compare-and-swap on the task's version. When the new
    status is a completion status the project is re-checked for completion
    inside the same transaction.
    """
    repo = Repository(conn)
    task = _load_task(repo, task_id)
    if expected_version is not None and expected_version != task.version:
        raise ConflictError(
            f"Task '{task_id}' is at version {task.version}, not {expected_version}",
            {"current_version": task.version},
        )
    _check_task_fields(fields)

    values = dict(fields)
    status_changed = "status_id" in values
    completes = False
    project: Project | None = None

    if status_changed:
        project = _load_project(repo, task.project_id)
        if not project.workflow_id:
            if not allow_unvalidated:
                raise ValidationError(
                    f"Project '{project.id}' has no workflow; "
                    f"status transitions cannot be validated"
                )
            logger.warning(
                "Task %s belongs to project %s without a workflow. "
                "Status transition not validated.",
                task_id,
                project.id,
            )
        else:
            status_catalog = build_status_catalog(repo, project.workflow_id)
            try:
                _, target = validate_status_transition(
                    status_catalog, task.status_id, values["status_id"]
                )
            except InvalidTransitionError as e:
                logger.info("Rejected transition for task %s: %s", task_id, e)
                raise
            completes = target.status.is_completion_status

    values["version"] = task.version + 1
    values["updated_at"] = _now()
    rows = repo.update("tasks", {"id": task_id, "version": task.version}, values)
    if not rows:
        raise ConflictError(
            f"Task '{task_id}' was modified concurrently; reload and retry",
            {"expected_version": task.version},
        )

    if status_changed:
        emit_event(
            conn,
            "task_status_changed",
            {
                "task_id": task_id,
                "project_id": task.project_id,
                "old_status_id": task.status_id,
                "new_status_id": values["status_id"],
            },
        )
    else:
        emit_event(conn, "task_updated", {"task_id": task_id, "project_id": task.project_id})

    project_completed = False
    if completes and project is not None:
        project_completed = check_and_complete_project(repo, project.id)
        if project_completed:
            emit_event(conn, "project_completed", {"project_id": project.id})

    result = _load_task(repo, task_id).model_dump()
    result["project_completed"] = project_completed
    return result


@tool
def delete_task(conn: sqlite3.Connection, task_id: str) -> dict[str, Any]:
    repo = Repository(conn)
    task = _load_task(repo, task_id)
    repo.delete("tasks", {"id": task_id})
    emit_event(conn, "task_deleted", {"task_id": task_id, "project_id": task.project_id})
    return _deleted("Task", task_id)


@tool
def get_valid_statuses(conn: sqlite3.Connection, task_id: str) -> dict[str, Any]:
    """Return the statuses a task may move to, with their stage order."""
    entries = _get_valid_statuses(Repository(conn), task_id)
    return {"task_id": task_id, "statuses": [e.as_dict() for e in entries]}
