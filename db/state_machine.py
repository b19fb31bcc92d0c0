"""Task status transition state machine for stageflow.

A task's status is a position in a two-level ordering taken from its
project's workflow: the stage's ``order`` first, then the status's
``order`` within that stage.

Movement rules:
    - Later stage: any status of any later stage is allowed
    - Same stage: a status with equal or higher order is allowed
    - Earlier stage: always rejected, whatever the status order
    - Lower order within the same stage: rejected
    - Both statuses must belong to the task's workflow

Tasks whose project has no workflow are not validated here; the caller
decides whether that path is allowed.

Import validate_status_transition() from here. Do not duplicate this logic.
"""

from dataclasses import dataclass
from typing import Any

from db.catalog import list_stages_by_workflow, list_statuses_by_stage
from db.errors import InvalidTransitionError, NotFoundError
from db.records import Project, StageStatus, Task, to_record
from db.repository import Repository


@dataclass(frozen=True)
class CatalogEntry:
    """A status with the order of the stage that owns it."""

    status: StageStatus
    stage_name: str
    stage_order: int

    @property
    def id(self) -> str:
        return self.status.id

    @property
    def name(self) -> str:
        return self.status.name

    @property
    def order(self) -> int:
        return self.status.order

    def as_dict(self) -> dict[str, Any]:
        result = self.status.model_dump()
        result["stage_name"] = self.stage_name
        result["stage_order"] = self.stage_order
        return result


def build_status_catalog(
    repo: Repository, workflow_id: str
) -> dict[str, CatalogEntry]:
    """Map every status id of a workflow to its catalog entry, in catalog order."""
    catalog: dict[str, CatalogEntry] = {}
    for stage in list_stages_by_workflow(repo, workflow_id):
        for status in list_statuses_by_stage(repo, stage.id):
            catalog[status.id] = CatalogEntry(
                status=status, stage_name=stage.name, stage_order=stage.order
            )
    return catalog


def is_valid_transition(current: CatalogEntry, target: CatalogEntry) -> bool:
    """True if target is not behind current in (stage order, status order)."""
    if target.stage_order != current.stage_order:
        return target.stage_order > current.stage_order
    return target.order >= current.order


def validate_status_transition(
    catalog: dict[str, CatalogEntry],
    current_status_id: str | None,
    target_status_id: str | None,
) -> tuple[CatalogEntry, CatalogEntry]:
    """Validate a move between two statuses of one workflow catalog.

    Returns the (current, target) entries on success.
    Raises InvalidTransitionError if the move is invalid.
    """
    current = catalog.get(current_status_id) if current_status_id else None
    target = catalog.get(target_status_id) if target_status_id else None
    if current is None or target is None:
        raise InvalidTransitionError(
            "Invalid current or target status ID.",
            {"current_status_id": current_status_id, "target_status_id": target_status_id},
        )

    if target.stage_order < current.stage_order:
        raise InvalidTransitionError(
            f"Invalid status transition from '{current.name}' to '{target.name}'. "
            f"Cannot move to an earlier stage."
        )

    if target.stage_order == current.stage_order and target.order < current.order:
        raise InvalidTransitionError(
            f"Invalid status transition from '{current.name}' to '{target.name}'. "
            f"Cannot move to a status with a lower order in the same stage."
        )

    return current, target


def get_valid_statuses(repo: Repository, task_id: str) -> list[CatalogEntry]:
    """Return the statuses a task may move to, in catalog order.

    Empty when the task has no workflow context or its current status is
    outside the workflow catalog.
    """
    row = repo.select_one("tasks", {"id": task_id})
    if row is None:
        raise NotFoundError(f"Task with ID '{task_id}' not found")
    task = to_record(Task, row)

    row = repo.select_one("projects", {"id": task.project_id})
    project = to_record(Project, row) if row is not None else None
    if project is None or not project.workflow_id:
        return []

    catalog = build_status_catalog(repo, project.workflow_id)
    current = catalog.get(task.status_id) if task.status_id else None
    if current is None:
        return []

    return [entry for entry in catalog.values() if is_valid_transition(current, entry)]
