"""Initial status resolution for new projects and tasks.

Project creation uses the resolved status's name (or "new"); task
creation uses its id (or None). Both go through resolve_initial_status().
Do not duplicate this logic.
"""

from db.catalog import list_stages_by_workflow, list_statuses_by_stage
from db.records import StageStatus
from db.repository import Repository


def resolve_initial_status(
    repo: Repository, workflow_id: str | None
) -> StageStatus | None:
    """Return the entry status of a workflow, or None when there is none.

    The entry status is the first ``is_default`` status of the lowest-order
    stage, else that stage's first status by order.
    """
    if not workflow_id:
        return None

    stages = list_stages_by_workflow(repo, workflow_id)
    if not stages:
        return None

    statuses = list_statuses_by_stage(repo, stages[0].id)
    for status in statuses:
        if status.is_default:
            return status
    return statuses[0] if statuses else None
