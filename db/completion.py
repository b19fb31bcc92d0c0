"""Project completion detection.

A project with a workflow is completed once every one of its tasks holds
a completion status from any stage of that workflow. Re-running the
check with unchanged tasks does not write again.
"""

import logging
from datetime import datetime, timezone

from db.catalog import list_stages_by_workflow, list_statuses_by_stage
from db.errors import NotFoundError
from db.records import COMPLETED, Project, Task, to_record
from db.repository import Repository

logger = logging.getLogger(__name__)


def completion_status_ids(repo: Repository, workflow_id: str) -> set[str]:
    """Ids of every completion status across all stages of a workflow."""
    ids: set[str] = set()
    for stage in list_stages_by_workflow(repo, workflow_id):
        for status in list_statuses_by_stage(repo, stage.id):
            if status.is_completion_status:
                ids.add(status.id)
    return ids


def check_and_complete_project(repo: Repository, project_id: str) -> bool:
    """Mark the project completed if all its tasks are done.

    Returns True only when this call changed the project's status.
    No-op for projects without a workflow and for projects with no tasks.
    """
    row = repo.select_one("projects", {"id": project_id})
    if row is None:
        raise NotFoundError(f"Project with ID '{project_id}' not found")
    project = to_record(Project, row)
    if not project.workflow_id:
        return False

    tasks = [to_record(Task, r) for r in repo.select("tasks", {"project_id": project_id})]
    if not tasks:
        return False

    done_ids = completion_status_ids(repo, project.workflow_id)
    if not all(t.status_id in done_ids for t in tasks):
        return False

    if project.status == COMPLETED:
        return False

    repo.update(
        "projects",
        {"id": project_id},
        {"status": COMPLETED, "updated_at": datetime.now(timezone.utc).isoformat()},
    )
    logger.info("Project %s automatically marked as completed", project_id)
    return True
