"""Pydantic request/response models for the stageflow API.

Rows returned by the API are the records in db.records; this module holds
the request bodies and the few responses that are not rows.
"""

from typing import Any

from pydantic import BaseModel, Field

from db.records import Task


# ── Request models ──────────────────────────────────────


class CreateWorkflowRequest(BaseModel):
    name: str = Field(min_length=1)
    organization_id: str | None = None


class UpdateWorkflowRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    organization_id: str | None = None


class CreateStageRequest(BaseModel):
    name: str = Field(min_length=1)
    order: int = Field(ge=0)
    workflow_id: str | None = None


class UpdateStageRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    order: int | None = Field(default=None, ge=0)
    workflow_id: str | None = None


class CreateStatusRequest(BaseModel):
    name: str = Field(min_length=1)
    order: int = Field(ge=0)
    stage_id: str | None = None
    is_default: bool = False
    is_completion_status: bool = False


class UpdateStatusRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    order: int | None = Field(default=None, ge=0)
    stage_id: str | None = None
    is_default: bool | None = None
    is_completion_status: bool | None = None


class CreateProjectRequest(BaseModel):
    name: str = Field(min_length=1)
    client: str = ""
    description: str = ""
    project_type: str = ""
    client_industry: str = ""
    tech_stack: list[str] = []
    team_size: str = ""
    duration: str = ""
    keywords: str = ""
    business_specification: str = ""
    workflow_id: str | None = None


class UpdateProjectStatusRequest(BaseModel):
    status: str = Field(min_length=1)


class CreateTaskRequest(BaseModel):
    project_id: str
    title: str = Field(min_length=1)
    description: str | None = None
    status_id: str | None = None
    extra_data: dict[str, Any] | None = None


class UpdateTaskRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    status_id: str | None = None
    extra_data: dict[str, Any] | None = None
    version: int | None = None


# ── Response models ─────────────────────────────────────


class DeleteResponse(BaseModel):
    success: bool
    message: str


class TaskUpdateResponse(Task):
    project_completed: bool = False


class CompletionCheckResponse(BaseModel):
    project_id: str
    status: str
    completed: bool
    changed: bool


class ValidStatus(BaseModel):
    id: str
    stage_id: str
    name: str
    order: int
    is_default: bool
    is_completion_status: bool
    stage_name: str
    stage_order: int


class ValidStatusesResponse(BaseModel):
    task_id: str
    statuses: list[ValidStatus]
