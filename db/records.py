"""Typed records for rows crossing the persistence boundary.

Rows come out of sqlite as plain mappings with 0/1 booleans and JSON text
columns. Each record validates and decodes its row so that the catalog,
state machine and completion monitor never handle untyped dicts.
"""

import json
import sqlite3
from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, field_validator


# Statuses a project may hold when it has no workflow assigned
PROJECT_STATUSES = ("new", "predicting", "completed")

COMPLETED = "completed"
DEFAULT_PROJECT_STATUS = "new"


def _decode_json(value: Any) -> Any:
    if isinstance(value, (bytes, str)):
        return json.loads(value) if value else None
    return value


class Record(BaseModel):
    id: str
    created_at: str
    updated_at: str


class Workflow(Record):
    name: str
    organization_id: str | None = None


class WorkflowStage(Record):
    workflow_id: str
    name: str
    order: int


class StageStatus(Record):
    stage_id: str
    name: str
    order: int
    is_default: bool = False
    is_completion_status: bool = False


class Task(Record):
    project_id: str
    title: str
    description: str | None = None
    status_id: str | None = None
    extra_data: dict[str, Any] | None = None
    version: int = 1
    status: StageStatus | None = None

    @field_validator("extra_data", mode="before")
    @classmethod
    def decode_extra_data(cls, value: Any) -> Any:
        return _decode_json(value)


class Project(Record):
    name: str
    client: str = ""
    status: str = DEFAULT_PROJECT_STATUS
    description: str = ""
    project_type: str = ""
    client_industry: str = ""
    tech_stack: list[str] = []
    team_size: str = ""
    duration: str = ""
    keywords: str = ""
    business_specification: str = ""
    report_generated: bool = False
    workflow_id: str | None = None

    @field_validator("tech_stack", mode="before")
    @classmethod
    def decode_tech_stack(cls, value: Any) -> Any:
        decoded = _decode_json(value)
        return [] if decoded is None else decoded


class StageWithStatuses(WorkflowStage):
    statuses: list[StageStatus] = []


class WorkflowCatalog(Workflow):
    """A workflow with its ordered stages, each with its ordered statuses."""

    stages: list[StageWithStatuses] = []


R = TypeVar("R", bound=BaseModel)


def to_record(model: type[R], row: Mapping[str, Any] | sqlite3.Row) -> R:
    """Validate a raw row into a record type."""
    return model.model_validate(dict(row))
