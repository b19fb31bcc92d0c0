"""Event emission for stageflow.

Every catalog, project and task write records an event row in the same
transaction as the write. The API server polls these rows and pushes them
to websocket clients; task and project events are sent with the full
record attached.
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

CATALOG_EVENTS = (
    "workflow_created",
    "workflow_updated",
    "workflow_deleted",
    "stage_created",
    "stage_updated",
    "stage_deleted",
    "status_created",
    "status_updated",
    "status_deleted",
)

PROJECT_EVENTS = (
    "project_created",
    "project_status_changed",
    "project_completed",
)

# task_deleted is left out: a deleted task has no record to attach
TASK_EVENTS = (
    "task_created",
    "task_updated",
    "task_status_changed",
)

EVENT_TYPES = frozenset(CATALOG_EVENTS + PROJECT_EVENTS + TASK_EVENTS + ("task_deleted",))


def emit_event(
    conn: sqlite3.Connection,
    event_type: str,
    payload: dict[str, Any],
) -> str:
    """Insert an event row and return its ID.

    Does not commit; the tool that made the write owns the transaction.

    Raises:
        ValueError: If event_type is not one of EVENT_TYPES.
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event type '{event_type}'")

    event_id = str(uuid.uuid4())
    conn.execute(
        "INSERT INTO events (id, type, payload, created_at) VALUES (?, ?, ?, ?)",
        (
            event_id,
            event_type,
            json.dumps(payload),
            datetime.now(timezone.utc).isoformat(),
        ),
    )
    logger.debug("Recorded %s event %s", event_type, event_id)
    return event_id
