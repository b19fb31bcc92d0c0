"""FastAPI dependency injection and DB helpers for stageflow."""

import json
import sqlite3
from collections.abc import Generator
from typing import Any

from db.client import get_connection
from stageflow.mcp.events import PROJECT_EVENTS, TASK_EVENTS
from stageflow.mcp.tools import get_project, get_task


# Module-level DB path — set by app startup
_db_path: str = ""


def set_db_path(path: str) -> None:
    """Set the database path used by the DB dependency."""
    global _db_path  # noqa: PLW0603
    _db_path = path


def get_db() -> Generator[sqlite3.Connection, None, None]:
    """FastAPI dependency that yields a DB connection per request."""
    conn = get_connection(_db_path)
    try:
        yield conn
    finally:
        conn.close()


def get_unconsumed_events(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    """Fetch all unconsumed events from the events table."""
    rows = conn.execute(
        "SELECT id, type, payload, created_at FROM events WHERE consumed = 0 ORDER BY created_at"
    ).fetchall()
    return [
        {
            "id": row["id"],
            "type": row["type"],
            "payload": json.loads(row["payload"]),
            "created_at": row["created_at"],
        }
        for row in rows
    ]


def mark_event_consumed(conn: sqlite3.Connection, event_id: str) -> None:
    """Mark an event as consumed."""
    conn.execute("UPDATE events SET consumed = 1 WHERE id = ?", (event_id,))
    conn.commit()


def enrich_event_payload(
    conn: sqlite3.Connection, event: dict[str, Any]
) -> dict[str, Any]:
    """Build a websocket event with full object payload, not just IDs."""
    event_type = event["type"]
    payload = event["payload"]

    if event_type in TASK_EVENTS:
        task_id = payload.get("task_id")
        if task_id:
            task = get_task(conn, task_id)
            if "error" not in task:
                return {"type": event_type, "payload": task}

    elif event_type in PROJECT_EVENTS:
        project_id = payload.get("project_id")
        if project_id:
            project = get_project(conn, project_id)
            if "error" not in project:
                return {"type": event_type, "payload": project}

    # Fallback: return raw payload
    return {"type": event_type, "payload": payload}
