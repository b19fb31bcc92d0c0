"""Database connection helper for stageflow.

Connections are opened per request (API), per poll cycle (broadcaster)
or once per process (MCP server), so several may write at the same time.
"""

import sqlite3
from pathlib import Path

# Seconds a writer waits on a locked database before sqlite raises
BUSY_TIMEOUT = 5.0


def get_connection(
    db_path: str | Path, timeout: float = BUSY_TIMEOUT
) -> sqlite3.Connection:
    """Create a new SQLite connection with WAL mode and foreign keys enabled.

    Foreign keys are required for stage and status cascades.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    # FastAPI runs sync handlers in a threadpool
    conn = sqlite3.connect(str(db_path), timeout=timeout, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn
