"""Database table definitions for stageflow.

The schema is defined as raw DDL to keep migrations simple and explicit.
Composition (workflow -> stages -> statuses) cascades on delete; task
status references are validated by the application, not by a foreign key.
"""

TABLES = {
    "workflows": """
        CREATE TABLE IF NOT EXISTS workflows (
            id              TEXT PRIMARY KEY,
            name            TEXT NOT NULL,
            organization_id TEXT,
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL
        )
    """,
    "workflow_stages": """
        CREATE TABLE IF NOT EXISTS workflow_stages (
            id          TEXT PRIMARY KEY,
            workflow_id TEXT NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
            name        TEXT NOT NULL,
            "order"     INTEGER NOT NULL DEFAULT 0,
            created_at  TEXT NOT NULL,
            updated_at  TEXT NOT NULL
        )
    """,
    "stage_statuses": """
        CREATE TABLE IF NOT EXISTS stage_statuses (
            id                   TEXT PRIMARY KEY,
            stage_id             TEXT NOT NULL REFERENCES workflow_stages(id) ON DELETE CASCADE,
            name                 TEXT NOT NULL,
            "order"              INTEGER NOT NULL DEFAULT 0,
            is_default           INTEGER NOT NULL DEFAULT 0,
            is_completion_status INTEGER NOT NULL DEFAULT 0,
            created_at           TEXT NOT NULL,
            updated_at           TEXT NOT NULL
        )
    """,
    "projects": """
        CREATE TABLE IF NOT EXISTS projects (
            id                     TEXT PRIMARY KEY,
            name                   TEXT NOT NULL,
            client                 TEXT NOT NULL DEFAULT '',
            status                 TEXT NOT NULL DEFAULT 'new',
            description            TEXT NOT NULL DEFAULT '',
            project_type           TEXT NOT NULL DEFAULT '',
            client_industry        TEXT NOT NULL DEFAULT '',
            tech_stack             TEXT NOT NULL DEFAULT '[]',
            team_size              TEXT NOT NULL DEFAULT '',
            duration               TEXT NOT NULL DEFAULT '',
            keywords               TEXT NOT NULL DEFAULT '',
            business_specification TEXT NOT NULL DEFAULT '',
            report_generated       INTEGER NOT NULL DEFAULT 0,
            workflow_id            TEXT REFERENCES workflows(id),
            created_at             TEXT NOT NULL,
            updated_at             TEXT NOT NULL
        )
    """,
    "tasks": """
        CREATE TABLE IF NOT EXISTS tasks (
            id          TEXT PRIMARY KEY,
            project_id  TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            title       TEXT NOT NULL,
            description TEXT,
            status_id   TEXT,
            extra_data  TEXT,
            version     INTEGER NOT NULL DEFAULT 1,
            created_at  TEXT NOT NULL,
            updated_at  TEXT NOT NULL
        )
    """,
    "events": """
        CREATE TABLE IF NOT EXISTS events (
            id          TEXT PRIMARY KEY,
            type        TEXT NOT NULL,
            payload     TEXT NOT NULL,
            created_at  TEXT NOT NULL,
            consumed    INTEGER NOT NULL DEFAULT 0
        )
    """,
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_stages_workflow ON workflow_stages(workflow_id)",
    "CREATE INDEX IF NOT EXISTS idx_statuses_stage ON stage_statuses(stage_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status_id)",
    "CREATE INDEX IF NOT EXISTS idx_events_consumed ON events(consumed)",
]

# Ordered list for creation — respects foreign key dependencies
TABLE_CREATION_ORDER = [
    "workflows",
    "workflow_stages",
    "stage_statuses",
    "projects",
    "tasks",
    "events",
]
