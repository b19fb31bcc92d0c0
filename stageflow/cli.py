"""CLI entry point for stageflow.

Commands:
    stageflow init     — write a starter config in the current directory
    stageflow migrate  — create or upgrade the database schema
    stageflow serve    — start the REST API server
    stageflow mcp      — start the MCP server (stdio transport)
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

import click

from stageflow.config import CONFIG_FILENAME, DEFAULTS, ConfigError, load_config

DEFAULT_CONFIG: dict[str, Any] = {
    "db_path": "~/.stageflow/stageflow.db",
    **DEFAULTS,
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _load_or_exit(config_path: str | None) -> dict[str, Any]:
    try:
        return load_config(config_path)
    except ConfigError as e:
        click.echo(f"Config error: {e}", err=True)
        sys.exit(1)


@click.group()
def main() -> None:
    """stageflow: workflow-driven task status tracking."""


@main.command()
def init() -> None:
    """Create a starter stageflow.config.json."""
    config_path = Path.cwd() / CONFIG_FILENAME
    if config_path.exists():
        click.echo(f"Config already exists: {config_path}")
        return

    config_path.write_text(json.dumps(DEFAULT_CONFIG, indent=2) + "\n")
    click.echo(f"Created {config_path}")


@main.command()
@click.option("--config", "config_path", default=None, help="Path to config file")
def migrate(config_path: str | None) -> None:
    """Create or upgrade the database schema."""
    from db.migrations import init_db

    config = _load_or_exit(config_path)
    conn = init_db(config["db_path"])
    conn.close()
    click.echo(f"Database ready: {config['db_path']}")


@main.command()
@click.option("--config", "config_path", default=None, help="Path to config file")
@click.option("--host", default=None, help="Override the configured host")
@click.option("--port", default=None, type=int, help="Override the configured port")
def serve(config_path: str | None, host: str | None, port: int | None) -> None:
    """Start the stageflow API server."""
    import uvicorn

    from api.app import create_app
    from db.migrations import init_db

    config = _load_or_exit(config_path)
    logging.basicConfig(level=config["log_level"], format=LOG_FORMAT)

    init_db(config["db_path"]).close()
    app = create_app(db_path=config["db_path"], config=config)
    uvicorn.run(
        app,
        host=host or config["host"],
        port=port or config["port"],
        log_level=config["log_level"].lower(),
    )


@main.command()
@click.option("--config", "config_path", default=None, help="Path to config file")
def mcp(config_path: str | None) -> None:
    """Start the stageflow MCP server (stdio transport)."""
    # Resolve db_path from env, config, or default
    db_path = os.environ.get("STAGEFLOW_DB")
    allow_unvalidated = True
    try:
        config = load_config(config_path)
    except ConfigError:
        config = None
    if config is not None:
        db_path = db_path or config["db_path"]
        allow_unvalidated = config["allow_unvalidated_transitions"]
    if db_path is None:
        db_path = str(Path(DEFAULT_CONFIG["db_path"]).expanduser())

    # stdout carries the protocol; logs go to stderr
    logging.basicConfig(
        level=config["log_level"] if config else "INFO",
        format=LOG_FORMAT,
        stream=sys.stderr,
    )

    from stageflow.mcp.server import run_server

    run_server(db_path=db_path, allow_unvalidated=allow_unvalidated)
