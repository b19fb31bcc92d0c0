"""FastAPI application for stageflow."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.deps import set_db_path
from api.routes import router, set_config
from api.ws import broadcast_events


def create_app(db_path: str, config: dict[str, Any] | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_path: Path to the SQLite database.
        config: Full stageflow config dict. Controls whether status updates
                on projects without a workflow are accepted unvalidated.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        broadcaster = asyncio.create_task(broadcast_events(db_path))

        yield

        broadcaster.cancel()
        try:
            await broadcaster
        except asyncio.CancelledError:
            pass

    set_db_path(db_path)
    set_config(config)

    app = FastAPI(title="stageflow", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    return app
