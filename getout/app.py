"""FastAPI application factory and configuration."""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import SQLModel

from . import models  # noqa: F401 - ensure models are registered with SQLModel
from .api import register_routes
from .core import ALLOWED_CORS_ORIGINS, DB_RESET, LEADERBOARD_REFRESH_SECONDS, LOG_FORMAT, LOG_LEVEL, engine
from .core.logging import setup_logging
from .errors import setup_error_handlers
from .services import leaderboard

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if DB_RESET:
        logger.warning("database_reset")
        SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)

    refresher = None
    if app.state.run_refresher:
        refresher = asyncio.create_task(
            leaderboard.run_refresher(engine, LEADERBOARD_REFRESH_SECONDS)
        )
    logger.info("app_started", refresher=refresher is not None)
    yield

    if refresher is not None:
        refresher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await refresher
    logger.info("app_stopped")


def create_app(run_refresher: bool = True) -> FastAPI:
    setup_logging(LOG_LEVEL, LOG_FORMAT)

    app = FastAPI(title="GetOut.space API", version="1.0.0", lifespan=lifespan)
    app.state.run_refresher = run_refresher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    setup_error_handlers(app)
    register_routes(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("getout.app:app", host="127.0.0.1", port=3000, reload=True)
