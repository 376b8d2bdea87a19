"""FastAPI application factory."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from turngraph import __version__
from turngraph.api.routes import router
from turngraph.container import build_container
from turngraph.core.config.loader import load_config


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: Config → ServiceContainer → janitor. Shutdown: drain writes, stop janitor."""
    config = load_config()
    container = build_container(config)
    app.state.container = container

    janitor_task = None
    if container.janitor is not None:
        janitor_task = asyncio.create_task(container.janitor.start())

    logger.info(f"turngraph API started — model: {config.llm.model}")
    yield

    if janitor_task is not None:
        janitor_task.cancel()
    await container.shutdown()
    logger.info("turngraph API shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="turngraph API",
        description="Conversation orchestration engine",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
