"""FastAPI dependency injection — pull singletons from app.state."""

from __future__ import annotations

from fastapi import Request

from turngraph.agent.runner import TurnExecutor
from turngraph.memory.checkpoints import CheckpointStore


def get_executor(request: Request) -> TurnExecutor:
    """Get TurnExecutor singleton from app state."""
    return request.app.state.container.executor


def get_store(request: Request) -> CheckpointStore | None:
    """Get CheckpointStore from app state (None when checkpoints are disabled)."""
    return request.app.state.container.store
