"""API routes — turns, threads, checkpoints, health."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from turngraph import __version__
from turngraph.agent.runner import TurnExecutor
from turngraph.api.deps import get_executor, get_store
from turngraph.memory.checkpoints import CheckpointStore
from turngraph.memory.models import (
    CheckpointSummary,
    HealthResponse,
    PendingWrite,
    ThreadState,
    TurnEnvelope,
    TurnResult,
)

router = APIRouter()


@router.post("/turns", response_model=TurnResult)
async def run_turn(
    body: TurnEnvelope,
    executor: TurnExecutor = Depends(get_executor),
):
    """Process one inbound message. Always answers, even on failure."""
    return await executor.execute(body.request, body.options)


@router.get("/health", response_model=HealthResponse)
async def health(store: CheckpointStore | None = Depends(get_store)):
    """Health check."""
    return HealthResponse(
        status="ok",
        version=__version__,
        checkpoints_ready=store is not None and store.is_ready(),
    )


@router.get("/threads", response_model=list[ThreadState])
async def list_threads(
    limit: int = Query(default=50, ge=1, le=500),
    store: CheckpointStore | None = Depends(get_store),
):
    """Threads with recent checkpoints."""
    if store is None:
        return []
    return store.get_active_threads(limit=limit)


@router.get("/threads/{thread_id}/checkpoints", response_model=list[CheckpointSummary])
async def list_checkpoints(
    thread_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    store: CheckpointStore | None = Depends(get_store),
):
    """Checkpoints of a thread, newest first."""
    if store is None:
        return []
    return [
        CheckpointSummary(
            checkpoint_id=t.checkpoint.id,
            parent_checkpoint_id=t.parent_checkpoint_id,
            source=t.metadata.source,
            step=t.metadata.step,
            has_response=bool(t.checkpoint.channel_values.get("final_response")),
            created_at=t.created_at,
        )
        for t in store.list(thread_id, limit=limit)
    ]


@router.get(
    "/threads/{thread_id}/checkpoints/{checkpoint_id}/writes",
    response_model=list[PendingWrite],
)
async def list_writes(
    thread_id: str,
    checkpoint_id: str,
    store: CheckpointStore | None = Depends(get_store),
):
    """Pending writes attached to a checkpoint."""
    if store is None or store.get(thread_id, checkpoint_id) is None:
        raise HTTPException(status_code=404, detail="Checkpoint not found")
    return store.list_writes(thread_id, checkpoint_id)


@router.delete("/threads/{thread_id}")
async def delete_thread(
    thread_id: str,
    store: CheckpointStore | None = Depends(get_store),
):
    """Forget every checkpoint of a thread."""
    deleted = store.delete_thread(thread_id) if store is not None else 0
    return {"thread_id": thread_id, "deleted": deleted}
