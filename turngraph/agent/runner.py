"""TurnExecutor — resilience wrapper between callers, the graph and checkpoints."""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any
from weakref import WeakValueDictionary

from loguru import logger

from turngraph.agent.graph import GraphExecutor
from turngraph.agent.state import (
    ConversationState,
    create_initial_state,
    history_to_messages,
    now_iso,
    turn_trace,
)
from turngraph.core.collaborators import (
    ContextLoader,
    DeadLetterEntry,
    DeadLetterSink,
    OutputSanitizer,
    RateLimiter,
)
from turngraph.core.config.schema import Config
from turngraph.core.errors import TRANSIENT_ERRORS, ContextLoadError
from turngraph.memory.checkpoints import CheckpointStore
from turngraph.memory.models import (
    Checkpoint,
    CheckpointMetadata,
    PendingWrite,
    TurnContext,
    TurnOptions,
    TurnRequest,
    TurnResult,
)
from turngraph.memory.schema import project_channel_values, restore_channel_values

# Restored from a checkpoint on resume; everything else comes from the live request.
_RESUMABLE = frozenset(
    {
        "messages",
        "agent_trace",
        "control",
        "current_agent",
        "next_agent",
        "routing_reason",
        "handoff_reason",
        "detected_intent",
        "detected_signals",
        "extracted_data",
        "score_change",
        "booking_result",
        "tokens_used",
        "errors",
        "turn_trace_start",
    }
)


@dataclass
class _Chain:
    """Parent link and progress of the checkpoints written during one turn.

    ``snapshot`` holds the channel values of the previous checkpoint (or the
    turn input); the difference to the next snapshot is that step's writes.
    ``versions`` counts how many checkpoints in the chain wrote each channel.
    """

    parent_id: str | None = None
    persisted_steps: int = 0
    written: set[str] = field(default_factory=set)
    snapshot: dict[str, Any] = field(default_factory=dict)
    versions: dict[str, int] = field(default_factory=dict)


class TurnExecutor:
    """
    Request-scoped orchestrator around the compiled graph.

    Flow:
        1. Rate limit check (optional collaborator)
        2. Context: request fields, else ContextLoader
        3. Resume (opt-in): replay a finished checkpoint of the same message,
           restore partial progress, or continue the thread with a new message
        4. Run graph; checkpoint each node visit in the background
        5. Map final state → TurnResult, sanitize outbound text

    Errors never escape ``execute``: transient failures try checkpoint
    recovery, everything else returns the fallback response pre-escalated.
    """

    def __init__(
        self,
        config: Config,
        graph,
        store: CheckpointStore | None = None,
        *,
        rate_limiter: RateLimiter | None = None,
        dead_letter: DeadLetterSink | None = None,
        sanitizer: OutputSanitizer | None = None,
        context_loader: ContextLoader | None = None,
    ):
        self.config = config
        self.graph = GraphExecutor(graph, config)
        self.store = store
        self.rate_limiter = rate_limiter
        self.dead_letter = dead_letter
        self.sanitizer = sanitizer
        self.context_loader = context_loader
        self._turn_locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()
        self._write_locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()
        self._pending: dict[str, set[asyncio.Task]] = {}

    async def execute(
        self,
        request: TurnRequest,
        options: TurnOptions | None = None,
    ) -> TurnResult:
        """Process one inbound message and return the turn result."""
        options = options or TurnOptions()
        started = time.perf_counter()

        if self.rate_limiter is not None:
            decision = await self.rate_limiter.check(request.tenant_id, request.conversation_id)
            if not decision.allowed:
                logger.warning(
                    f"Rate limit exceeded for tenant {request.tenant_id} "
                    f"(retry after {decision.retry_after_ms} ms)"
                )
                return TurnResult(
                    success=False,
                    response=self.config.orchestrator.rate_limited_response,
                    intent="RATE_LIMITED",
                    processing_time_ms=_elapsed_ms(started),
                    errors=[f"rate limit exceeded, retry after {decision.retry_after_ms} ms"],
                )

        if not self.config.orchestrator.serialize_turns:
            return await self._execute(request, options, started)
        async with _lock_for(self._turn_locks, request.conversation_id):
            return await self._execute(request, options, started)

    async def drain(self) -> None:
        """Wait for outstanding background checkpoint writes."""
        while self._pending:
            for thread_id in list(self._pending):
                await self._settle(thread_id)

    async def _settle(self, thread_id: str) -> None:
        """Wait until every checkpoint write scheduled for ``thread_id`` has landed."""
        while self._pending.get(thread_id):
            await asyncio.gather(*list(self._pending[thread_id]), return_exceptions=True)

    # ── turn ───────────────────────────────────────────────

    async def _execute(
        self,
        request: TurnRequest,
        options: TurnOptions,
        started: float,
    ) -> TurnResult:
        thread_id = request.conversation_id
        try:
            context = await self._load_context(request)
        except ContextLoadError as e:
            return await self._fail(request, e, "context", started)

        checkpointing = options.enable_checkpointing and self._store_ready()
        chain = _Chain()
        state: ConversationState | None = None

        if options.resume_from_checkpoint and self._store_ready():
            await self._settle(thread_id)
            latest = await asyncio.to_thread(self.store.get_latest, thread_id)
            if latest is not None:
                values = restore_channel_values(latest.checkpoint.channel_values)
                same_message = values.get("current_message") == request.current_message
                if same_message and values.get("final_response"):
                    logger.info(f"Replaying finished turn for {thread_id} ({latest.checkpoint.id})")
                    return self._finish(_to_result(values, started, replayed=True))
                if same_message:
                    logger.info(f"Resuming {thread_id} from checkpoint {latest.checkpoint.id}")
                    state = self._resume_state(request, context, values)
                else:
                    logger.info(f"New message on {thread_id}, continuing after {latest.checkpoint.id}")
                    state = self._continue_state(request, context, values)
                chain.parent_id = latest.checkpoint.id
                chain.versions = dict(latest.checkpoint.channel_versions)

        if state is None:
            state = self._fresh_state(request, context)
        chain.snapshot = project_channel_values(dict(state))

        on_step = None
        if checkpointing and self.config.checkpoints.checkpoint_every_step:
            async def on_step(values: ConversationState) -> None:
                self._checkpoint(thread_id, values, values.get("current_agent") or "loop", chain)

        try:
            final = await self.graph.run(state, on_step)
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Transient failure on {thread_id}: {e}")
            recovered = await self._recover(request, chain, started)
            if recovered is not None:
                return self._finish(recovered)
            return await self._fail(request, e, "transient", started)
        except Exception as e:
            return await self._fail(request, e, "graph", started)

        if checkpointing and len(final.get("agent_trace") or []) > chain.persisted_steps:
            self._checkpoint(thread_id, final, "finalize", chain)

        result = _to_result(final, started)
        if not result.response:
            result = result.model_copy(
                update={"response": self.config.orchestrator.fallback_response, "escalated": True}
            )
        logger.info(
            f"Turn done for {thread_id}: agents={result.agents_used}, "
            f"escalated={result.escalated}, {result.processing_time_ms}ms"
        )
        return self._finish(result)

    async def _load_context(self, request: TurnRequest) -> TurnContext:
        if request.tenant_context is not None:
            return TurnContext(
                tenant=request.tenant_context,
                lead=request.lead_context,
                conversation=request.conversation_context,
                business=request.business_context,
            )
        if self.context_loader is None:
            raise ContextLoadError(f"no tenant context for {request.tenant_id}")
        try:
            return await self.context_loader.load(request)
        except Exception as e:
            raise ContextLoadError(f"context load failed for tenant {request.tenant_id}: {e}") from e

    def _fresh_state(self, request: TurnRequest, context: TurnContext) -> ConversationState:
        return create_initial_state(
            current_message=request.current_message,
            tenant=context.tenant,
            channel=request.channel,
            lead=context.lead,
            conversation=context.conversation,
            business_context=context.business,
            messages=history_to_messages(request.previous_messages),
        )

    def _resume_state(
        self,
        request: TurnRequest,
        context: TurnContext,
        values: dict[str, Any],
    ) -> ConversationState:
        """Live context and request, with control/message/trace state from the checkpoint."""
        state: dict[str, Any] = dict(self._fresh_state(request, context))
        state.update({k: v for k, v in values.items() if k in _RESUMABLE})
        state["resumed"] = True
        return state  # type: ignore[return-value]

    def _continue_state(
        self,
        request: TurnRequest,
        context: TurnContext,
        values: dict[str, Any],
    ) -> ConversationState:
        """Fresh turn whose history is the thread recorded in the checkpoint."""
        state: dict[str, Any] = dict(self._fresh_state(request, context))
        for key in ("messages", "agent_trace"):
            if key in values:
                state[key] = values[key]
        return state  # type: ignore[return-value]

    async def _recover(
        self,
        request: TurnRequest,
        chain: _Chain,
        started: float,
    ) -> TurnResult | None:
        """One recovery pass over the latest checkpoint not written by this attempt.

        Only a finished checkpoint for the same inbound message counts, e.g. an
        earlier delivery of this request that completed.
        """
        if not self._store_ready():
            return None
        await self._settle(request.conversation_id)
        recent = await asyncio.to_thread(
            self.store.list, request.conversation_id, len(chain.written) + 1
        )
        previous = next((t for t in recent if t.checkpoint.id not in chain.written), None)
        if previous is None:
            return None
        values = restore_channel_values(previous.checkpoint.channel_values)
        if not values.get("final_response") or values.get("current_message") != request.current_message:
            return None
        logger.info(f"Recovered turn for {request.conversation_id} from {previous.checkpoint.id}")
        result = _to_result(values, started)
        return result.model_copy(update={"recovered": True})

    async def _fail(
        self,
        request: TurnRequest,
        error: BaseException,
        stage: str,
        started: float,
    ) -> TurnResult:
        """Hard failure: fallback response, escalated, handed to the dead-letter sink."""
        logger.error(f"Turn failed for {request.conversation_id} ({stage}): {error}")
        if self.dead_letter is not None:
            entry = DeadLetterEntry(
                tenant_id=request.tenant_id,
                conversation_id=request.conversation_id,
                payload=request.model_dump(mode="json"),
                error=f"{type(error).__name__}: {error}",
                stage=stage,
            )
            try:
                await self.dead_letter.enqueue(entry)
            except Exception as e:
                logger.error(f"Dead-letter enqueue failed: {e}")

        return TurnResult(
            success=False,
            response=self.config.orchestrator.fallback_response,
            escalated=True,
            escalation_reason=f"{stage} failure",
            processing_time_ms=_elapsed_ms(started),
            errors=[f"{type(error).__name__}: {error}"],
        )

    def _finish(self, result: TurnResult) -> TurnResult:
        if self.sanitizer is None or not result.response:
            return result
        outcome = self.sanitizer.sanitize(result.response)
        if not outcome.is_valid:
            logger.warning(f"Outbound response sanitized: {', '.join(outcome.issues)}")
        return result.model_copy(update={"response": outcome.sanitized_text})

    # ── checkpoints ────────────────────────────────────────

    def _store_ready(self) -> bool:
        return self.store is not None and self.store.is_ready()

    def _checkpoint(self, thread_id: str, state: ConversationState, source: str, chain: _Chain) -> None:
        """Snapshot ``state`` now, persist it and its channel writes in the background."""
        control = state.get("control") or {}
        values = project_channel_values(dict(state))
        changed = [
            key
            for key, value in values.items()
            if key != "schema_version" and (key not in chain.snapshot or chain.snapshot[key] != value)
        ]
        for key in changed:
            chain.versions[key] = chain.versions.get(key, 0) + 1

        checkpoint = Checkpoint(
            id=uuid.uuid4().hex,
            ts=now_iso(),
            channel_values=values,
            channel_versions=dict(chain.versions),
            parent_checkpoint_id=chain.parent_id,
        )
        metadata = CheckpointMetadata(
            source=source,
            step=control.get("iteration_count", 0),
            writes={source: changed},
            parents={"": chain.parent_id} if chain.parent_id else {},
        )
        writes = [PendingWrite(channel=key, value=values[key]) for key in changed]
        chain.parent_id = checkpoint.id
        chain.written.add(checkpoint.id)
        chain.persisted_steps = len(state.get("agent_trace") or [])
        chain.snapshot = values

        task = asyncio.create_task(self._write(thread_id, checkpoint, metadata, writes))
        tasks = self._pending.setdefault(thread_id, set())
        tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            tasks.discard(t)
            if not tasks and self._pending.get(thread_id) is tasks:
                del self._pending[thread_id]

        task.add_done_callback(_done)

    async def _write(
        self,
        thread_id: str,
        checkpoint: Checkpoint,
        metadata: CheckpointMetadata,
        writes: list[PendingWrite],
    ) -> None:
        # One writer per thread at a time, in scheduling order.
        async with _lock_for(self._write_locks, thread_id):
            try:
                saved = await asyncio.to_thread(self.store.put, thread_id, checkpoint, metadata)
                if saved and writes:
                    saved = await asyncio.to_thread(
                        self.store.put_writes, thread_id, checkpoint.id, writes, metadata.source
                    )
            except Exception as e:
                logger.error(f"Checkpoint write failed for {thread_id}: {e}")
                return
        if not saved:
            logger.warning(f"Checkpoint {checkpoint.id} for {thread_id} not persisted")


def _lock_for(locks: WeakValueDictionary[str, asyncio.Lock], key: str) -> asyncio.Lock:
    lock = locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        locks[key] = lock
    return lock


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _to_result(state: dict[str, Any], started: float, replayed: bool = False) -> TurnResult:
    """Final (or restored) state → TurnResult."""
    control = state.get("control") or {}
    escalated = bool(control.get("should_escalate"))
    return TurnResult(
        success=True,
        response=state.get("final_response") or "",
        intent=state.get("detected_intent") or "UNKNOWN",
        signals=state.get("detected_signals") or [],
        score_change=state.get("score_change") or 0,
        escalated=escalated,
        escalation_reason=control.get("escalation_reason") if escalated else None,
        tokens_used=state.get("tokens_used") or 0,
        processing_time_ms=_elapsed_ms(started),
        agents_used=[e.get("agent_name", "") for e in turn_trace(state)],
        booking_result=state.get("booking_result"),
        errors=list(state.get("errors") or []),
        replayed=replayed,
    )
