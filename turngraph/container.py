"""ServiceContainer — process-wide singletons wired once at startup."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from turngraph.agent.graph import create_graph
from turngraph.agent.runner import TurnExecutor
from turngraph.core.background.janitor import CheckpointJanitor
from turngraph.core.collaborators import (
    BookingHandler,
    ContextLoader,
    DeadLetterSink,
    LLMClient,
    OutputSanitizer,
    RateLimiter,
)
from turngraph.core.config.schema import Config
from turngraph.memory.checkpoints import CheckpointStore


@dataclass
class ServiceContainer:
    """Owns the compiled graph; every turn shares it read-only."""

    config: Config
    store: CheckpointStore | None
    llm: LLMClient
    graph: object
    executor: TurnExecutor
    janitor: CheckpointJanitor | None

    async def shutdown(self) -> None:
        if self.janitor is not None:
            self.janitor.stop()
        await self.executor.drain()
        if self.store is not None:
            self.store.shutdown()


def build_container(
    config: Config,
    llm: LLMClient | None = None,
    *,
    store: CheckpointStore | None = None,
    booking_handler: BookingHandler | None = None,
    rate_limiter: RateLimiter | None = None,
    dead_letter: DeadLetterSink | None = None,
    sanitizer: OutputSanitizer | None = None,
    context_loader: ContextLoader | None = None,
) -> ServiceContainer:
    """Startup: Config → CheckpointStore → LLM → compiled graph → TurnExecutor."""
    if llm is None:
        from turngraph.core.providers.litellm import LiteLLMClient

        llm = LiteLLMClient(config)

    if store is None and config.checkpoints.enabled:
        store = CheckpointStore(
            config.checkpoint_path,
            namespace=config.checkpoints.namespace,
            timeout=config.checkpoints.connect_timeout_s,
        )

    graph = create_graph(config, llm, booking_handler)
    executor = TurnExecutor(
        config,
        graph,
        store,
        rate_limiter=rate_limiter,
        dead_letter=dead_letter,
        sanitizer=sanitizer,
        context_loader=context_loader,
    )
    janitor = CheckpointJanitor(config, store) if store is not None else None
    logger.info(
        f"Services ready — model: {config.llm.model}, "
        f"checkpoints: {'on' if store is not None and store.is_ready() else 'off'}"
    )
    return ServiceContainer(
        config=config,
        store=store,
        llm=llm,
        graph=graph,
        executor=executor,
        janitor=janitor,
    )
