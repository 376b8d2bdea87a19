"""Exception hierarchy for the orchestration engine.

Fatal internal defects (build, routing, node contract, state merge) surface
to callers as ``success=False`` turns. Node failures never reach this module:
they are degraded to escalation inside the graph.
"""

from __future__ import annotations


class TurnGraphError(Exception):
    """Base class for all orchestration errors."""


class GraphBuildError(TurnGraphError):
    """Router targets or node table are inconsistent at compile time."""


class RoutingDefectError(TurnGraphError):
    """A router produced an unusable transition or the step ceiling was hit."""


class NodeContractError(RoutingDefectError):
    """A specialist returned zero or conflicting outcomes."""


class StateMergeError(TurnGraphError):
    """A patch tried to drop or reorder entries of an append-only field."""


class ContextLoadError(TurnGraphError):
    """Tenant or business context could not be loaded for the turn."""


# Infrastructure errors the turn executor may recover from via checkpoints.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (TimeoutError, ConnectionError)
