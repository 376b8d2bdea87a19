"""Background services — checkpoint janitor."""

from turngraph.core.background.janitor import CheckpointJanitor

__all__ = ["CheckpointJanitor"]
