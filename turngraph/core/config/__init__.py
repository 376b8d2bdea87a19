"""Configuration module."""

from turngraph.core.config.loader import load_config
from turngraph.core.config.schema import Config

__all__ = ["Config", "load_config"]
