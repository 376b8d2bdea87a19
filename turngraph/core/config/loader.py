"""Configuration loader — find a YAML file, hand it to ``Config``."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from turngraph.core.config.schema import Config

CONFIG_ENV = "TURNGRAPH_CONFIG"
DEFAULT_FILES = ("config.yaml", "config.yml")


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Build the root ``Config``.

    The YAML file is looked up in this order and the first hit wins:
        1. explicit ``config_path`` (a missing file means defaults)
        2. ``$TURNGRAPH_CONFIG``
        3. ``config.yaml`` / ``config.yml`` in the working directory

    YAML values are passed as init kwargs; ``Config`` ranks environment
    variables and ``.env`` above them.
    """
    path = find_config_file(config_path)
    if path is None:
        return Config()
    logger.debug(f"Loading config from {path}")
    return Config(**read_yaml(path))


def find_config_file(config_path: str | Path | None = None) -> Path | None:
    if config_path:
        path = Path(config_path)
        if not path.is_file():
            logger.warning(f"Config file {path} not found, using defaults")
            return None
        return path

    candidates = [os.environ.get(CONFIG_ENV), *DEFAULT_FILES]
    return next((Path(c) for c in candidates if c and Path(c).is_file()), None)


def read_yaml(path: Path) -> dict[str, Any]:
    """Parse a config file; the top level must be a mapping of sections."""
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping of config sections, got {type(data).__name__}")
    return data
