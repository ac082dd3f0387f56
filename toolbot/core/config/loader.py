"""Configuration loader — YAML file + env override."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from toolbot.core.config.schema import Config

_CANDIDATES = ("toolbot.yaml", "config.yaml")


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Build a Config from an optional YAML file.

    The file is the first of: ``config_path``, ``$TOOLBOT_CONFIG``,
    ``./toolbot.yaml``, ``./config.yaml``. String values may reference
    environment variables as ``${NAME}``. Env vars with the ``TOOLBOT_``
    prefix and ``.env`` still take precedence over anything in the file.
    """
    path = _find_config(config_path)
    return Config(**_read_yaml(path)) if path else Config()


def _find_config(config_path: str | Path | None) -> Path | None:
    explicit = config_path or os.environ.get("TOOLBOT_CONFIG")
    if explicit:
        path = Path(explicit)
        return path if path.exists() else None
    return next((Path(c) for c in _CANDIDATES if Path(c).exists()), None)


def _read_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return _expand(data)


def _expand(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, dict):
        return {k: _expand(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand(v) for v in value]
    return value
