"""Configuration module."""

from toolbot.core.config.loader import load_config
from toolbot.core.config.schema import Config

__all__ = ["Config", "load_config"]
