"""Configuration system."""

from lockmarket_core.config.loader import load_config
from lockmarket_core.config.schema import AppConfig

__all__ = ["AppConfig", "load_config"]
