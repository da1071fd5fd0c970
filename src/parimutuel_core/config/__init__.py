"""Configuration system."""

from parimutuel_core.config.loader import load_config
from parimutuel_core.config.schema import AppConfig, WageringConfig

__all__ = ["AppConfig", "WageringConfig", "load_config"]
