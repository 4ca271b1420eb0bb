"""Configuration management for Strongbox."""

from .manager import DEFAULT_CONFIG, ConfigManager
from .schemas import CONFIG_SCHEMA
from .validator import ConfigValidationError, ConfigValidator

__all__ = ["CONFIG_SCHEMA", "DEFAULT_CONFIG", "ConfigManager", "ConfigValidationError", "ConfigValidator"]
