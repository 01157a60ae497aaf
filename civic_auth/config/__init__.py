"""Configuration loading and settings management."""

from .settings import OPTIONAL_INT_DEFAULTS, REQUIRED_ENV_VARS, Settings, load_settings

__all__ = ["OPTIONAL_INT_DEFAULTS", "REQUIRED_ENV_VARS", "Settings", "load_settings"]
