"""Configuration loading and typed models."""

from filegen.config.loader import load_config, parse_config
from filegen.config.models import (
    AppConfig,
    DatabaseConfig,
    InterfaceConfig,
    OutputFormat,
    RecordShape,
    RetrySettings,
    Settings,
)

__all__ = [
    "load_config",
    "parse_config",
    "AppConfig",
    "DatabaseConfig",
    "InterfaceConfig",
    "OutputFormat",
    "RecordShape",
    "RetrySettings",
    "Settings",
]
