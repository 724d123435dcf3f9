"""Configuration management for thotnet."""

from thotnet.core.config.loader import (
    configure_logging,
    detect_format,
    load_app_config,
    load_config,
)
from thotnet.core.config.models import (
    AppConfig,
    CascadeConfig,
    GateConfig,
    LoggingConfig,
    ProviderConfig,
    StorageConfig,
)

__all__ = [
    "AppConfig",
    "CascadeConfig",
    "GateConfig",
    "LoggingConfig",
    "ProviderConfig",
    "StorageConfig",
    "configure_logging",
    "detect_format",
    "load_app_config",
    "load_config",
]
