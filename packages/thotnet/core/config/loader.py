"""Configuration loading utilities with JSON and YAML support."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from thotnet.core.config.models import AppConfig
from thotnet.core.utils.logging import configure_logging as _configure_logging

logger = logging.getLogger(__name__)


def detect_format(file_path: Path | str) -> str:
    """Detect config file format from extension.

    Args:
        file_path: Path to config file

    Returns:
        Format string: "json" or "yaml"

    Raises:
        ValueError: If format cannot be determined

    Example:
        >>> detect_format("thotnet.yml")
        'yaml'
    """
    suffix = Path(file_path).suffix.lower()
    if suffix == ".json":
        return "json"
    elif suffix in [".yaml", ".yml"]:
        return "yaml"
    else:
        raise ValueError(f"Unsupported config format: {suffix}")


def load_config(path: str | Path) -> dict[str, Any]:
    """Load and return raw configuration dictionary.

    Args:
        path: Path to config file (.json, .yaml, or .yml)

    Returns:
        Raw configuration dictionary

    Raises:
        FileNotFoundError: If config file does not exist
        ValueError: If format is not supported or file content is invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file does not exist: {path}")

    fmt = detect_format(path)
    if fmt == "json":
        try:
            with path.open("r", encoding="utf-8") as f:
                content = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e
    else:
        try:
            with path.open("r", encoding="utf-8") as f:
                # safe_load returns None for empty files
                content = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(content, dict):
        raise ValueError(f"Config root must be a mapping: {path}")
    return content


def load_app_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """Load and validate application configuration.

    API keys left empty in the file are filled from the environment variable
    named by each provider's ``api_key_env``.

    Args:
        path: Path to app config file. Defaults to thotnet.yaml; a missing
            default file yields the built-in defaults.
        environ: Environment mapping (defaults to os.environ).

    Returns:
        Validated AppConfig instance

    Raises:
        FileNotFoundError: If an explicit path does not exist
        ValidationError: If config is invalid
    """
    if path is None:
        default = AppConfig.default_path()
        config = AppConfig.model_validate(load_config(default)) if default.exists() else AppConfig()
    else:
        config = AppConfig.model_validate(load_config(path))

    return _load_env_vars_into_config(config, os.environ if environ is None else environ)


def _load_env_vars_into_config(config: AppConfig, environ: Mapping[str, str]) -> AppConfig:
    """Return a copy of config with credentials filled from the environment."""
    providers = []
    for provider in config.providers:
        if provider.api_key is None and provider.api_key_env:
            value = environ.get(provider.api_key_env)
            if value:
                logger.debug("Loaded %s from environment", provider.api_key_env)
                provider = provider.model_copy(update={"api_key": value})
        providers.append(provider)

    storage = config.storage
    if storage.postgrest_key is None and environ.get(storage.postgrest_key_env):
        storage = storage.model_copy(update={"postgrest_key": environ[storage.postgrest_key_env]})

    return config.model_copy(update={"providers": providers, "storage": storage})


def configure_logging(config: AppConfig | None = None) -> None:
    """Configure Python logging from app config.

    Args:
        config: AppConfig instance (loads default if None)
    """
    if config is None:
        config = load_app_config()

    _configure_logging(
        level=config.logging.level,
        format_string=config.logging.format,
        filename=config.logging.filename,
        structured=config.logging.structured,
    )
