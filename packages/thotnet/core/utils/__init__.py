"""Shared utilities for thotnet."""

from thotnet.core.utils.logging import StructuredJSONFormatter, configure_logging, get_logger

__all__ = [
    "StructuredJSONFormatter",
    "configure_logging",
    "get_logger",
]
