"""Utility functions and configuration."""

from street_explorer.utils.config import LOG_VERSION, ExplorerConfig

__all__ = [
    "ExplorerConfig",
    "LOG_VERSION",
]
