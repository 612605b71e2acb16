"""Core module for configuration and utilities."""

from abrpipe.core.config import Settings, settings
from abrpipe.core.logging import setup_logging

__all__ = [
    "Settings",
    "settings",
    "setup_logging",
]
