"""Shared configuration, logging and HTTP helpers."""

from .config import Settings, get_settings
from .logging import configure_logging, get_logger

__all__ = ["Settings", "configure_logging", "get_logger", "get_settings"]
