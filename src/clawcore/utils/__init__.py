"""Utility modules for clawcore."""

from .logging import ComponentLogger, get_logger, setup_logging

__all__ = ["ComponentLogger", "get_logger", "setup_logging"]
