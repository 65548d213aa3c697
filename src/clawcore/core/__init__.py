"""
Core components of the clawcore runtime.

Service classes live in their own modules (agent, act, workflows, ...) and are
wired together by ``clawcore.core.runtime.build_runtime``.
"""

from .config import ClawConfig, get_config, reset_config
from .persistence import Database

__all__ = [
    "ClawConfig",
    "Database",
    "get_config",
    "reset_config",
]
