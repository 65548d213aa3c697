"""
clawcore - Agent orchestration core for a personal AI assistant.

Provider failover, concurrent tool execution, tiered memory and multi-step
workflows behind one bounded agent loop.
"""

__version__ = "0.1.0"

from .core.config import ClawConfig
from .core.runtime import Runtime, build_runtime

__all__ = [
    "ClawConfig",
    "Runtime",
    "build_runtime",
    "__version__",
]
