"""
Capability registry and the built-in core tools.
"""

from .builtin import register_core_tools
from .registry import RegisteredTool, ToolContext, ToolRegistry

__all__ = [
    "RegisteredTool",
    "ToolContext",
    "ToolRegistry",
    "register_core_tools",
]
