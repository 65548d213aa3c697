"""
Capability Registry: named tools with JSON-schema parameter declarations.

Tools are plain callables, sync or async. A tool that needs the delegation
depth of the agent invoking it registers with ``accepts_context=True`` and
receives a ``ToolContext`` as the ``context`` keyword argument.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable

from ..models.contracts import ToolSpec
from ..utils.logging import get_logger

logger = get_logger(__name__)

EMPTY_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass(frozen=True)
class ToolContext:
    """Per-call invocation context handed to context-aware tools."""

    depth: int = 0
    role: str | None = None


@dataclass
class RegisteredTool:
    spec: ToolSpec
    func: Callable[..., Any]
    accepts_context: bool = False
    # False for orchestration tools that run whole sub-agents or workflows
    timed: bool = True

    @property
    def is_async(self) -> bool:
        return asyncio.iscoroutinefunction(self.func)


class ToolRegistry:
    """
    Name -> tool mapping shared by the executor and the model-facing specs.

    Example:
        registry = ToolRegistry()

        @registry.register(
            "get_weather",
            "Current weather for a city",
            {"type": "object", "properties": {"city": {"type": "string"}}, "required": ["city"]},
        )
        async def get_weather(city: str) -> str:
            ...
    """

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register(
        self,
        name: str,
        description: str,
        parameters: dict[str, Any] | None = None,
        accepts_context: bool = False,
        timed: bool = True,
    ) -> Callable:
        """
        Decorator to register a tool.

        Args:
            name: Unique tool name as the model sees it
            description: What the tool does, for the model
            parameters: JSON schema of the keyword arguments
            accepts_context: Pass a ``ToolContext`` as ``context=``
            timed: Apply the executor's per-tool timeout

        Returns:
            Decorator returning the function unchanged
        """

        def decorator(func: Callable) -> Callable:
            self.add(name, func, description, parameters, accepts_context, timed)
            return func

        return decorator

    def add(
        self,
        name: str,
        func: Callable[..., Any],
        description: str,
        parameters: dict[str, Any] | None = None,
        accepts_context: bool = False,
        timed: bool = True,
    ) -> None:
        if name in self._tools:
            logger.warning("tool_replaced", tool=name)
        spec = ToolSpec(name=name, description=description, parameters=parameters or dict(EMPTY_PARAMETERS))
        self._tools[name] = RegisteredTool(spec=spec, func=func, accepts_context=accepts_context, timed=timed)
        logger.debug("tool_registered", tool=name, accepts_context=accepts_context)

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def specs(self, exclude: set[str] | frozenset[str] | None = None) -> list[ToolSpec]:
        """Model-facing declarations, in registration order."""
        exclude = exclude or frozenset()
        return [tool.spec for name, tool in self._tools.items() if name not in exclude]

    def list_tools(self) -> list[str]:
        """Get list of registered tool names."""
        return list(self._tools.keys())

    def validate_tool(self, name: str) -> bool:
        """Check if tool is registered and available."""
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
