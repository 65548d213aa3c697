"""
Act Module: Tool Executor

Runs a batch of model-requested tool calls concurrently and returns one
result per call, in request order. A failing call never fails the batch.
"""

import asyncio
import json
import time
from typing import Any

from ..exceptions import ToolExecutionError
from ..models.contracts import ToolCall, ToolResult
from ..tools.registry import RegisteredTool, ToolContext, ToolRegistry
from ..utils.logging import get_logger

logger = get_logger(__name__)


def _render_output(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


class ToolExecutor:
    """
    Dispatches tool calls against a ``ToolRegistry``.

    Example:
        executor = ToolExecutor(registry, timeout_seconds=30)
        results = await executor.execute_all(response.tool_calls)
        transcript.extend(r.to_message() for r in results)
    """

    def __init__(self, registry: ToolRegistry, timeout_seconds: int = 30):
        self.registry = registry
        self.timeout_seconds = timeout_seconds

    async def execute_all(self, calls: list[ToolCall], context: ToolContext | None = None) -> list[ToolResult]:
        """
        Execute every call concurrently.

        Returns:
            ToolResults aligned index-for-index with ``calls``
        """
        if not calls:
            return []
        context = context or ToolContext()
        return list(await asyncio.gather(*(self.execute(call, context) for call in calls)))

    async def execute(self, call: ToolCall, context: ToolContext | None = None) -> ToolResult:
        start = time.perf_counter()
        tool = self.registry.get(call.name)

        try:
            if tool is None:
                raise ToolExecutionError(f"Tool {call.name} not found.", tool_name=call.name)
            try:
                arguments = call.parsed_arguments()
            except ValueError as e:
                raise ToolExecutionError(
                    f"Invalid arguments for tool {call.name}: {e}",
                    tool_name=call.name,
                    details={"arguments": call.arguments[:200]},
                ) from e
            output = await self._invoke(tool, arguments, context or ToolContext())

        except ToolExecutionError as e:
            elapsed = (time.perf_counter() - start) * 1000
            logger.warning("tool_failed", tool=call.name, call_id=call.id, error=e.message)
            return ToolResult(
                call_id=call.id,
                name=call.name,
                success=False,
                error=e.message,
                execution_time_ms=elapsed,
            )

        elapsed = (time.perf_counter() - start) * 1000
        logger.info("tool_executed", tool=call.name, call_id=call.id, execution_time_ms=round(elapsed, 2))
        return ToolResult(
            call_id=call.id,
            name=call.name,
            success=True,
            output=_render_output(output),
            execution_time_ms=elapsed,
        )

    async def _invoke(self, tool: RegisteredTool, arguments: dict[str, Any], context: ToolContext) -> Any:
        name = tool.spec.name
        kwargs = dict(arguments)
        if tool.accepts_context:
            kwargs["context"] = context

        timeout = self.timeout_seconds if tool.timed else None
        try:
            if tool.is_async:
                return await asyncio.wait_for(tool.func(**kwargs), timeout=timeout)
            return await asyncio.wait_for(asyncio.to_thread(tool.func, **kwargs), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ToolExecutionError(
                f"Tool execution exceeded {self.timeout_seconds}s timeout", tool_name=name
            ) from e
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(f"{type(e).__name__}: {e}", tool_name=name) from e
