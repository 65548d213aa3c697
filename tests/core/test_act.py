"""
Unit tests for Act Module (Tool Executor) and the capability registry.

Tests cover:
- Tool registration (sync and async, with and without context)
- Concurrent execution with order preserved
- Unknown tools and malformed arguments
- Timeout handling
- One failing call never failing the batch
"""

import asyncio
import time

import pytest

from clawcore.core.act import ToolExecutor
from clawcore.models.contracts import ToolCall
from clawcore.models.enums import Role
from clawcore.tools.registry import EMPTY_PARAMETERS, ToolContext, ToolRegistry


def call(name: str, arguments: str = "{}", call_id: str | None = None) -> ToolCall:
    return ToolCall(id=call_id or f"id-{name}", name=name, arguments=arguments)


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def setup_method(self):
        self.registry = ToolRegistry()

    def test_registry_starts_empty(self):
        assert self.registry.list_tools() == []
        assert not self.registry.validate_tool("nonexistent_tool")
        assert len(self.registry) == 0

    def test_register_decorator_returns_function(self):
        @self.registry.register("echo", "Echo the input")
        def echo(text: str) -> str:
            return text

        assert echo("hi") == "hi"
        assert self.registry.validate_tool("echo")
        assert self.registry.get("echo").spec.parameters == EMPTY_PARAMETERS

    def test_specs_in_registration_order_with_exclusions(self):
        self.registry.add("a", lambda: 1, "first")
        self.registry.add("b", lambda: 2, "second")
        self.registry.add("c", lambda: 3, "third")

        assert [s.name for s in self.registry.specs()] == ["a", "b", "c"]
        assert [s.name for s in self.registry.specs(exclude={"b"})] == ["a", "c"]

    def test_re_registering_replaces(self):
        self.registry.add("a", lambda: 1, "first")
        self.registry.add("a", lambda: 2, "replacement")

        assert len(self.registry) == 1
        assert self.registry.get("a").spec.description == "replacement"

    def test_is_async(self):
        async def async_tool():
            return None

        self.registry.add("sync", lambda: None, "sync")
        self.registry.add("async", async_tool, "async")

        assert not self.registry.get("sync").is_async
        assert self.registry.get("async").is_async

    def test_tools_are_timed_by_default(self):
        self.registry.add("quick", lambda: 1, "quick")
        self.registry.add("long", lambda: 2, "long", timed=False)

        assert self.registry.get("quick").timed
        assert not self.registry.get("long").timed


class TestToolExecutor:
    """Tests for ToolExecutor."""

    def setup_method(self):
        self.registry = ToolRegistry()
        self.executor = ToolExecutor(self.registry, timeout_seconds=1)

    @pytest.mark.asyncio
    async def test_missing_tool_does_not_fail_batch(self):
        """X is unregistered, Y succeeds: two results in order."""

        @self.registry.register("Y", "Always works")
        def tool_y() -> str:
            return "y-output"

        results = await self.executor.execute_all([call("X"), call("Y")])

        assert [r.name for r in results] == ["X", "Y"]
        assert results[0].success is False
        assert results[0].error == "Tool X not found."
        assert results[1].success is True
        assert results[1].output == "y-output"

    @pytest.mark.asyncio
    async def test_results_keep_request_order_regardless_of_finish_order(self):
        @self.registry.register("sleepy", "Sleeps then echoes")
        async def sleepy(delay: float, label: str) -> str:
            await asyncio.sleep(delay)
            return label

        calls = [
            call("sleepy", '{"delay": 0.05, "label": "slow"}', "1"),
            call("sleepy", '{"delay": 0.0, "label": "fast"}', "2"),
            call("sleepy", '{"delay": 0.02, "label": "medium"}', "3"),
        ]
        results = await self.executor.execute_all(calls)

        assert [r.call_id for r in results] == ["1", "2", "3"]
        assert [r.output for r in results] == ["slow", "fast", "medium"]

    @pytest.mark.asyncio
    async def test_calls_run_concurrently(self):
        @self.registry.register("wait", "Sleeps")
        async def wait() -> str:
            await asyncio.sleep(0.1)
            return "done"

        start = time.perf_counter()
        results = await self.executor.execute_all([call("wait", call_id=str(i)) for i in range(5)])
        elapsed = time.perf_counter() - start

        assert all(r.success for r in results)
        assert elapsed < 0.4

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        assert await self.executor.execute_all([]) == []

    @pytest.mark.asyncio
    async def test_sync_tool_runs_in_thread(self):
        @self.registry.register("add", "Add two numbers")
        def add(a: int, b: int) -> int:
            return a + b

        result = await self.executor.execute(call("add", '{"a": 2, "b": 3}'))

        assert result.success
        assert result.output == "5"

    @pytest.mark.asyncio
    async def test_structured_output_is_json_encoded(self):
        @self.registry.register("user", "Fetch a user")
        def user() -> dict:
            return {"name": "Ada"}

        result = await self.executor.execute(call("user"))

        assert result.output == '{"name": "Ada"}'

    @pytest.mark.asyncio
    async def test_invalid_arguments(self):
        @self.registry.register("echo", "Echo")
        def echo(text: str) -> str:
            return text

        result = await self.executor.execute(call("echo", "{not json"))

        assert not result.success
        assert result.error.startswith("Invalid arguments for tool echo")

    @pytest.mark.asyncio
    async def test_non_object_arguments(self):
        @self.registry.register("echo", "Echo")
        def echo(text: str) -> str:
            return text

        result = await self.executor.execute(call("echo", "[1, 2]"))

        assert not result.success
        assert "Invalid arguments" in result.error

    @pytest.mark.asyncio
    async def test_tool_exception_is_captured(self):
        @self.registry.register("broken", "Always raises")
        def broken() -> str:
            raise RuntimeError("disk on fire")

        result = await self.executor.execute(call("broken"))

        assert not result.success
        assert result.error == "RuntimeError: disk on fire"

    @pytest.mark.asyncio
    async def test_timeout(self):
        @self.registry.register("hang", "Never returns in time")
        async def hang() -> str:
            await asyncio.sleep(5)
            return "late"

        result = await self.executor.execute(call("hang"))

        assert not result.success
        assert result.error == "Tool execution exceeded 1s timeout"

    @pytest.mark.asyncio
    async def test_context_passed_only_to_context_aware_tools(self):
        seen = {}

        @self.registry.register("aware", "Reads depth", accepts_context=True)
        async def aware(*, context: ToolContext) -> str:
            seen["depth"] = context.depth
            return "ok"

        @self.registry.register("plain", "No context")
        def plain() -> str:
            return "ok"

        results = await self.executor.execute_all(
            [call("aware"), call("plain")], ToolContext(depth=2, role="coder")
        )

        assert all(r.success for r in results)
        assert seen == {"depth": 2}

    @pytest.mark.asyncio
    async def test_result_to_message(self):
        results = await self.executor.execute_all([call("missing", call_id="abc")])
        message = results[0].to_message()

        assert message.role == Role.TOOL
        assert message.tool_call_id == "abc"
        assert message.name == "missing"
        assert message.content == '{"error": "Tool missing not found."}'
