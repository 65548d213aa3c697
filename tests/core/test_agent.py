"""
Tests for the Agent Loop and context assembly.

Tests cover:
- The model-call bound and its error reply
- Tool results fed back into the next call
- Status bypass that never reaches the providers
- Provider exhaustion turned into a reply
- Memory writes that never block the turn
- Context rendered into the system prompt
"""

import asyncio

import pytest

from clawcore.core.act import ToolExecutor
from clawcore.core.agent import MAX_ITERATIONS_MESSAGE, AgentLoop, build_system_prompt, is_status_command
from clawcore.core.context import AgentContext, ContextAssembler
from clawcore.core.status import StatusReporter
from clawcore.exceptions import ProviderError
from clawcore.llm.router import ProviderRouter
from clawcore.models.contracts import ChatMessage
from clawcore.models.enums import Role, StopReason
from clawcore.tools.registry import ToolContext, ToolRegistry

from conftest import FakeAdapter, text_response, tool_call, tool_response


@pytest.fixture
def registry():
    registry = ToolRegistry()

    @registry.register("get_current_time", "Get the current time")
    def get_current_time() -> str:
        return "12:00"

    return registry


@pytest.fixture
def agent_adapter():
    return FakeAdapter("agent")


@pytest.fixture
def make_agent(registry, agent_adapter, config, background):
    def factory(memory=None, **kwargs):
        return AgentLoop(
            ProviderRouter([agent_adapter]),
            ToolExecutor(registry, timeout_seconds=5),
            registry,
            memory,
            config,
            background=background,
            **kwargs,
        )

    return factory


class TestStatusCommand:
    @pytest.mark.parametrize("text", ["/status", "  /STATUS now", "status", "Status"])
    def test_recognized(self, text):
        assert is_status_command(text)

    @pytest.mark.parametrize("text", ["what is the status of my order?", "statuses", ""])
    def test_not_recognized(self, text):
        assert not is_status_command(text)


class TestAgentLoop:
    @pytest.mark.asyncio
    async def test_plain_answer(self, make_agent, agent_adapter):
        agent_adapter.script.append(text_response("Hello!"))

        result = await make_agent().run("hi")

        assert result.text == "Hello!"
        assert result.stop_reason == StopReason.COMPLETE
        assert result.model_calls == 1
        assert result.provider_id == "agent"

    @pytest.mark.asyncio
    async def test_tool_results_feed_next_call(self, make_agent, agent_adapter):
        agent_adapter.script.extend(
            [tool_response(tool_call("get_current_time", call_id="t1")), text_response("It is noon.")]
        )

        result = await make_agent().run("what time is it?")

        assert result.text == "It is noon."
        assert result.model_calls == 2
        assert [tc.name for tc in result.tool_calls] == ["get_current_time"]
        second_call_messages = agent_adapter.calls[1][0]
        tool_message = second_call_messages[-1]
        assert tool_message.role == Role.TOOL
        assert tool_message.tool_call_id == "t1"
        assert tool_message.content == "12:00"
        assert second_call_messages[-2].tool_calls[0].id == "t1"

    @pytest.mark.asyncio
    async def test_model_calls_bounded_at_five(self, make_agent, agent_adapter, registry):
        executions = []

        @registry.register("again", "Always asked for")
        def again() -> str:
            executions.append(1)
            return "more"

        agent_adapter.responder = lambda messages, tools: tool_response(tool_call("again"))

        result = await make_agent().run("loop forever")

        assert result.stop_reason == StopReason.MAX_ITERATIONS
        assert result.text == MAX_ITERATIONS_MESSAGE
        assert result.model_calls == 5
        assert len(agent_adapter.calls) == 5
        assert len(executions) == 4

    @pytest.mark.asyncio
    async def test_bound_follows_config(self, make_agent, agent_adapter, config):
        config.max_agent_iterations = 2
        agent_adapter.responder = lambda messages, tools: tool_response(tool_call("get_current_time"))

        result = await make_agent().run("loop")

        assert result.model_calls == 2
        assert result.stop_reason == StopReason.MAX_ITERATIONS

    @pytest.mark.asyncio
    async def test_unknown_tool_is_reported_to_model(self, make_agent, agent_adapter):
        agent_adapter.script.extend([tool_response(tool_call("X")), text_response("Sorry, no X.")])

        result = await make_agent().run("use X")

        assert result.text == "Sorry, no X."
        assert "Tool X not found." in agent_adapter.calls[1][0][-1].content

    @pytest.mark.asyncio
    async def test_provider_exhaustion_becomes_reply(self, make_agent, agent_adapter):
        agent_adapter.script.append(ProviderError("quota exceeded", provider_id="agent"))

        result = await make_agent().run("hi")

        assert result.stop_reason == StopReason.ERROR
        assert result.text.startswith("I encountered an error: All LLM providers failed")
        assert "quota exceeded" in result.text

    @pytest.mark.asyncio
    async def test_status_bypass_skips_providers(self, make_agent, agent_adapter, config):
        reporter = StatusReporter(config.db_path, lambda: ["agent"])

        result = await make_agent(status_reporter=reporter).run("/status")

        assert result.stop_reason == StopReason.STATUS_BYPASS
        assert result.text.startswith("Claw Status")
        assert agent_adapter.calls == []

    @pytest.mark.asyncio
    async def test_tools_see_agent_depth(self, make_agent, agent_adapter, registry):
        seen = []

        @registry.register("whoami", "Report depth", accepts_context=True)
        def whoami(*, context: ToolContext) -> str:
            seen.append((context.depth, context.role))
            return "ok"

        agent_adapter.script.extend([tool_response(tool_call("whoami")), text_response("done")])

        await make_agent(depth=2).run("who", role="coder")

        assert seen == [(2, "coder")]

    @pytest.mark.asyncio
    async def test_excluded_tools_are_not_offered(self, make_agent, agent_adapter):
        agent_adapter.script.append(text_response("ok"))

        await make_agent(excluded_tools=frozenset({"get_current_time"})).run("hi")

        assert agent_adapter.calls[0][1] is None

    @pytest.mark.asyncio
    async def test_system_prompt_uses_trait(self, make_agent, agent_adapter):
        agent_adapter.script.append(text_response("ok"))

        await make_agent().run("hi", role="coder")

        system = agent_adapter.calls[0][0][0]
        assert system.role == Role.SYSTEM
        assert "Senior Software Engineer" in system.content
        assert "INSTRUCTIONS:" in system.content


class SlowMemory:
    """Memory stand-in whose writes never finish on their own."""

    def __init__(self):
        self.release = asyncio.Event()
        self.logged: list[tuple[Role, str]] = []
        self.usage: list[str] = []

    async def log_message(self, role, content, metadata=None):
        await self.release.wait()
        self.logged.append((role, content))

    def log_usage(self, model, prompt_tokens, completion_tokens, total_tokens=None):
        self.usage.append(model)


class TestMemoryWriteBack:
    @pytest.mark.asyncio
    async def test_slow_memory_never_blocks_the_turn(self, make_agent, agent_adapter, background):
        memory = SlowMemory()
        agent_adapter.script.append(text_response("fast reply"))

        result = await asyncio.wait_for(make_agent(memory=memory).run("hi"), timeout=1)

        assert result.text == "fast reply"
        assert memory.logged == []

        memory.release.set()
        await background.drain(timeout=1)
        assert memory.logged == [(Role.USER, "hi"), (Role.ASSISTANT, "fast reply")]

    @pytest.mark.asyncio
    async def test_usage_recorded_per_model_call(self, make_agent, agent_adapter, background):
        memory = SlowMemory()
        memory.release.set()
        agent_adapter.script.extend(
            [
                tool_response(tool_call("get_current_time")).model_copy(update={"usage": text_response("", usage=True).usage}),
                text_response("done", usage=True),
            ]
        )

        await make_agent(memory=memory).run("time?")
        await background.drain(timeout=1)

        assert memory.usage == ["fake-model", "fake-model"]

    @pytest.mark.asyncio
    async def test_failed_turn_is_not_written_back(self, make_agent, agent_adapter, background):
        memory = SlowMemory()
        memory.release.set()
        agent_adapter.script.append(RuntimeError("down"))

        await make_agent(memory=memory).run("hi")
        await background.drain(timeout=1)

        assert memory.logged == [(Role.USER, "hi")]


class TestContextAssembler:
    @pytest.mark.asyncio
    async def test_context_collects_facts_history_and_summary(self, memory, background):
        await memory.store_fact("user lives in lisbon")
        await memory.log_message(Role.USER, "hello")
        await memory.log_message(Role.ASSISTANT, "hi there")
        await background.drain()

        context = await ContextAssembler(memory).get_context("user lives in lisbon")

        assert context.relevant_facts == ["[FACT] user lives in lisbon"]
        assert [m.content for m in context.recent_history] == ["hello", "hi there"]
        assert context.summary is None

    @pytest.mark.asyncio
    async def test_empty_text_skips_fact_search(self, memory, embedder):
        context = await ContextAssembler(memory).get_context("   ")

        assert context.relevant_facts == []
        assert embedder.calls == []

    def test_format_context(self):
        context = AgentContext(
            relevant_facts=["[FACT] likes tea"],
            recent_history=[ChatMessage(role=Role.USER, content="hi")],
            summary="Talked about tea.",
        )

        text = ContextAssembler.format_context(context)

        assert text == "HISTORY:\nuser: hi\n\n[Context Summary]: Talked about tea.\n\nRelevant Memories:\n- [FACT] likes tea"

    def test_system_prompt_layout(self):
        from datetime import datetime

        prompt = build_system_prompt("You are Claw.", "HISTORY:\n", now=datetime(2025, 1, 2, 3, 4, 5))

        assert prompt.startswith("You are Claw.\nTime: 2025-01-02 03:04:05\n\nHISTORY:\n")
        assert prompt.endswith("Be concise, bold, and helpful.")

    @pytest.mark.asyncio
    async def test_agent_prompt_includes_memories(self, make_agent, agent_adapter, memory, background):
        await memory.store_fact("user lives in lisbon")
        agent_adapter.script.append(text_response("You live in Lisbon."))
        agent = make_agent(memory=memory, context_assembler=ContextAssembler(memory))

        await agent.run("user lives in lisbon")
        await background.drain()

        system = agent_adapter.calls[0][0][0].content
        assert "Relevant Memories:\n- [FACT] user lives in lisbon" in system
