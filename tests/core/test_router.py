"""
Tests for the Provider Router and backend adapters.

Tests cover:
- Failover order and single attempt per backend
- Exhaustion error listing every failure in order
- Message assembly
- Wire-format translation and response parsing for both adapter families
"""

import json
from types import SimpleNamespace

import pytest

from clawcore.core.config import ClawConfig, ResolvedCredentials
from clawcore.exceptions import ProviderChainExhaustedError, ProviderError
from clawcore.llm.adapters import GeminiAdapter, OpenAICompatibleAdapter
from clawcore.llm.router import ProviderRouter, build_default_router, build_messages
from clawcore.models.contracts import ChatMessage, InlineData, MessagePart, ToolCall, ToolSpec
from clawcore.models.enums import Role

from conftest import FakeAdapter, text_response


class TestProviderRouter:
    """Failover behaviour"""

    @pytest.mark.asyncio
    async def test_first_healthy_backend_answers(self):
        first = FakeAdapter("openrouter", script=[text_response("from A")])
        second = FakeAdapter("gemini-pro", script=[text_response("from B")])
        router = ProviderRouter([first, second])

        response = await router.send("hello")

        assert response.text == "from A"
        assert response.provider_id == "openrouter"
        assert len(second.calls) == 0
        assert router.last_provider == "openrouter"

    @pytest.mark.asyncio
    async def test_failover_to_next_backend(self):
        first = FakeAdapter("openrouter", script=[ProviderError("quota", provider_id="openrouter")])
        second = FakeAdapter("gemini-pro", script=[text_response("from B")])
        router = ProviderRouter([first, second])

        response = await router.send("hello")

        assert response.text == "from B"
        assert response.provider_id == "gemini-pro"
        assert len(first.calls) == 1

    @pytest.mark.asyncio
    async def test_no_retry_on_same_backend(self):
        first = FakeAdapter("a", script=[RuntimeError("boom"), text_response("never")])
        second = FakeAdapter("b", script=[text_response("ok")])

        await ProviderRouter([first, second]).send("hello")

        assert len(first.calls) == 1

    @pytest.mark.asyncio
    async def test_exhaustion_lists_failures_in_order(self):
        router = ProviderRouter(
            [
                FakeAdapter("a", script=[ProviderError("401 unauthorized", provider_id="a")]),
                FakeAdapter("b", script=[RuntimeError("timeout")]),
                FakeAdapter("c", script=[ProviderError("quota", provider_id="c")]),
            ]
        )

        with pytest.raises(ProviderChainExhaustedError) as exc_info:
            await router.send("hello")

        assert [pid for pid, _ in exc_info.value.failures] == ["a", "b", "c"]
        assert "401 unauthorized" in exc_info.value.failures[0][1]

    @pytest.mark.asyncio
    async def test_empty_chain_fails_fast(self):
        with pytest.raises(ProviderChainExhaustedError) as exc_info:
            await ProviderRouter([]).send("hello")

        assert exc_info.value.failures == []

    @pytest.mark.asyncio
    async def test_every_backend_sees_the_same_messages(self):
        first = FakeAdapter("a", script=[RuntimeError("down")])
        second = FakeAdapter("b", script=[text_response("ok")])
        tools = [ToolSpec(name="t", description="d")]

        await ProviderRouter([first, second]).send("hello", system_prompt="sys", tools=tools)

        assert first.calls[0] == second.calls[0]
        assert second.calls[0][1] == tools

    def test_active_providers(self):
        router = ProviderRouter([FakeAdapter("a"), FakeAdapter("b")])

        assert router.active_providers() == ["a", "b"]


class TestBuildMessages:
    def test_string_payload_becomes_user_turn(self):
        messages = build_messages("hi", system_prompt="sys")

        assert [m.role for m in messages] == [Role.SYSTEM, Role.USER]
        assert messages[1].content == "hi"

    def test_existing_system_prompt_not_duplicated(self):
        history = [ChatMessage(role=Role.SYSTEM, content="original")]

        messages = build_messages(None, history=history, system_prompt="another")

        assert len(messages) == 1
        assert messages[0].content == "original"

    def test_part_list_payload(self):
        parts = [MessagePart(text="look"), MessagePart(inline_data=InlineData(mime_type="image/png", data="AA=="))]

        messages = build_messages(parts)

        assert messages[0].role == Role.USER
        assert messages[0].content == parts

    def test_chat_message_payload_is_appended(self):
        tool_message = ChatMessage(role=Role.TOOL, content="out", tool_call_id="1", name="t")

        messages = build_messages([tool_message], history=[ChatMessage(role=Role.USER, content="q")])

        assert messages[-1] is tool_message


class TestBuildDefaultRouter:
    def test_chain_order_follows_credentials(self):
        config = ClawConfig(_env_file=None)
        creds = ResolvedCredentials(gemini="g", openai="o", openrouter="r")

        router = build_default_router(config, creds)

        assert router.active_providers() == ["openrouter", "gemini-pro", "gemini-flash", "openai"]

    def test_missing_keys_skip_backends(self):
        router = build_default_router(ClawConfig(_env_file=None), ResolvedCredentials(openai="o"))

        assert router.active_providers() == ["openai"]


class TestOpenAICompatibleAdapter:
    def setup_method(self):
        self.adapter = OpenAICompatibleAdapter("openai", "openai/gpt-4o", api_key="k")

    def test_translate_tool_round_trip_messages(self):
        messages = [
            ChatMessage(role=Role.USER, content="weather?"),
            ChatMessage(
                role=Role.ASSISTANT,
                content="",
                tool_calls=[ToolCall(id="c1", name="weather", arguments='{"city": "Oslo"}')],
            ),
            ChatMessage(role=Role.TOOL, content="sunny", tool_call_id="c1", name="weather"),
        ]

        translated = self.adapter.translate_messages(messages)

        assert translated[0] == {"role": "user", "content": "weather?"}
        assert translated[1]["tool_calls"][0]["function"] == {"name": "weather", "arguments": '{"city": "Oslo"}'}
        assert translated[1]["content"] is None
        assert translated[2] == {"role": "tool", "tool_call_id": "c1", "content": "sunny"}

    def test_translate_image_part(self):
        message = ChatMessage(
            role=Role.USER,
            content=[MessagePart(text="what is this"), MessagePart(inline_data=InlineData(mime_type="image/png", data="AA=="))],
        )

        content = self.adapter.translate_messages([message])[0]["content"]

        assert content[0] == {"type": "text", "text": "what is this"}
        assert content[1]["image_url"]["url"] == "data:image/png;base64,AA=="

    def test_translate_tools(self):
        assert self.adapter.translate_tools([]) is None
        tools = self.adapter.translate_tools([ToolSpec(name="t", description="d")])
        assert tools[0]["type"] == "function"
        assert tools[0]["function"]["name"] == "t"

    def test_parse_response_with_tool_calls_and_usage(self):
        raw = SimpleNamespace(
            choices=[
                SimpleNamespace(
                    message=SimpleNamespace(
                        content=None,
                        tool_calls=[
                            SimpleNamespace(id="c1", function=SimpleNamespace(name="weather", arguments={"city": "Oslo"}))
                        ],
                    )
                )
            ],
            usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3, total_tokens=15),
            model="gpt-4o-2024",
        )

        response = self.adapter.parse_response(raw)

        assert response.text == ""
        assert response.tool_calls[0].name == "weather"
        assert json.loads(response.tool_calls[0].arguments) == {"city": "Oslo"}
        assert response.usage.total_tokens == 15
        assert response.model == "gpt-4o-2024"

    def test_parse_response_without_choices(self):
        with pytest.raises(ProviderError):
            self.adapter.parse_response(SimpleNamespace(choices=[]))

    @pytest.mark.asyncio
    async def test_transport_error_becomes_provider_error(self, mocker):
        mocker.patch("clawcore.llm.adapters.litellm.acompletion", side_effect=ConnectionError("refused"))

        with pytest.raises(ProviderError) as exc_info:
            await self.adapter.complete([ChatMessage(role=Role.USER, content="hi")])

        assert exc_info.value.provider_id == "openai"
        assert "ConnectionError" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_complete_passes_model_and_key(self, mocker):
        raw = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="hello", tool_calls=None))],
            usage=None,
            model=None,
        )
        acompletion = mocker.patch("clawcore.llm.adapters.litellm.acompletion", return_value=raw)

        response = await self.adapter.complete([ChatMessage(role=Role.USER, content="hi")])

        assert response.text == "hello"
        assert response.model == "openai/gpt-4o"
        kwargs = acompletion.call_args.kwargs
        assert kwargs["model"] == "openai/gpt-4o"
        assert kwargs["api_key"] == "k"
        assert "tools" not in kwargs


class TestGeminiAdapter:
    def setup_method(self):
        self.adapter = GeminiAdapter("gemini-flash", "gemini-2.0-flash")

    def test_roles_map_to_gemini(self):
        messages = [
            ChatMessage(role=Role.SYSTEM, content="be brief"),
            ChatMessage(role=Role.USER, content="hi"),
            ChatMessage(
                role=Role.ASSISTANT,
                content=None,
                tool_calls=[ToolCall(id="c1", name="weather", arguments='{"city": "Oslo"}')],
            ),
            ChatMessage(role=Role.TOOL, content='{"temp": 3}', tool_call_id="c1", name="weather"),
        ]

        contents = self.adapter.translate_messages(messages)

        assert [c["role"] for c in contents] == ["user", "model", "user", "model", "function"]
        assert contents[3]["parts"][0]["function_call"] == {"name": "weather", "args": {"city": "Oslo"}}
        assert contents[4]["parts"][0]["function_response"] == {"name": "weather", "response": {"temp": 3}}

    def test_plain_text_tool_output_is_wrapped(self):
        contents = self.adapter.translate_messages(
            [ChatMessage(role=Role.TOOL, content="sunny", tool_call_id="c1", name="weather")]
        )

        assert contents[0]["parts"][0]["function_response"]["response"] == {"output": "sunny"}

    def test_inline_data_is_decoded(self):
        contents = self.adapter.translate_messages(
            [ChatMessage(role=Role.USER, content=[MessagePart(inline_data=InlineData(mime_type="image/png", data="aGVsbG8="))])]
        )

        assert contents[0]["parts"][0]["inline_data"] == {"mime_type": "image/png", "data": b"hello"}

    def test_translate_tools(self):
        tools = self.adapter.translate_tools([ToolSpec(name="t", description="d")])

        assert tools[0]["function_declarations"][0]["name"] == "t"

    def test_parse_response(self):
        parts = [
            SimpleNamespace(function_call=None, text="Checking. "),
            SimpleNamespace(function_call=SimpleNamespace(name="weather", args={"city": "Oslo"}), text=None),
        ]
        raw = SimpleNamespace(
            candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))],
            usage_metadata=SimpleNamespace(prompt_token_count=8, candidates_token_count=2, total_token_count=10),
        )

        response = self.adapter.parse_response(raw)

        assert response.text == "Checking. "
        assert response.tool_calls[0].name == "weather"
        assert response.tool_calls[0].parsed_arguments() == {"city": "Oslo"}
        assert response.usage.prompt_tokens == 8

    def test_parse_response_without_candidates(self):
        with pytest.raises(ProviderError):
            self.adapter.parse_response(SimpleNamespace(candidates=[]))
