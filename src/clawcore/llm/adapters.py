"""
Backend adapters.

Each adapter translates the shared conversation format (``ChatMessage`` and
``ToolSpec``) into one backend's wire format, calls it, and normalizes the
reply into ``LLMResponse``. Anything that goes wrong surfaces as
``ProviderError`` so the router can fall through to the next backend.
"""

import base64
import json
import time
from abc import ABC, abstractmethod
from typing import Any

import google.generativeai as genai
import litellm

from ..exceptions import ProviderError
from ..memory.multimodal import to_data_url
from ..models.contracts import ChatMessage, LLMResponse, MessagePart, TokenUsage, ToolCall, ToolSpec
from ..models.enums import Role
from ..utils.logging import get_logger

logger = get_logger(__name__)


class BackendAdapter(ABC):
    """Translate, call, normalize."""

    def __init__(self, provider_id: str, model: str, timeout: int = 60):
        self.provider_id = provider_id
        self.model = model
        self.timeout = timeout

    @abstractmethod
    def translate_messages(self, messages: list[ChatMessage]) -> list[dict[str, Any]]:
        """Shared conversation format to backend messages."""

    @abstractmethod
    def translate_tools(self, tools: list[ToolSpec]) -> list[dict[str, Any]] | None:
        """Tool declarations in the backend's schema, or None when there are none."""

    @abstractmethod
    def parse_response(self, raw: Any) -> LLMResponse:
        """Backend reply to LLMResponse. Raises ProviderError if malformed."""

    @abstractmethod
    async def _call(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None) -> Any:
        """Perform the transport call."""

    async def complete(self, messages: list[ChatMessage], tools: list[ToolSpec] | None = None) -> LLMResponse:
        """
        Run one completion against this backend.

        Raises:
            ProviderError: On transport, auth, quota or parse failure
        """
        start = time.perf_counter()
        try:
            raw = await self._call(self.translate_messages(messages), self.translate_tools(tools or []))
            response = self.parse_response(raw)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(
                f"{type(e).__name__}: {e}",
                provider_id=self.provider_id,
                details={"model": self.model},
                status_code=getattr(e, "status_code", None),
            ) from e

        response.latency_ms = (time.perf_counter() - start) * 1000
        return response

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider_id={self.provider_id!r}, model={self.model!r})"


# ============================================================================
# OpenAI chat format (OpenRouter, OpenAI)
# ============================================================================


def _openai_content(content: str | list[MessagePart] | None) -> Any:
    if content is None or isinstance(content, str):
        return content
    parts = []
    for part in content:
        if part.text:
            parts.append({"type": "text", "text": part.text})
        elif part.inline_data is not None:
            parts.append({"type": "image_url", "image_url": {"url": to_data_url(part.inline_data)}})
    return parts


class OpenAICompatibleAdapter(BackendAdapter):
    """
    OpenAI chat-completions format through ``litellm.acompletion``.

    Example:
        adapter = OpenAICompatibleAdapter(
            provider_id="openrouter",
            model="openrouter/openai/gpt-4o",
            api_key=credentials.openrouter,
        )
    """

    def __init__(
        self,
        provider_id: str,
        model: str,
        api_key: str | None = None,
        timeout: int = 60,
        extra_headers: dict[str, str] | None = None,
    ):
        super().__init__(provider_id, model, timeout)
        self.api_key = api_key
        self.extra_headers = extra_headers

    def translate_messages(self, messages: list[ChatMessage]) -> list[dict[str, Any]]:
        translated = []
        for msg in messages:
            if msg.role == Role.TOOL:
                translated.append(
                    {
                        "role": "tool",
                        "tool_call_id": msg.tool_call_id or msg.name,
                        "content": msg.content if isinstance(msg.content, str) else json.dumps(msg.content),
                    }
                )
            elif msg.role == Role.ASSISTANT and msg.tool_calls:
                translated.append(
                    {
                        "role": "assistant",
                        "content": msg.content or None,
                        "tool_calls": [
                            {
                                "id": tc.id,
                                "type": "function",
                                "function": {"name": tc.name, "arguments": tc.arguments},
                            }
                            for tc in msg.tool_calls
                        ],
                    }
                )
            else:
                translated.append({"role": msg.role.value, "content": _openai_content(msg.content)})
        return translated

    def translate_tools(self, tools: list[ToolSpec]) -> list[dict[str, Any]] | None:
        if not tools:
            return None
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    async def _call(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None) -> Any:
        kwargs: dict[str, Any] = {"model": self.model, "messages": messages, "timeout": self.timeout}
        if tools:
            kwargs["tools"] = tools
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers
        return await litellm.acompletion(**kwargs)

    def parse_response(self, raw: Any) -> LLMResponse:
        choices = getattr(raw, "choices", None)
        if not choices:
            raise ProviderError("Response has no choices", provider_id=self.provider_id)

        message = choices[0].message
        tool_calls = []
        for tc in getattr(message, "tool_calls", None) or []:
            arguments = tc.function.arguments
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments)
            tool_calls.append(ToolCall(id=tc.id, name=tc.function.name, arguments=arguments or "{}"))

        usage = getattr(raw, "usage", None)
        return LLMResponse(
            text=message.content or "",
            tool_calls=tool_calls,
            usage=(
                TokenUsage(
                    prompt_tokens=usage.prompt_tokens or 0,
                    completion_tokens=usage.completion_tokens or 0,
                    total_tokens=usage.total_tokens or 0,
                )
                if usage
                else None
            ),
            provider_id=self.provider_id,
            model=getattr(raw, "model", None) or self.model,
        )


# ============================================================================
# Gemini native format
# ============================================================================


def _gemini_parts(content: str | list[MessagePart] | None) -> list[dict[str, Any]]:
    if content is None:
        return []
    if isinstance(content, str):
        return [{"text": content}]
    parts = []
    for part in content:
        if part.text:
            parts.append({"text": part.text})
        elif part.inline_data is not None:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": part.inline_data.mime_type,
                        "data": base64.b64decode(part.inline_data.data),
                    }
                }
            )
    return parts


def _to_plain(value: Any) -> Any:
    # proto-plus maps and repeated fields to JSON-serializable values
    if isinstance(value, (str, bytes, int, float, bool)) or value is None:
        return value
    if hasattr(value, "items"):
        return {k: _to_plain(v) for k, v in value.items()}
    if hasattr(value, "__iter__"):
        return [_to_plain(v) for v in value]
    return value


def _function_response_body(content: Any) -> dict[str, Any]:
    if isinstance(content, str):
        try:
            decoded = json.loads(content)
        except json.JSONDecodeError:
            return {"output": content}
        if isinstance(decoded, dict):
            return decoded
        return {"output": decoded}
    return {"output": content}


class GeminiAdapter(BackendAdapter):
    """
    Gemini through ``google.generativeai``.

    Roles map ``assistant`` to ``model``; tool results become ``function``
    turns carrying a ``function_response`` part keyed by tool name. The system
    prompt is folded into a leading user turn acknowledged by the model.
    """

    def __init__(self, provider_id: str, model: str, api_key: str | None = None, timeout: int = 60):
        super().__init__(provider_id, model, timeout)
        if api_key:
            genai.configure(api_key=api_key)
        self._model = genai.GenerativeModel(model)

    def translate_messages(self, messages: list[ChatMessage]) -> list[dict[str, Any]]:
        contents: list[dict[str, Any]] = []
        for msg in messages:
            if msg.role == Role.SYSTEM:
                contents.append({"role": "user", "parts": _gemini_parts(msg.content)})
                contents.append({"role": "model", "parts": [{"text": "Understood."}]})
            elif msg.role == Role.ASSISTANT:
                parts = _gemini_parts(msg.content)
                for tc in msg.tool_calls:
                    parts.append(
                        {"function_call": {"name": tc.name, "args": tc.parsed_arguments()}}
                    )
                contents.append({"role": "model", "parts": parts or [{"text": ""}]})
            elif msg.role == Role.TOOL:
                contents.append(
                    {
                        "role": "function",
                        "parts": [
                            {
                                "function_response": {
                                    "name": msg.name or msg.tool_call_id,
                                    "response": _function_response_body(msg.content),
                                }
                            }
                        ],
                    }
                )
            else:
                contents.append({"role": "user", "parts": _gemini_parts(msg.content)})
        return contents

    def translate_tools(self, tools: list[ToolSpec]) -> list[dict[str, Any]] | None:
        if not tools:
            return None
        return [
            {
                "function_declarations": [
                    {"name": t.name, "description": t.description, "parameters": t.parameters}
                    for t in tools
                ]
            }
        ]

    async def _call(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None) -> Any:
        return await self._model.generate_content_async(
            messages,
            tools=tools,
            request_options={"timeout": self.timeout},
        )

    def parse_response(self, raw: Any) -> LLMResponse:
        candidates = getattr(raw, "candidates", None)
        if not candidates:
            raise ProviderError("Response has no candidates", provider_id=self.provider_id)

        texts: list[str] = []
        tool_calls: list[ToolCall] = []
        for index, part in enumerate(candidates[0].content.parts):
            function_call = getattr(part, "function_call", None)
            if function_call and function_call.name:
                tool_calls.append(
                    ToolCall(
                        id=f"{function_call.name}-{index}",
                        name=function_call.name,
                        arguments=json.dumps(_to_plain(function_call.args or {})),
                    )
                )
            elif getattr(part, "text", None):
                texts.append(part.text)

        usage = getattr(raw, "usage_metadata", None)
        return LLMResponse(
            text="".join(texts),
            tool_calls=tool_calls,
            usage=(
                TokenUsage(
                    prompt_tokens=usage.prompt_token_count or 0,
                    completion_tokens=usage.candidates_token_count or 0,
                    total_tokens=usage.total_token_count or 0,
                )
                if usage
                else None
            ),
            provider_id=self.provider_id,
            model=self.model,
        )
