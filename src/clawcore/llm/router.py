"""
Provider Router: ordered failover across LLM backends.

Backends are tried in registration order. Any failure moves on to the next
backend; none is retried on the same backend. When every backend fails the
caller gets one ProviderChainExhaustedError listing each failure.
"""

from typing import TYPE_CHECKING

from ..exceptions import ProviderChainExhaustedError
from ..models.contracts import ChatMessage, LLMResponse, MessagePart, ToolSpec
from ..models.enums import Role
from ..utils.logging import get_logger
from .adapters import BackendAdapter, GeminiAdapter, OpenAICompatibleAdapter

if TYPE_CHECKING:
    from ..core.config import ClawConfig, ResolvedCredentials

Payload = str | list[MessagePart] | list[ChatMessage]

OPENROUTER_HEADERS = {"X-Title": "clawcore"}


def build_messages(
    payload: Payload | None,
    history: list[ChatMessage] | None = None,
    system_prompt: str | None = None,
) -> list[ChatMessage]:
    """
    Assemble the shared-format message list for one call.

    A string or part list becomes a user turn. A list of ChatMessage (tool
    results, replayed turns) is appended as-is. The system prompt is only
    added when the history does not already carry one.
    """
    messages = list(history or [])

    if system_prompt and not any(m.role == Role.SYSTEM for m in messages):
        messages.insert(0, ChatMessage(role=Role.SYSTEM, content=system_prompt))

    if payload is None:
        return messages
    if isinstance(payload, str):
        messages.append(ChatMessage(role=Role.USER, content=payload))
    elif payload and all(isinstance(item, ChatMessage) for item in payload):
        messages.extend(payload)  # type: ignore[arg-type]
    elif payload:
        messages.append(ChatMessage(role=Role.USER, content=list(payload)))  # type: ignore[arg-type]
    return messages


class ProviderRouter:
    """
    Failover chain over backend adapters.

    Example:
        router = ProviderRouter([openrouter_adapter, gemini_adapter])
        response = await router.send("Hello", system_prompt="Be brief")
    """

    def __init__(self, adapters: list[BackendAdapter]):
        self.adapters = list(adapters)
        self.logger = get_logger(__name__)
        self.last_provider: str | None = None

    def active_providers(self) -> list[str]:
        return [adapter.provider_id for adapter in self.adapters]

    async def send(
        self,
        payload: Payload | None,
        history: list[ChatMessage] | None = None,
        system_prompt: str | None = None,
        tools: list[ToolSpec] | None = None,
    ) -> LLMResponse:
        """
        Send one request down the chain.

        Raises:
            ProviderChainExhaustedError: Every backend failed (or none configured)
        """
        messages = build_messages(payload, history, system_prompt)
        failures: list[tuple[str, str]] = []

        for adapter in self.adapters:
            try:
                response = await adapter.complete(messages, tools)
            except Exception as e:
                reason = getattr(e, "message", None) or str(e)
                self.logger.warning(
                    "provider_failed",
                    provider=adapter.provider_id,
                    model=adapter.model,
                    error=reason,
                )
                failures.append((adapter.provider_id, reason))
                continue

            if failures:
                self.logger.info(
                    "provider_failover_succeeded",
                    provider=adapter.provider_id,
                    failed=[pid for pid, _ in failures],
                )
            self.last_provider = adapter.provider_id
            return response

        raise ProviderChainExhaustedError(failures)


def build_default_router(config: "ClawConfig", credentials: "ResolvedCredentials") -> ProviderRouter:
    """
    Assemble the production chain from resolved credentials.

    Order: OpenRouter (if keyed), Gemini high tier, Gemini efficient tier,
    OpenAI (if keyed).
    """
    timeout = config.llm_timeout_seconds
    adapters: list[BackendAdapter] = []

    if credentials.openrouter:
        adapters.append(
            OpenAICompatibleAdapter(
                provider_id="openrouter",
                model=f"openrouter/{config.openrouter_model}",
                api_key=credentials.openrouter,
                timeout=timeout,
                extra_headers=OPENROUTER_HEADERS,
            )
        )
    if credentials.gemini:
        adapters.append(
            GeminiAdapter("gemini-pro", config.gemini_pro_model, api_key=credentials.gemini, timeout=timeout)
        )
        adapters.append(
            GeminiAdapter("gemini-flash", config.gemini_flash_model, api_key=credentials.gemini, timeout=timeout)
        )
    if credentials.openai:
        adapters.append(
            OpenAICompatibleAdapter(
                provider_id="openai",
                model=f"openai/{config.openai_model}",
                api_key=credentials.openai,
                timeout=timeout,
            )
        )

    router = ProviderRouter(adapters)
    router.logger.info("router_initialized", providers=router.active_providers())
    return router
