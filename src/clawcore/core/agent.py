"""
Agent Loop: one bounded model/tool cycle per user turn.

Each turn assembles memory context into the system prompt, calls the provider
chain, runs requested tools concurrently, and feeds their results back until
the model answers in plain text or the model-call bound is reached. Memory
writes, usage accounting and intent detection run in the background.
"""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING

from ..exceptions import ProviderChainExhaustedError
from ..llm.router import ProviderRouter, build_messages
from ..memory.multimodal import payload_text
from ..memory.store import MemoryStore
from ..models.contracts import AgentResult, ChatMessage, LLMResponse, MessagePayload, ToolCall
from ..models.enums import Role, StopReason
from ..tools.registry import ToolContext, ToolRegistry
from ..utils.background import BackgroundTasks
from ..utils.logging import ComponentLogger, get_logger
from .act import ToolExecutor
from .config import ClawConfig
from .context import ContextAssembler
from .status import StatusReporter
from .traits import get_trait

if TYPE_CHECKING:
    from .proactive import ProactiveMonitor

MAX_ITERATIONS_MESSAGE = "Error: Maximum agent loop iterations reached."

INSTRUCTIONS = """INSTRUCTIONS:
- You have access to tools. Use them proactively to solve the user's problems.
- Be concise, bold, and helpful."""


def is_status_command(text: str) -> bool:
    normalized = text.strip().lower()
    return normalized.startswith("/status") or normalized == "status"


def build_system_prompt(trait_prompt: str, formatted_context: str, now: datetime | None = None) -> str:
    now = now or datetime.now()
    return f"{trait_prompt}\nTime: {now.strftime('%Y-%m-%d %H:%M:%S')}\n\n{formatted_context}\n\n{INSTRUCTIONS}"


class AgentLoop:
    """
    Runs user turns against the provider chain and tool registry.

    Example:
        loop = AgentLoop(router, executor, registry, memory, config,
                         context_assembler=ContextAssembler(memory),
                         status_reporter=reporter)
        result = await loop.run("What's on my plate today?")
        print(result.text)
    """

    def __init__(
        self,
        router: ProviderRouter,
        executor: ToolExecutor,
        registry: ToolRegistry,
        memory: MemoryStore | None,
        config: ClawConfig,
        context_assembler: ContextAssembler | None = None,
        status_reporter: StatusReporter | None = None,
        proactive: "ProactiveMonitor | None" = None,
        background: BackgroundTasks | None = None,
        depth: int = 0,
        debug: bool | None = None,
        excluded_tools: frozenset[str] = frozenset(),
    ):
        self.router = router
        self.executor = executor
        self.registry = registry
        self.memory = memory
        self.config = config
        self.context_assembler = context_assembler
        self.status_reporter = status_reporter
        self.proactive = proactive
        self.background = background or BackgroundTasks()
        self.depth = depth
        self.debug = config.debug if debug is None else debug
        self.excluded_tools = excluded_tools
        self.max_iterations = config.max_agent_iterations

        self.logger = get_logger(__name__)
        self.component_logger = ComponentLogger("agent_loop", rich_output=config.enable_rich_console)

    async def run(self, message: MessagePayload, role: str = "generalist") -> AgentResult:
        """
        Handle one user turn.

        Never raises for provider failures: an exhausted chain becomes an
        ``I encountered an error: ...`` reply with ``StopReason.ERROR``.
        """
        user_text = payload_text(message)

        if is_status_command(user_text):
            report = self.status_reporter.report() if self.status_reporter else "Status unavailable."
            return AgentResult(text=report, stop_reason=StopReason.STATUS_BYPASS)

        started = self.component_logger.log_operation_start("agent_turn", {"role": role, "depth": self.depth})

        if self.memory is not None:
            self.background.spawn(self.memory.log_message(Role.USER, message), name="log_user_message")
        if self.proactive is not None:
            self.background.spawn(self.proactive.detect_intent(user_text), name="detect_intent")

        try:
            formatted_context = ""
            if self.context_assembler is not None:
                context = await self.context_assembler.get_context(user_text)
                formatted_context = self.context_assembler.format_context(context)
            system_prompt = build_system_prompt(get_trait(role).system_prompt, formatted_context)
            result = await self.execute(message, system_prompt, role=role)
        except ProviderChainExhaustedError as e:
            self.component_logger.log_operation_error("agent_turn", e)
            return AgentResult(text=f"I encountered an error: {e.message}", stop_reason=StopReason.ERROR)
        except Exception as e:
            self.component_logger.log_operation_error("agent_turn", e)
            return AgentResult(
                text=f"I encountered an error: {getattr(e, 'message', None) or str(e) or 'Unknown error'}",
                stop_reason=StopReason.ERROR,
            )

        if result.stop_reason == StopReason.COMPLETE and result.text and self.memory is not None:
            self.background.spawn(
                self.memory.log_message(Role.ASSISTANT, result.text), name="log_assistant_message"
            )

        self.component_logger.log_operation_complete(
            "agent_turn",
            started,
            {
                "stop_reason": result.stop_reason.value,
                "model_calls": result.model_calls,
                "tool_calls": len(result.tool_calls),
            },
        )
        return result

    async def execute(self, payload: MessagePayload, system_prompt: str, role: str | None = None) -> AgentResult:
        """
        The bounded model/tool cycle, without memory context or write-back.

        Raises:
            ProviderChainExhaustedError: Every backend failed on some call
        """
        transcript = build_messages(payload, system_prompt=system_prompt)
        tools = self.registry.specs(exclude=self.excluded_tools) or None
        tool_context = ToolContext(depth=self.depth, role=role)
        executed: list[ToolCall] = []
        model_calls = 0

        while True:
            response = await self.router.send(None, history=transcript, tools=tools)
            model_calls += 1
            self._record_usage(response)
            transcript.append(
                ChatMessage(role=Role.ASSISTANT, content=response.text or None, tool_calls=response.tool_calls)
            )

            if not response.tool_calls:
                self._log_transcript(transcript)
                return AgentResult(
                    text=response.text,
                    stop_reason=StopReason.COMPLETE,
                    model_calls=model_calls,
                    tool_calls=executed,
                    provider_id=response.provider_id,
                )

            if model_calls >= self.max_iterations:
                self.logger.warning(
                    "agent_loop_bound_reached",
                    model_calls=model_calls,
                    pending_tools=[tc.name for tc in response.tool_calls],
                )
                self._log_transcript(transcript)
                return AgentResult(
                    text=MAX_ITERATIONS_MESSAGE,
                    stop_reason=StopReason.MAX_ITERATIONS,
                    model_calls=model_calls,
                    tool_calls=executed,
                    provider_id=response.provider_id,
                )

            results = await self.executor.execute_all(response.tool_calls, tool_context)
            executed.extend(response.tool_calls)
            transcript.extend(result.to_message() for result in results)

    def _record_usage(self, response: LLMResponse) -> None:
        if self.memory is None or response.usage is None:
            return
        self.background.spawn(
            asyncio.to_thread(
                self.memory.log_usage,
                response.model,
                response.usage.prompt_tokens,
                response.usage.completion_tokens,
                response.usage.total_tokens,
            ),
            name="log_usage",
        )

    def _log_transcript(self, transcript: list[ChatMessage]) -> None:
        if not self.debug:
            return
        self.logger.debug(
            "agent_transcript",
            depth=self.depth,
            messages=[m.model_dump(mode="json", exclude_none=True) for m in transcript],
        )
