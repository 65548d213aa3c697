"""
Pydantic models defining the data contracts between components.
"""

import json
from typing import Any

from pydantic import BaseModel, Field

from .enums import (
    EntityType,
    FactType,
    Role,
    StepOutcomeKind,
    StopReason,
    WorkflowStatus,
)

# ============================================================================
# Message payloads
# ============================================================================


class InlineData(BaseModel):
    """Binary attachment carried inline as base64."""

    mime_type: str
    data: str = Field(..., description="Base64-encoded payload")


class MessagePart(BaseModel):
    """One part of a multi-part user message."""

    text: str | None = None
    inline_data: InlineData | None = None


MessagePayload = str | list[MessagePart]


# ============================================================================
# Provider Router contracts
# ============================================================================


class ToolCall(BaseModel):
    """A model-requested invocation of a named capability."""

    id: str
    name: str
    arguments: str = Field(default="{}", description="JSON-encoded arguments")

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode the arguments JSON. Raises ValueError on malformed input."""
        if not self.arguments:
            return {}
        value = json.loads(self.arguments)
        if not isinstance(value, dict):
            raise ValueError("Tool arguments must be a JSON object")
        return value


class ChatMessage(BaseModel):
    """Message in the shared, backend-neutral conversation format."""

    role: Role
    content: str | list[MessagePart] | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = Field(None, description="Tool name for tool-role messages")


class TokenUsage(BaseModel):
    """Token accounting reported by a backend."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ToolSpec(BaseModel):
    """Backend-neutral tool declaration."""

    name: str
    description: str
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema for the tool arguments",
    )


class LLMResponse(BaseModel):
    """Canonical response returned by the Provider Router."""

    text: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    usage: TokenUsage | None = None
    provider_id: str
    model: str
    latency_ms: float = 0.0


# ============================================================================
# Tool Executor contracts
# ============================================================================


class ToolResult(BaseModel):
    """Normalized outcome of one tool call."""

    call_id: str
    name: str
    success: bool
    output: str | None = None
    error: str | None = None
    execution_time_ms: float = 0.0

    def to_message(self) -> ChatMessage:
        """Render as a tool-role message matched to the originating call."""
        content = self.output if self.success else json.dumps({"error": self.error})
        return ChatMessage(
            role=Role.TOOL,
            content=content or "",
            tool_call_id=self.call_id,
            name=self.name,
        )


# ============================================================================
# Memory Store records
# ============================================================================


class Fact(BaseModel):
    """Atomic, embeddable statement kept for long-term recall."""

    id: int
    content: str
    embedding: list[float]
    type: FactType = FactType.CHAT_FACT
    created_at: int
    source_message_id: int | None = None
    metadata: dict[str, Any] | None = None


class Summary(BaseModel):
    """Compressed replacement for a pruned batch of raw messages."""

    id: int
    content: str
    last_pruned_id: int
    timestamp: int


class Entity(BaseModel):
    """Knowledge-graph node, unique by exact name."""

    id: int
    name: str
    type: EntityType
    description: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: int


class Relationship(BaseModel):
    """Directed labeled edge between two entities."""

    id: int
    subject_id: int
    predicate: str
    object_id: int
    metadata: dict[str, Any] | None = None
    created_at: int


class UsageRecord(BaseModel):
    """Append-only token/cost accounting row."""

    id: int
    model: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost_usd: float
    timestamp: int


class UsageTotals(BaseModel):
    """Aggregated usage over a time window."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0


class VectorMatch(BaseModel):
    """Nearest-neighbour hit from the vector index."""

    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConsolidationReport(BaseModel):
    """What a fact consolidation pass changed."""

    operations: int = 0
    created: int = 0
    deleted: int = 0


class GraphExtraction(BaseModel):
    """Ids touched by one knowledge-graph extraction."""

    entity_ids: dict[str, int] = Field(default_factory=dict)
    relationship_ids: list[int] = Field(default_factory=list)


# ============================================================================
# Workflow Engine records
# ============================================================================


class WorkflowStep(BaseModel):
    """One planned sub-task delegated to a role-specialized sub-agent."""

    id: int
    description: str
    role: str = "generalist"
    dependencies: list[int] = Field(default_factory=list)


class Workflow(BaseModel):
    """Persisted multi-step plan and its progress."""

    id: int
    name: str
    status: WorkflowStatus
    plan: list[WorkflowStep] = Field(default_factory=list)
    current_step: int = 0
    result: str = ""
    created_at: int
    updated_at: int

    @property
    def is_exhausted(self) -> bool:
        return self.current_step >= len(self.plan)


class StepOutcome(BaseModel):
    """Outcome of WorkflowEngine.execute_next_step."""

    kind: StepOutcomeKind
    text: str
    question: str | None = None


# ============================================================================
# Agent Loop results
# ============================================================================


class AgentResult(BaseModel):
    """Outcome of one agent turn."""

    text: str
    stop_reason: StopReason
    model_calls: int = 0
    tool_calls: list[ToolCall] = Field(default_factory=list)
    provider_id: str | None = None
