"""
Pydantic models and enums for the clawcore runtime.
"""

from .contracts import (
    AgentResult,
    ChatMessage,
    Entity,
    Fact,
    InlineData,
    LLMResponse,
    MessagePart,
    Relationship,
    StepOutcome,
    Summary,
    TokenUsage,
    ToolCall,
    ToolResult,
    ToolSpec,
    UsageRecord,
    Workflow,
    WorkflowStep,
)
from .enums import (
    EntityType,
    FactType,
    LogLevel,
    Role,
    StepOutcomeKind,
    StopReason,
    WorkflowStatus,
)

__all__ = [
    "AgentResult",
    "ChatMessage",
    "Entity",
    "Fact",
    "InlineData",
    "LLMResponse",
    "MessagePart",
    "Relationship",
    "StepOutcome",
    "Summary",
    "TokenUsage",
    "ToolCall",
    "ToolResult",
    "ToolSpec",
    "UsageRecord",
    "Workflow",
    "WorkflowStep",
    "EntityType",
    "FactType",
    "LogLevel",
    "Role",
    "StepOutcomeKind",
    "StopReason",
    "WorkflowStatus",
]
