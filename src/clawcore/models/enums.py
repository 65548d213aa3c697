"""Enums shared across the runtime.

String-valued so they round-trip through SQLite columns and JSON unchanged.
"""

from enum import Enum


class Role(str, Enum):
    """Message roles in the shared conversation format."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"

    def __str__(self) -> str:
        return self.value


class FactType(str, Enum):
    """Kinds of long-term facts.

    Attributes:
        CHAT_FACT: Atomic statement extracted from conversation
        USER_PREFERENCE: How the user wants things done
        STRATEGIC_LESSON: Lesson extracted from a completed workflow
        MEDIA_CONTEXT: Description of an indexed attachment
        FILE_CHUNK: Chunk of an indexed workspace file
    """

    CHAT_FACT = "chat_fact"
    USER_PREFERENCE = "user_preference"
    STRATEGIC_LESSON = "strategic_lesson"
    MEDIA_CONTEXT = "media_context"
    FILE_CHUNK = "file_chunk"

    def __str__(self) -> str:
        return self.value


class EntityType(str, Enum):
    """Knowledge-graph entity types."""

    PERSON = "Person"
    PROJECT = "Project"
    PLACE = "Place"
    ORGANIZATION = "Organization"
    TOOL = "Tool"

    def __str__(self) -> str:
        return self.value


class WorkflowStatus(str, Enum):
    """Workflow lifecycle states."""

    PLANNED = "planned"
    ACTIVE = "active"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class StopReason(str, Enum):
    """Why an agent turn ended."""

    COMPLETE = "complete"
    MAX_ITERATIONS = "max_iterations"
    STATUS_BYPASS = "status_bypass"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


class StepOutcomeKind(str, Enum):
    """Result of a single execute_next_step call."""

    STEP_COMPLETED = "step_completed"
    BLOCKED = "blocked"
    WORKFLOW_COMPLETED = "workflow_completed"

    def __str__(self) -> str:
        return self.value


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def __str__(self) -> str:
        return self.value


__all__ = [
    "Role",
    "FactType",
    "EntityType",
    "WorkflowStatus",
    "StopReason",
    "StepOutcomeKind",
    "LogLevel",
]
