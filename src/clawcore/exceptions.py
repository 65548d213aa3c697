"""Exception hierarchy with structured context for logging"""

from datetime import datetime
from typing import Any


class ClawError(Exception):
    """Base exception with context and metadata"""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
        user_message: str | None = None,
    ):
        """
        Initialize exception with context.

        Args:
            message: Technical error message for logs
            details: Additional context (dict for structured logging)
            recoverable: Whether the caller can carry on after this error
            user_message: User-facing error message
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        self.user_message = user_message or message
        self.timestamp = datetime.now()

    def __str__(self) -> str:
        parts = [self.message]

        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({details_str})")

        if self.recoverable:
            parts.append("[recoverable]")

        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "user_message": self.user_message,
            "timestamp": self.timestamp.isoformat(),
        }


class ProviderError(ClawError):
    """A single LLM backend failed (auth, quota, malformed response, transport)."""

    def __init__(
        self,
        message: str,
        provider_id: str,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ):
        details = details or {}
        details["provider_id"] = provider_id

        super().__init__(
            message=message,
            details=details,
            recoverable=True,  # the router falls through to the next backend
            user_message="An error occurred while calling the LLM API.",
        )
        self.provider_id = provider_id
        self.status_code = status_code


class ProviderChainExhaustedError(ClawError):
    """Every backend in the failover chain failed."""

    def __init__(self, failures: list[tuple[str, str]]):
        self.failures = list(failures)
        lines = [f"{provider_id}: {reason}" for provider_id, reason in self.failures]
        super().__init__(
            message="All LLM providers failed:\n" + "\n".join(lines),
            details={"attempts": len(self.failures)},
            recoverable=False,
            user_message="All language model providers are currently unavailable.",
        )

    def __str__(self) -> str:
        return self.message


class ToolExecutionError(ClawError):
    """Tool execution errors"""

    def __init__(self, message: str, tool_name: str, details: dict[str, Any] | None = None):
        details = details or {}
        details["tool_name"] = tool_name

        super().__init__(
            message=message,
            details=details,
            recoverable=True,  # reported back to the model, never fatal
            user_message=f"Tool '{tool_name}' execution failed.",
        )
        self.tool_name = tool_name


class WorkflowError(ClawError):
    """Base class for workflow engine errors."""


class WorkflowNotFoundError(WorkflowError):
    """Raised when a workflow id does not exist."""

    def __init__(self, workflow_id: int):
        super().__init__(
            message=f"Workflow {workflow_id} not found",
            details={"workflow_id": workflow_id},
            user_message="Workflow not found.",
        )
        self.workflow_id = workflow_id


class WorkflowPlanError(WorkflowError):
    """The planner returned something that is not a usable plan."""

    def __init__(self, message: str, raw_plan: str | None = None):
        details = {}
        if raw_plan is not None:
            details["raw_plan"] = raw_plan[:200]
        super().__init__(message=message, details=details)


class WorkflowStepError(WorkflowError):
    """A workflow step failed; the workflow has been marked failed."""

    def __init__(self, message: str, workflow_id: int, step_index: int):
        super().__init__(
            message=message,
            details={"workflow_id": workflow_id, "step_index": step_index},
            user_message=f"Workflow {workflow_id} failed at step {step_index + 1}.",
        )
        self.workflow_id = workflow_id
        self.step_index = step_index


class RecursionBudgetExceededError(ClawError):
    """Sub-agent delegation went deeper than the configured budget."""

    def __init__(self, depth: int, max_depth: int):
        super().__init__(
            message=f"Maximum delegation depth reached ({depth} >= {max_depth})",
            details={"depth": depth, "max_depth": max_depth},
            user_message="Maximum delegation depth reached. Please consolidate and return what you have.",
        )
        self.depth = depth
        self.max_depth = max_depth


class PersistenceError(ClawError):
    """Storage errors. Fatal during schema initialization."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            details=details,
            recoverable=False,
            user_message="The memory store is unavailable.",
        )


class ConfigurationError(ClawError):
    """Configuration validation errors"""

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = value

        super().__init__(
            message=message,
            details=details,
            recoverable=False,  # Config errors require fix
            user_message=f"Configuration error: {message}",
        )
        self.field = field
        self.value = value
