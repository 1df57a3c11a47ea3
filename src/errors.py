"""Error taxonomy for the agent core.

Every error the orchestrator or the approval path can surface derives from
``AgentError`` and carries a stable ``code``, an ``is_recoverable`` flag and
a message that is safe to show to the end user.
"""

from __future__ import annotations

from typing import Any

# ── Error codes ──────────────────────────────────────────────────────
AUTH_TOKEN_INVALID = "AUTH_1002"
VALIDATION_FAILED = "VAL_2001"
RESOURCE_NOT_FOUND = "RES_3001"
DATABASE_ERROR = "DB_4001"
AI_GENERATION_FAILED = "AI_5001"
AI_MAX_ITERATIONS = "AI_5002"
AI_TOOL_EXECUTION_FAILED = "AI_5003"
AI_SERVICE_UNAVAILABLE = "AI_5005"
AI_TURN_CANCELLED = "AI_5006"


class AgentError(Exception):
    """Base class for every error the agent reports to its caller."""

    code: str = AI_GENERATION_FAILED
    is_recoverable: bool = False

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        self.details = details or {}
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return str(self)


class ValidationError(AgentError):
    """An invocation's parameters are missing or malformed."""

    code = VALIDATION_FAILED
    is_recoverable = True


class UnknownCapabilityError(ValidationError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}", details={"capability": name})
        self.capability = name


class InvalidParametersError(ValidationError):
    """Raised by the catalog when parameters fail the capability schema."""

    def __init__(
        self,
        capability: str,
        *,
        missing: list[str] | None = None,
        invalid: list[str] | None = None,
    ):
        self.capability = capability
        self.missing = missing or []
        self.invalid = invalid or []
        parts = []
        if self.missing:
            parts.append(f"missing required parameters: {', '.join(self.missing)}")
        if self.invalid:
            parts.append(f"invalid parameters: {', '.join(self.invalid)}")
        super().__init__(
            f"Invalid parameters for {capability}: {'; '.join(parts)}",
            details={"capability": capability, "missing": self.missing, "invalid": self.invalid},
        )


class AuthorizationError(AgentError):
    """External credential is missing, expired, or could not be refreshed."""

    code = AUTH_TOKEN_INVALID
    is_recoverable = True

    @property
    def user_message(self) -> str:
        return f"{self} Please reconnect your Google account in Settings."


class ExecutionError(AgentError):
    """An external service call made on behalf of a capability failed."""

    code = AI_TOOL_EXECUTION_FAILED
    is_recoverable = True

    def __init__(self, capability: str, message: str, *, status_code: int | None = None):
        self.capability = capability
        self.status_code = status_code
        super().__init__(
            message,
            details={"capability": capability, "status_code": status_code},
        )


class TransientModelError(AgentError):
    """The model reported it is overloaded; retried with backoff."""

    code = AI_SERVICE_UNAVAILABLE
    is_recoverable = True

    @property
    def user_message(self) -> str:
        return (
            "The AI service is experiencing high demand right now. "
            "Please wait a moment and try again."
        )


class ModelError(AgentError):
    """The model call failed for a reason other than overload."""

    code = AI_GENERATION_FAILED
    is_recoverable = True

    @property
    def user_message(self) -> str:
        return "I ran into a problem generating a response. Please try again in a moment."


class IterationLimitExceeded(AgentError):
    code = AI_MAX_ITERATIONS
    is_recoverable = False

    def __init__(self, iterations: int, executed_count: int = 0):
        self.iterations = iterations
        self.executed_count = executed_count
        super().__init__(
            f"Agent reached maximum iterations ({iterations})",
            details={"iterations": iterations},
        )

    @property
    def user_message(self) -> str:
        return (
            "This request requires more steps than I can handle in one go. "
            "Please try breaking it into smaller, specific tasks and ask about "
            "each one separately.\n\n"
            f"I've already completed {self.executed_count} action(s) for you."
        )


class CancellationError(AgentError):
    """The caller cancelled the turn or its deadline passed."""

    code = AI_TURN_CANCELLED
    is_recoverable = True

    def __init__(self, message: str = "The request was cancelled before it completed."):
        super().__init__(message)


class IllegalTransitionError(AgentError):
    """Raised by the action store for a status change outside the state machine."""

    code = DATABASE_ERROR

    def __init__(self, action_id: str, current: str, target: str):
        self.action_id = action_id
        self.current = current
        self.target = target
        super().__init__(
            f"Illegal status transition for action {action_id}: {current} -> {target}",
            details={"action_id": action_id, "from": current, "to": target},
        )
