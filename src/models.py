"""Domain types shared by the catalog, executor, resolver and orchestrator."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

ResultSource = Literal["structured", "semantic"]


class ActionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTING = "executing"
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# The only legal status changes for a persisted action.
ALLOWED_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.PENDING: frozenset({ActionStatus.APPROVED, ActionStatus.CANCELLED}),
    ActionStatus.APPROVED: frozenset({ActionStatus.EXECUTING}),
    ActionStatus.EXECUTING: frozenset({ActionStatus.EXECUTED, ActionStatus.FAILED}),
    ActionStatus.EXECUTED: frozenset(),
    ActionStatus.FAILED: frozenset(),
    ActionStatus.CANCELLED: frozenset(),
}


def is_legal_transition(current: ActionStatus, target: ActionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class Invocation(BaseModel):
    """One model-requested call to a capability. Never persisted on its own."""

    capability: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    call_id: str | None = None


class ToolResult(BaseModel):
    """Outcome of a successful ``ToolExecutor.execute`` call."""

    data: Any = None
    summary: str
    duration_ms: int = 0


class ManagerRef(BaseModel):
    """Name/email-only stub for a manager that is not a directory row."""

    name: str
    email: str | None = None
    department: str | None = None
    manager_id: str | None = None


class EmployeeProfile(BaseModel):
    """Directory entry normalized from either the structured or the semantic path."""

    employee_id: str | None = None
    full_name: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    department: str | None = None
    role: str | None = None
    manager_id: str | None = None
    work_location: str | None = None
    hire_date: str | None = None
    onboarding_status: str | None = None
    source: ResultSource
    manager: EmployeeProfile | ManagerRef | None = None

    @property
    def display_name(self) -> str:
        return self.full_name


class KnowledgeResult(BaseModel):
    """One ranked hit from ``KnowledgeResolver.search``."""

    category: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: float = 0.0
    source: ResultSource


# ── Orchestrator output ──────────────────────────────────────────────


class TurnOutcome(str, Enum):
    ANSWERED = "answered"
    AWAITING_APPROVAL = "awaiting_approval"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ITERATION_LIMIT = "iteration_limit"


class ActionView(BaseModel):
    """Caller-facing snapshot of a persisted action."""

    id: str
    capability: str
    description: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    status: ActionStatus
    requires_approval: bool
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime | None = None
    executed_at: datetime | None = None
    execution_duration_ms: int | None = None


class AgentTurnResult(BaseModel):
    """What one user message produced.

    ``awaiting_approval`` is true exactly when the turn ended by staging
    actions; ``content`` then carries the model's partial text.
    """

    outcome: TurnOutcome
    content: str
    pending_actions: list[ActionView] = Field(default_factory=list)
    executed_actions: list[ActionView] = Field(default_factory=list)
    notice: str | None = None
    error: str | None = None
    error_code: str | None = None
    is_recoverable: bool | None = None
    iterations: int = 0

    @property
    def awaiting_approval(self) -> bool:
        return self.outcome is TurnOutcome.AWAITING_APPROVAL

    @property
    def success(self) -> bool:
        return self.outcome in (TurnOutcome.ANSWERED, TurnOutcome.AWAITING_APPROVAL)


EmployeeProfile.model_rebuild()
