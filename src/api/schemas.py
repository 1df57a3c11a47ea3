"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from src.models import ActionStatus, ActionView, AgentTurnResult


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=20000)


class AgentMessageRequest(BaseModel):
    """Incoming chat message from the frontend."""

    message: str = Field(..., min_length=1, max_length=2000, description="The user's message")
    conversation_id: str | None = Field(
        None,
        max_length=100,
        description="Conversation the message belongs to; staged actions are tagged with it",
    )
    conversation_history: list[HistoryMessage] = Field(
        default_factory=list,
        description="Earlier messages of the conversation, oldest first",
    )
    user_email: str | None = Field(None, description="Employee email used to personalize answers")


class AgentMessageResponse(BaseModel):
    success: bool
    conversation_id: str | None = None
    response: AgentTurnResult
    awaiting_approval: bool = False


class ActionIdsRequest(BaseModel):
    action_ids: list[str] = Field(..., min_length=1, max_length=50)
    conversation_id: str | None = None


class ActionOutcomeSchema(BaseModel):
    action_id: str
    success: bool
    description: str
    capability: str | None = None
    status: str | None = None
    summary: str | None = None
    error: str | None = None
    error_code: str | None = None
    result: dict | None = None


class ApproveResponse(BaseModel):
    success: bool = True
    results: list[ActionOutcomeSchema]
    summary: str = Field(..., description="Human-readable digest of the executed actions")
    success_count: int
    total_count: int
    cancelled: bool = False


class RejectResponse(BaseModel):
    success: bool = True
    message: str = "Actions cancelled"
    cancelled_ids: list[str]
    cancelled_count: int


class ActionListResponse(BaseModel):
    success: bool = True
    actions: list[ActionView]
    total: int
    limit: int
    offset: int
    status: ActionStatus | None = None


class StatsResponse(BaseModel):
    success: bool = True
    total: int
    pending: int
    approved: int
    executed: int
    failed: int
    cancelled: int
    avg_execution_time_ms: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "nova-agent"
    database: str = "ok"
