"""SQLModel tables and engine helpers for the durable store.

Tables
------
* ``agent_actions``        — every proposed or executed capability invocation
* ``user_oauth_tokens``    — per-(user, provider) OAuth credentials
* ``kb_employees`` / ``kb_faqs`` / ``kb_onboarding_tasks`` — structured corpus
* ``knowledge_base``       — semantic index rows (content + metadata + embedding)

Timestamps are stored as naive UTC in plain ``DateTime`` columns so SQLite
and Postgres compare them the same way.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime, Text, UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine

from src.models import ActionStatus

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current UTC time without tzinfo (the storage convention)."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


# ── Agent actions ────────────────────────────────────────────────────


class AgentAction(SQLModel, table=True):
    """Durable, status-tracked record of one capability invocation."""

    __tablename__ = "agent_actions"

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=64)
    user_id: str = Field(index=True, max_length=64)
    conversation_id: str | None = Field(default=None, index=True, max_length=64)

    capability: str = Field(max_length=64)
    input_params: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    status: str = Field(default=ActionStatus.PENDING.value, index=True, max_length=16)
    requires_approval: bool = True

    output_result: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    error_message: str | None = Field(default=None, sa_column=Column(Text))

    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime, nullable=False, index=True),
    )
    approved_at: datetime | None = Field(default=None, sa_column=Column(DateTime))
    executed_at: datetime | None = Field(default=None, sa_column=Column(DateTime))
    execution_duration_ms: int | None = None

    @property
    def action_status(self) -> ActionStatus:
        return ActionStatus(self.status)

    def __repr__(self) -> str:
        return f"AgentAction(id={self.id}, capability={self.capability}, status={self.status})"


# ── OAuth credentials ────────────────────────────────────────────────


class OAuthCredential(SQLModel, table=True):
    __tablename__ = "user_oauth_tokens"
    __table_args__ = (UniqueConstraint("user_id", "provider"),)

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=64)
    user_id: str = Field(index=True, max_length=64)
    provider: str = Field(max_length=32)
    access_token: str = Field(sa_column=Column(Text, nullable=False))
    refresh_token: str | None = Field(default=None, sa_column=Column(Text))
    token_expiry: datetime | None = Field(default=None, sa_column=Column(DateTime))
    scope: str | None = None
    created_at: datetime = Field(default_factory=utc_now, sa_column=Column(DateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utc_now, sa_column=Column(DateTime, nullable=False))

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.token_expiry is None:
            return False
        return self.token_expiry <= (now or utc_now())


# ── Structured knowledge tables ──────────────────────────────────────


class Employee(SQLModel, table=True):
    __tablename__ = "kb_employees"

    id: str = Field(primary_key=True, max_length=16)  # E001, E002...
    first_name: str
    last_name: str
    full_name: str = Field(index=True)
    email: str = Field(index=True, unique=True)
    department: str = Field(index=True)
    role: str = Field(index=True)
    manager_id: str | None = Field(default=None, index=True, max_length=16)
    hire_date: str | None = None
    work_location: str | None = None
    onboarding_status: str | None = "Not Started"


class Faq(SQLModel, table=True):
    __tablename__ = "kb_faqs"

    id: str = Field(primary_key=True, max_length=16)
    question: str = Field(sa_column=Column(Text, nullable=False))
    answer: str = Field(sa_column=Column(Text, nullable=False))
    category: str = Field(index=True)


class OnboardingTask(SQLModel, table=True):
    __tablename__ = "kb_onboarding_tasks"

    id: str = Field(primary_key=True, max_length=16)
    category: str = Field(index=True)
    task_name: str
    description: str | None = Field(default=None, sa_column=Column(Text))
    department: str | None = Field(default=None, index=True)
    owner: str | None = None
    priority: str | None = None
    deadline: str | None = None  # "Day 1", "Week 1", ...


# ── Semantic index ───────────────────────────────────────────────────


class KnowledgeChunk(SQLModel, table=True):
    __tablename__ = "knowledge_base"

    id: int | None = Field(default=None, primary_key=True)
    category: str = Field(index=True, max_length=32)
    content: str = Field(sa_column=Column(Text, nullable=False))
    row_metadata: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False),
    )
    embedding: list[float] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))


# ── Engine / session helpers ─────────────────────────────────────────


def create_db_engine(url: str, *, echo: bool = False) -> Engine:
    """Build an engine; in-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    """Create every table that does not exist yet."""
    SQLModel.metadata.create_all(engine)
    logger.debug("Database schema ready (%s)", engine.url.render_as_string(hide_password=True))


def new_session(engine: Engine) -> Session:
    return Session(engine, expire_on_commit=False)
