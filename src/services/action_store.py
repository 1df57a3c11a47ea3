"""Durable pending-action store and the approval workflow.

Every status change is a compare-and-set ``UPDATE … WHERE status IN (…)``
restricted to the legal source states of the target state.  A change that
matches no row raises ``IllegalTransitionError``, so two concurrent approvals
of the same action cannot both move it to ``executing``: exactly one UPDATE
matches and the other gets an error outcome.

Approval of a batch is not all-or-nothing.  Each action is approved,
executed and recorded on its own; ``ApprovalReport`` derives the counts and
the human-readable digest from those individual outcomes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.engine import Engine
from sqlmodel import col, select

from src.cancellation import CancellationToken
from src.config import IS_PRODUCTION
from src.errors import (
    AI_TOOL_EXECUTION_FAILED,
    AgentError,
    CancellationError,
    ExecutionError,
    IllegalTransitionError,
)
from src.models import ALLOWED_TRANSITIONS, ActionStatus, ActionView, Invocation, ToolResult
from src.services.database import AgentAction, new_session, utc_now
from src.services.metrics import MetricsClient
from src.tools.executor import ToolExecutor, public_error_text, tool_error_message
from src.tools.registry import CapabilityCatalog

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


def _sources_for(target: ActionStatus) -> list[str]:
    return [s.value for s, targets in ALLOWED_TRANSITIONS.items() if target in targets]


def _output(result: ToolResult) -> dict[str, Any]:
    dumped = result.model_dump(mode="json")
    return {"data": dumped["data"], "summary": dumped["summary"]}


# ── Approval results ─────────────────────────────────────────────────


@dataclass
class ActionOutcome:
    action_id: str
    success: bool
    description: str = "Action"
    capability: str | None = None
    status: str | None = None
    summary: str | None = None
    error: str | None = None
    error_code: str | None = None
    is_recoverable: bool | None = None
    result: dict[str, Any] | None = None

    def digest_line(self) -> str:
        if self.success:
            return f"✅ {self.description}: {self.summary}"
        return f"❌ {self.description}: {self.error}"


@dataclass
class ApprovalReport:
    outcomes: list[ActionOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def all_succeeded(self) -> bool:
        return self.total > 0 and self.success_count == self.total

    def digest(self) -> str:
        lines = "\n\n".join(o.digest_line() for o in self.outcomes)
        footer = (
            "🎉 All actions completed successfully!"
            if self.all_succeeded
            else f"⚠️ {self.success_count}/{self.total} actions completed."
        )
        return f"**Actions Executed:**\n\n{lines}\n\n{footer}"


# ── Store ────────────────────────────────────────────────────────────


class PendingActionStore:
    def __init__(
        self,
        engine: Engine,
        catalog: CapabilityCatalog,
        *,
        metrics: MetricsClient | None = None,
    ):
        self._engine = engine
        self._catalog = catalog
        self._metrics = metrics or MetricsClient(enabled=False)

    # ── creation ─────────────────────────────────────────────────────

    def stage(
        self,
        user_id: str,
        conversation_id: str | None,
        invocations: list[Invocation],
    ) -> list[AgentAction]:
        """Insert every invocation as a ``pending`` action in one transaction."""
        actions = [
            AgentAction(
                user_id=user_id,
                conversation_id=conversation_id,
                capability=inv.capability,
                input_params=dict(inv.parameters),
                status=ActionStatus.PENDING.value,
                requires_approval=True,
            )
            for inv in invocations
        ]
        with new_session(self._engine) as session:
            session.add_all(actions)
            session.commit()
            for action in actions:
                session.refresh(action)
        for action in actions:
            self._metrics.record_action_transition(ActionStatus.PENDING.value)
        logger.info(
            "Staged %d action(s) for approval (user=%s, conversation=%s): %s",
            len(actions), user_id, conversation_id, [a.capability for a in actions],
        )
        return actions

    def record(
        self,
        user_id: str,
        conversation_id: str | None,
        capability: str,
        parameters: dict[str, Any],
        *,
        result: ToolResult | None = None,
        error: str | None = None,
        duration_ms: int | None = None,
    ) -> AgentAction:
        """Log an auto-executed invocation straight into ``executed`` / ``failed``."""
        status = ActionStatus.EXECUTED if result is not None else ActionStatus.FAILED
        now = utc_now()
        action = AgentAction(
            user_id=user_id,
            conversation_id=conversation_id,
            capability=capability,
            input_params=dict(parameters),
            status=status.value,
            requires_approval=False,
            output_result=_output(result) if result is not None else None,
            error_message=error,
            executed_at=now,
            execution_duration_ms=result.duration_ms if result is not None else duration_ms,
        )
        with new_session(self._engine) as session:
            session.add(action)
            session.commit()
            session.refresh(action)
        self._metrics.record_action_transition(status.value)
        return action

    # ── reads ────────────────────────────────────────────────────────

    def view(self, action: AgentAction) -> ActionView:
        return ActionView(
            id=action.id,
            capability=action.capability,
            description=self._catalog.describe(action.capability, action.input_params),
            parameters=action.input_params,
            status=action.action_status,
            requires_approval=action.requires_approval,
            result=action.output_result,
            error=action.error_message,
            created_at=action.created_at,
            executed_at=action.executed_at,
            execution_duration_ms=action.execution_duration_ms,
        )

    def get(self, user_id: str, action_id: str) -> AgentAction | None:
        with new_session(self._engine) as session:
            action = session.get(AgentAction, action_id)
            if action is None or action.user_id != user_id:
                return None
            return action

    def list_actions(
        self,
        user_id: str,
        *,
        status: ActionStatus | str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> tuple[list[AgentAction], int]:
        """Newest-first page of the user's actions plus the total match count."""
        conditions = [AgentAction.user_id == user_id]
        if status:
            conditions.append(AgentAction.status == ActionStatus(status).value)
        with new_session(self._engine) as session:
            total = session.exec(
                select(func.count()).select_from(AgentAction).where(*conditions)
            ).one()
            rows = session.exec(
                select(AgentAction)
                .where(*conditions)
                .order_by(col(AgentAction.created_at).desc())
                .offset(offset)
                .limit(limit)
            ).all()
        return list(rows), int(total)

    def stats(self, user_id: str) -> dict[str, Any]:
        with new_session(self._engine) as session:
            rows = session.exec(
                select(AgentAction.status, AgentAction.execution_duration_ms).where(
                    AgentAction.user_id == user_id
                )
            ).all()
        counts = {s.value: 0 for s in ActionStatus}
        durations = []
        for status, duration in rows:
            counts[status] = counts.get(status, 0) + 1
            if duration is not None:
                durations.append(duration)
        return {
            "total": len(rows),
            "pending": counts[ActionStatus.PENDING.value],
            "approved": counts[ActionStatus.APPROVED.value],
            "executed": counts[ActionStatus.EXECUTED.value],
            "failed": counts[ActionStatus.FAILED.value],
            "cancelled": counts[ActionStatus.CANCELLED.value],
            "avg_execution_time_ms": round(sum(durations) / len(durations)) if durations else 0,
        }

    # ── transitions ──────────────────────────────────────────────────

    def transition(self, action_id: str, target: ActionStatus, **values: Any) -> None:
        """Compare-and-set *action_id* into *target*.

        Raises:
            IllegalTransitionError: the action is missing or its current
                status cannot move to *target* (including losing a race).
        """
        stmt = (
            update(AgentAction)
            .where(
                col(AgentAction.id) == action_id,
                col(AgentAction.status).in_(_sources_for(target)),
            )
            .values(status=target.value, **values)
        )
        with new_session(self._engine) as session:
            result = session.execute(stmt)
            session.commit()
            if result.rowcount == 1:
                self._metrics.record_action_transition(target.value)
                return
            current = session.exec(
                select(AgentAction.status).where(AgentAction.id == action_id)
            ).first()
        raise IllegalTransitionError(action_id, current or "missing", target.value)

    def reject(self, user_id: str, action_ids: list[str]) -> list[str]:
        """Cancel the user's pending actions.  Returns the ids that were cancelled."""
        cancelled = []
        for action_id in action_ids:
            if self.get(user_id, action_id) is None:
                logger.warning("Reject: action %s not found for user %s", action_id, user_id)
                continue
            try:
                self.transition(action_id, ActionStatus.CANCELLED)
            except IllegalTransitionError as exc:
                logger.info("Reject skipped: %s", exc)
                continue
            cancelled.append(action_id)
        logger.info("Rejected %d/%d action(s) (user=%s)", len(cancelled), len(action_ids), user_id)
        return cancelled

    def approve(
        self,
        user_id: str,
        action_ids: list[str],
        executor: ToolExecutor,
        token: CancellationToken | None = None,
    ) -> ApprovalReport:
        """Approve and execute each action independently.

        Once cancellation is observed no further action is started; the one
        in flight ends ``failed``.
        """
        token = token or CancellationToken.none()
        report = ApprovalReport()
        logger.info("Executing approved actions (user=%s): %s", user_id, action_ids)

        for action_id in action_ids:
            if token.cancelled:
                report.cancelled = True
                break
            outcome = self._approve_one(user_id, action_id, executor, token)
            report.outcomes.append(outcome)
            if outcome.error_code == CancellationError.code:
                report.cancelled = True
                break
        return report

    def _approve_one(
        self,
        user_id: str,
        action_id: str,
        executor: ToolExecutor,
        token: CancellationToken,
    ) -> ActionOutcome:
        action = self.get(user_id, action_id)
        if action is None:
            logger.error("Action not found: %s (user=%s)", action_id, user_id)
            return ActionOutcome(action_id=action_id, success=False, error="Action not found")

        description = self._catalog.describe(action.capability, action.input_params)
        base = {"action_id": action_id, "capability": action.capability, "description": description}

        if action.action_status is ActionStatus.PENDING:
            try:
                self.transition(action_id, ActionStatus.APPROVED, approved_at=utc_now())
            except IllegalTransitionError:
                pass  # moved concurrently; the executing CAS below decides
        try:
            self.transition(action_id, ActionStatus.EXECUTING)
        except IllegalTransitionError as exc:
            return ActionOutcome(
                **base, success=False, status=exc.current, error=f"Action already {exc.current}",
            )

        try:
            result = executor.execute(action.capability, action.input_params, token)
        except AgentError as exc:
            return self._fail(user_id, action, base, exc, exc.code, exc.is_recoverable)
        except Exception as exc:
            return self._fail(user_id, action, base, exc, AI_TOOL_EXECUTION_FAILED, False)

        output = _output(result)
        self.transition(
            action_id,
            ActionStatus.EXECUTED,
            output_result=output,
            executed_at=utc_now(),
            execution_duration_ms=result.duration_ms,
        )
        logger.info("Action %s (%s) executed in %dms", action_id, action.capability, result.duration_ms)
        return ActionOutcome(
            **base,
            success=True,
            status=ActionStatus.EXECUTED.value,
            summary=result.summary,
            result=output,
        )

    def _fail(
        self,
        user_id: str,
        action: AgentAction,
        base: dict[str, Any],
        exc: Exception,
        code: str,
        is_recoverable: bool,
    ) -> ActionOutcome:
        """Record *action* as failed and build its outcome; the batch carries on."""
        self.transition(
            action.id,
            ActionStatus.FAILED,
            error_message=public_error_text(action.capability, exc),
            executed_at=utc_now(),
        )
        logger.error(
            "Action %s (%s) failed [%s] user=%s: %s",
            action.id, action.capability, code, user_id,
            type(exc).__name__ if IS_PRODUCTION else f"{exc} params={action.input_params}",
        )
        if isinstance(exc, AgentError) and not isinstance(exc, ExecutionError):
            error = exc.user_message
        else:
            error = tool_error_message(action.capability, exc)
        return ActionOutcome(
            **base,
            success=False,
            status=ActionStatus.FAILED.value,
            error=error,
            error_code=code,
            is_recoverable=is_recoverable,
        )
