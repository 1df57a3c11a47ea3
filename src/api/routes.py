"""FastAPI route definitions for the Nova agent API.

Authentication happens upstream; the gateway forwards the verified user id
in the ``X-User-Id`` header and every endpoint is scoped to that user.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy import text

from src.agent import AgentRuntime
from src.api.schemas import (
    ActionIdsRequest,
    ActionListResponse,
    ActionOutcomeSchema,
    AgentMessageRequest,
    AgentMessageResponse,
    ApproveResponse,
    HealthResponse,
    RejectResponse,
    StatsResponse,
)
from src.cancellation import CancellationToken
from src.config import AGENT_TURN_TIMEOUT_SECONDS
from src.models import ActionStatus

logger = logging.getLogger(__name__)

router = APIRouter()
agent_router = APIRouter(prefix="/agent")


def _get_runtime(request: Request) -> AgentRuntime:
    """Retrieve the agent runtime from app state (set in the lifespan)."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return runtime


def _get_user_id(x_user_id: str | None = Header(None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header.")
    return x_user_id.strip()


async def _run_blocking(token: CancellationToken, fn, *args):
    """Run *fn* in the thread pool; a cancelled request cancels the token."""
    try:
        return await asyncio.to_thread(fn, *args)
    except asyncio.CancelledError:
        token.cancel()
        raise


def _internal_error(request_id: str, what: str, exc: Exception) -> HTTPException:
    # Full traceback server-side only.
    logger.exception("[%s] Error %s", request_id, what)
    return HTTPException(status_code=500, detail="An internal error occurred. Please try again.")


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check(http_request: Request):
    """Health check endpoint; reports the durable store's reachability."""
    runtime = getattr(http_request.app.state, "runtime", None)
    if runtime is None:
        return HealthResponse(status="starting", database="unknown")
    try:
        with runtime.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("Health check: database unreachable: %s", exc)
        return HealthResponse(status="degraded", database="unreachable")
    return HealthResponse()


@agent_router.post("/message", response_model=AgentMessageResponse)
async def send_message(
    request: AgentMessageRequest,
    http_request: Request,
    user_id: str = Depends(_get_user_id),
):
    """Run one agent turn.

    ``process_message`` blocks on the model and tool calls, so it runs in a
    worker thread via ``asyncio.to_thread``.
    """
    runtime = _get_runtime(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    message = request.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message is required.")

    orchestrator = runtime.orchestrator_for(user_id, request.conversation_id, request.user_email)
    history = [m.model_dump() for m in request.conversation_history]
    token = CancellationToken(deadline_seconds=AGENT_TURN_TIMEOUT_SECONDS)
    try:
        result = await _run_blocking(token, orchestrator.process_message, message, history, token)
    except Exception as e:
        raise _internal_error(request_id, "processing agent message", e) from e

    return AgentMessageResponse(
        success=result.success,
        conversation_id=request.conversation_id,
        response=result,
        awaiting_approval=result.awaiting_approval,
    )


@agent_router.post("/actions/approve", response_model=ApproveResponse)
async def approve_actions(
    request: ActionIdsRequest,
    http_request: Request,
    user_id: str = Depends(_get_user_id),
):
    """Approve and execute pending actions; each one succeeds or fails on its own."""
    runtime = _get_runtime(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    token = CancellationToken(deadline_seconds=AGENT_TURN_TIMEOUT_SECONDS)
    try:
        report = await _run_blocking(token, runtime.approve, user_id, request.action_ids, token)
    except Exception as e:
        raise _internal_error(request_id, "approving actions", e) from e

    return ApproveResponse(
        results=[
            ActionOutcomeSchema(
                action_id=o.action_id,
                success=o.success,
                description=o.description,
                capability=o.capability,
                status=o.status,
                summary=o.summary,
                error=o.error,
                error_code=o.error_code,
                result=o.result,
            )
            for o in report.outcomes
        ],
        summary=report.digest(),
        success_count=report.success_count,
        total_count=report.total,
        cancelled=report.cancelled,
    )


@agent_router.post("/actions/reject", response_model=RejectResponse)
async def reject_actions(
    request: ActionIdsRequest,
    http_request: Request,
    user_id: str = Depends(_get_user_id),
):
    runtime = _get_runtime(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        cancelled = await asyncio.to_thread(runtime.reject, user_id, request.action_ids)
    except Exception as e:
        raise _internal_error(request_id, "rejecting actions", e) from e
    return RejectResponse(cancelled_ids=cancelled, cancelled_count=len(cancelled))


@agent_router.get("/actions", response_model=ActionListResponse)
async def list_actions(
    http_request: Request,
    status: ActionStatus | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(_get_user_id),
):
    """The user's action history, newest first."""
    runtime = _get_runtime(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        rows, total = await asyncio.to_thread(
            runtime.store.list_actions, user_id, status=status, limit=limit, offset=offset,
        )
    except Exception as e:
        raise _internal_error(request_id, "listing actions", e) from e
    return ActionListResponse(
        actions=[runtime.store.view(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
        status=status,
    )


@agent_router.get("/stats", response_model=StatsResponse)
async def agent_stats(http_request: Request, user_id: str = Depends(_get_user_id)):
    runtime = _get_runtime(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        stats = await asyncio.to_thread(runtime.store.stats, user_id)
    except Exception as e:
        raise _internal_error(request_id, "computing stats", e) from e
    return StatsResponse(**stats)


router.include_router(agent_router)
