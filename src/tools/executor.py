"""ToolExecutor: run one capability invocation against external systems.

Dispatch goes through ``HANDLERS``, a table from capability name to handler.
The constructor refuses a catalog with a capability that has no handler, so
a new capability cannot silently fall through.

External failures are translated here:

  GoogleAPIError / httpx errors  →  ExecutionError   (never retried)
  timeout after cancellation     →  CancellationError
  AgentError from a handler      →  propagated unchanged
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

import httpx
from pydantic import BaseModel

from src.cancellation import CancellationToken
from src.config import GOOGLE_API_TIMEOUT_SECONDS, IS_PRODUCTION
from src.errors import AgentError, AuthorizationError, CancellationError, ExecutionError
from src.models import ToolResult
from src.services.google_client import GoogleAPIError, GoogleClient
from src.services.knowledge import KnowledgeResolver
from src.services.metrics import MetricsClient
from src.services.oauth import GoogleCredentials
from src.tools import calendar, email, knowledge
from src.tools.context import ToolContext
from src.tools.registry import CapabilityCatalog

logger = logging.getLogger(__name__)

Handler = Callable[[ToolContext, Any], ToolResult]

HANDLERS: Mapping[str, Handler] = {
    "check_calendar": calendar.check_calendar,
    "book_calendar_event": calendar.book_calendar_event,
    "send_email": email.send_email,
    "get_team_members": knowledge.get_team_members,
    "get_supervisor_info": knowledge.get_supervisor_info,
    "get_vacation_policy": knowledge.get_vacation_policy,
    "search_knowledge_base": knowledge.search_knowledge_base,
}

_CALENDAR_CAPABILITIES = {"check_calendar", "book_calendar_event"}
_KNOWLEDGE_CAPABILITIES = {
    "search_knowledge_base", "get_team_members", "get_supervisor_info", "get_vacation_policy",
}


def tool_error_message(capability: str, error: Exception) -> str:
    """User-facing text for a failed tool call.

    Raw external error text is only included outside production.
    """
    detail = "" if IS_PRODUCTION else f": {error}"
    not_connected = isinstance(error, AuthorizationError)

    if capability in _CALENDAR_CAPABILITIES:
        if not_connected:
            return (
                "I couldn't access your Google Calendar. Please make sure your Google "
                "account is connected in Settings."
            )
        return f"I had trouble with your calendar{detail}. Please verify your Google Calendar connection."

    if capability == "send_email":
        if not_connected:
            return (
                "I couldn't send the email because your Gmail isn't connected. Please "
                "connect your Google account in Settings."
            )
        if "invalid" in str(error).lower() and "email" in str(error).lower():
            return "The email address appears to be invalid. Please check the recipient address."
        return (
            f"I couldn't send the email{detail}. Please verify the email details and "
            "your Gmail connection."
        )

    if capability in _KNOWLEDGE_CAPABILITIES:
        return f"I had trouble searching our knowledge base{detail}. Please try rephrasing your question."

    return f"I encountered an error while trying to {capability.replace('_', ' ')}{detail}"


def public_error_text(capability: str, error: Exception) -> str:
    """Error text that may be stored on an action and returned to callers.

    Outside production this is the raw error. In production, errors that can
    carry external-service text are replaced by the tool's user-facing message.
    """
    if not IS_PRODUCTION:
        return str(error)
    if isinstance(error, AgentError) and not isinstance(error, ExecutionError):
        return error.user_message
    return tool_error_message(capability, error)


class ToolExecutor:
    """Executes capabilities on behalf of one user."""

    def __init__(
        self,
        user_id: str,
        *,
        catalog: CapabilityCatalog,
        resolver: KnowledgeResolver,
        google: GoogleClient,
        credentials: GoogleCredentials,
        metrics: MetricsClient | None = None,
        handlers: Mapping[str, Handler] = HANDLERS,
        request_timeout: float = GOOGLE_API_TIMEOUT_SECONDS,
    ):
        missing = [name for name in catalog.names if name not in handlers]
        if missing:
            raise ValueError(f"No handler registered for: {', '.join(missing)}")
        self.user_id = user_id
        self._catalog = catalog
        self._resolver = resolver
        self._google = google
        self._credentials = credentials
        self._metrics = metrics or MetricsClient(enabled=False)
        self._handlers = dict(handlers)
        self._request_timeout = request_timeout

    def execute(
        self,
        capability: str,
        parameters: Mapping[str, Any] | BaseModel,
        token: CancellationToken | None = None,
    ) -> ToolResult:
        """Run *capability* once and return its result with timing.

        ``parameters`` may be the raw mapping (validated here) or the typed
        model the catalog already produced.

        Raises:
            ValidationError, AuthorizationError, ExecutionError, CancellationError
        """
        token = token or CancellationToken.none()
        params = (
            parameters
            if isinstance(parameters, BaseModel)
            else self._catalog.validate(capability, parameters)
        )
        handler = self._handlers[capability]
        ctx = ToolContext(
            user_id=self.user_id,
            token=token,
            resolver=self._resolver,
            google=self._google,
            credentials=self._credentials,
            request_timeout=self._request_timeout,
        )

        logger.info(
            "Executing tool %s (user=%s) params=%s",
            capability, self.user_id, json.dumps(params.model_dump(mode="json"), default=str),
        )
        t0 = time.perf_counter()
        try:
            token.raise_if_cancelled()
            result = handler(ctx, params)
        except AgentError as exc:
            self._record_failure(capability, t0, exc)
            raise
        except GoogleAPIError as exc:
            self._record_failure(capability, t0, exc)
            raise ExecutionError(capability, str(exc), status_code=exc.status_code) from exc
        except httpx.TimeoutException as exc:
            self._record_failure(capability, t0, exc)
            if token.cancelled:
                raise CancellationError() from exc
            raise ExecutionError(capability, f"Request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            self._record_failure(capability, t0, exc)
            raise ExecutionError(capability, f"Request failed: {exc}") from exc

        elapsed_ms = int((time.perf_counter() - t0) * 1000)
        self._metrics.record_tool_call(capability, success=True, latency_ms=elapsed_ms)
        logger.info("Tool %s executed in %dms: %s", capability, elapsed_ms, result.summary)
        return result.model_copy(update={"duration_ms": elapsed_ms})

    def _record_failure(self, capability: str, t0: float, exc: Exception) -> None:
        elapsed_ms = (time.perf_counter() - t0) * 1000
        self._metrics.record_tool_call(
            capability, success=False, latency_ms=elapsed_ms, error_type=type(exc).__name__,
        )
        logger.error(
            "Tool %s failed after %.0fms (user=%s): %s",
            capability, elapsed_ms, self.user_id, exc if not IS_PRODUCTION else type(exc).__name__,
        )
