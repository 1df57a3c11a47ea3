"""LangGraph-based orchestration core for the Nova agent.

Architecture:
  One user turn runs a LangGraph StateGraph with two nodes:

    1. **model**     — sends system prompt + history to the tool-bound model
    2. **dispatch**  — validates every requested invocation, runs the
                       auto-executable ones through the ToolExecutor and
                       stages the approval-gated ones as ``pending`` actions

  Routing:
    model → (no tool calls?)         → END  (final answer)
    model → (tool calls?)            → dispatch
    dispatch → (gated call staged?)  → END  (awaiting approval)
    dispatch → (executor failed?)    → END  (turn aborted)
    dispatch → (results fed back)    → model (loop)

  The loop is bounded by ``AGENT_MAX_ITERATIONS`` model calls.  Hitting the
  bound with tool results still pending for the model ends the turn with
  ``IterationLimitExceeded``.

  Per-turn collaborators (the user's executor, the cancellation token, the
  personalized system prompt) travel in the run config, so one compiled
  graph serves every user and nothing mutable is shared between turns.

  Approval happens later, in a separate call: ``AgentRuntime.approve``
  hands the staged actions to ``PendingActionStore.approve``.
"""

from __future__ import annotations

import json
import logging
import operator
from dataclasses import dataclass
from typing import Annotated, Any

from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from sqlalchemy.engine import Engine
from typing_extensions import TypedDict

from src.cancellation import CancellationToken
from src.config import AGENT_MAX_ITERATIONS, DATABASE_URL, IS_PRODUCTION
from src.errors import (
    AgentError,
    CancellationError,
    IterationLimitExceeded,
    ValidationError,
)
from src.models import (
    ActionView,
    AgentTurnResult,
    EmployeeProfile,
    Invocation,
    TurnOutcome,
)
from src.prompts import get_system_prompt
from src.services.action_store import ApprovalReport, PendingActionStore
from src.services.database import create_db_engine, init_db
from src.services.embeddings import EmbeddingClient
from src.services.google_client import GoogleClient
from src.services.knowledge import DirectoryRepository, KnowledgeResolver, SemanticIndex
from src.services.metrics import MetricsClient
from src.services.model_client import ModelClient, response_text
from src.services.oauth import CredentialStore, GoogleCredentials
from src.tools.executor import ToolExecutor, public_error_text, tool_error_message
from src.tools.registry import CapabilityCatalog

logger = logging.getLogger(__name__)

EMPTY_ANSWER_FALLBACK = "I'm here to help! How can I assist you today?"
APPROVAL_FALLBACK = "I need your approval to proceed with the following actions:"
APPROVAL_NOTICE = "🔔 Please review and approve the actions above to continue."


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph.

    ``messages`` uses the ``add_messages`` reducer and ``executed`` the list
    concatenation reducer, so each node only returns what it adds.

    ``error`` and ``pending`` end the turn; the conditional edges read them.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    iteration: int
    executed: Annotated[list[ActionView], operator.add]
    pending: list[ActionView]
    failed: list[ActionView]
    error: AgentError | None


@dataclass(frozen=True)
class TurnContext:
    """Per-turn collaborators passed to the nodes through the run config."""

    user_id: str
    conversation_id: str | None
    executor: ToolExecutor
    system_prompt: str
    token: CancellationToken


def _turn(config: RunnableConfig) -> TurnContext:
    return config["configurable"]["turn"]


def _tool_message(invocation: Invocation, view: ActionView) -> ToolMessage:
    payload = view.result or {}
    return ToolMessage(
        content=json.dumps(payload, default=str),
        tool_call_id=invocation.call_id or invocation.capability,
        name=invocation.capability,
    )


# ── Nodes ────────────────────────────────────────────────────────────


def _make_model_node(model: ModelClient):
    def model_node(state: AgentState, config: RunnableConfig) -> dict:
        """Ask the model for the next step."""
        turn = _turn(config)
        iteration = state.get("iteration", 0) + 1
        logger.info(
            "Agent iteration %d (user=%s, conversation=%s)",
            iteration, turn.user_id, turn.conversation_id,
        )
        system = SystemMessage(content=turn.system_prompt)
        try:
            response = model.invoke([system] + state["messages"], turn.token)
        except AgentError as exc:
            logger.warning("Model step failed [%s]: %s", exc.code, exc)
            return {"iteration": iteration, "error": exc}
        return {"messages": [response], "iteration": iteration}

    return model_node


def _make_dispatch_node(
    catalog: CapabilityCatalog,
    store: PendingActionStore,
    max_iterations: int,
):
    def dispatch_node(state: AgentState, config: RunnableConfig) -> dict:
        """Validate, auto-execute or stage the invocations of the last response."""
        turn = _turn(config)
        response = state["messages"][-1]
        invocations = [
            Invocation(capability=call["name"], parameters=call.get("args") or {}, call_id=call.get("id"))
            for call in response.tool_calls
        ]
        logger.info(
            "Model requested %d tool call(s): %s",
            len(invocations), [inv.capability for inv in invocations],
        )

        # Every invocation is validated before any of them runs.
        typed = []
        for inv in invocations:
            try:
                typed.append(catalog.validate(inv.capability, inv.parameters))
            except ValidationError as exc:
                logger.warning(
                    "Rejected invocation %s (user=%s) params=%s: %s",
                    inv.capability, turn.user_id, inv.parameters, exc,
                )
                return {"error": exc}

        auto = [(inv, p) for inv, p in zip(invocations, typed) if not catalog.classify(inv.capability)]
        gated = [inv for inv in invocations if catalog.classify(inv.capability)]

        executed: list[ActionView] = []
        tool_messages: list[ToolMessage] = []
        for inv, params in auto:
            try:
                result = turn.executor.execute(inv.capability, params, turn.token)
            except AgentError as exc:
                action = store.record(
                    turn.user_id, turn.conversation_id, inv.capability, inv.parameters,
                    error=public_error_text(inv.capability, exc),
                )
                logger.error(
                    "Auto-executed %s failed [%s] (user=%s, conversation=%s); aborting turn",
                    inv.capability, exc.code, turn.user_id, turn.conversation_id,
                )
                return {"executed": executed, "failed": [store.view(action)], "error": exc}

            action = store.record(
                turn.user_id, turn.conversation_id, inv.capability, inv.parameters, result=result,
            )
            view = store.view(action)
            executed.append(view)
            tool_messages.append(_tool_message(inv, view))

        if gated:
            try:
                turn.token.raise_if_cancelled()
            except CancellationError as exc:
                logger.warning(
                    "Turn cancelled before staging %d action(s) (user=%s, conversation=%s)",
                    len(gated), turn.user_id, turn.conversation_id,
                )
                return {"executed": executed, "error": exc}
            staged = store.stage(turn.user_id, turn.conversation_id, gated)
            return {
                "messages": tool_messages,
                "executed": executed,
                "pending": [store.view(a) for a in staged],
            }

        update: dict[str, Any] = {"messages": tool_messages, "executed": executed}
        if state["iteration"] >= max_iterations:
            done = len(state.get("executed", [])) + len(executed)
            logger.warning(
                "Agent hit max iterations (%d) for user %s after %d action(s)",
                max_iterations, turn.user_id, done,
            )
            update["error"] = IterationLimitExceeded(max_iterations, done)
        return update

    return dispatch_node


# ── Conditional edges ────────────────────────────────────────────────


def after_model(state: AgentState) -> str:
    if state.get("error") is not None:
        return END
    last_message = state["messages"][-1]
    if getattr(last_message, "tool_calls", None):
        return "dispatch"
    return END


def after_dispatch(state: AgentState) -> str:
    if state.get("error") is not None or state.get("pending"):
        return END
    return "model"


# ── Graph assembly ───────────────────────────────────────────────────


def create_agent_graph(
    model: ModelClient,
    catalog: CapabilityCatalog,
    store: PendingActionStore,
    *,
    max_iterations: int = AGENT_MAX_ITERATIONS,
):
    """Build and compile the orchestration graph.

    The compiled graph is shared; every run must carry a ``TurnContext``:
        graph.invoke(state, config={"configurable": {"turn": turn}})
    """
    graph = StateGraph(AgentState)
    graph.add_node("model", _make_model_node(model))
    graph.add_node("dispatch", _make_dispatch_node(catalog, store, max_iterations))

    graph.set_entry_point("model")
    graph.add_conditional_edges("model", after_model, {"dispatch": "dispatch", END: END})
    graph.add_conditional_edges("dispatch", after_dispatch, {"model": "model", END: END})

    compiled = graph.compile()
    logger.debug("Agent graph compiled (max iterations: %d, tools: %d)", max_iterations, len(catalog))
    return compiled


def history_to_messages(history: list[dict[str, str]] | None) -> list[AnyMessage]:
    """``[{role, content}]`` from the caller → LangChain messages."""
    messages: list[AnyMessage] = []
    for entry in history or []:
        content = (entry.get("content") or "").strip()
        if not content:
            continue
        if entry.get("role") in ("assistant", "model"):
            messages.append(AIMessage(content=content))
        else:
            messages.append(HumanMessage(content=content))
    return messages


# ── Orchestrator ─────────────────────────────────────────────────────


class AgentOrchestrator:
    """Runs turns for one user and conversation.

    The personalization profile is resolved at most once per instance and
    never shared with other instances.
    """

    def __init__(
        self,
        graph,
        *,
        user_id: str,
        executor: ToolExecutor,
        resolver: KnowledgeResolver,
        conversation_id: str | None = None,
        user_email: str | None = None,
        max_iterations: int = AGENT_MAX_ITERATIONS,
    ):
        self.user_id = user_id
        self.conversation_id = conversation_id
        self._graph = graph
        self._executor = executor
        self._resolver = resolver
        self._user_email = user_email
        self._max_iterations = max_iterations
        self._profile: EmployeeProfile | None = None
        self._profile_loaded = False

    def user_profile(self, token: CancellationToken | None = None) -> EmployeeProfile | None:
        if not self._profile_loaded:
            self._profile_loaded = True
            if self._user_email:
                self._profile = self._resolver.resolve_employee(self._user_email, token)
                logger.debug(
                    "Personalization profile for %s: %s",
                    self.user_id, self._profile.full_name if self._profile else "not found",
                )
        return self._profile

    def process_message(
        self,
        message: str,
        history: list[dict[str, str]] | None = None,
        token: CancellationToken | None = None,
    ) -> AgentTurnResult:
        """Run one turn for *message*.

        Agent errors become failed results; anything else propagates.
        """
        token = token or CancellationToken.none()
        try:
            profile = self.user_profile(token)
        except CancellationError as exc:
            return self._failure(exc, [], 0)

        turn = TurnContext(
            user_id=self.user_id,
            conversation_id=self.conversation_id,
            executor=self._executor,
            system_prompt=get_system_prompt(profile),
            token=token,
        )
        initial: AgentState = {
            "messages": history_to_messages(history) + [HumanMessage(content=message)],
            "iteration": 0,
            "executed": [],
            "pending": [],
            "failed": [],
            "error": None,
        }
        logger.info(
            "Processing message (user=%s, conversation=%s, history=%d)",
            self.user_id, self.conversation_id, len(initial["messages"]) - 1,
        )
        state = self._graph.invoke(
            initial,
            config={
                "configurable": {"turn": turn},
                "recursion_limit": 2 * self._max_iterations + 5,
            },
        )
        return self._result(state)

    def _result(self, state: AgentState) -> AgentTurnResult:
        executed = state.get("executed", [])
        iterations = state.get("iteration", 0)
        error = state.get("error")

        if error is not None:
            failed = state.get("failed") or []
            return self._failure(error, executed, iterations, failed[0].capability if failed else None)

        pending = state.get("pending") or []
        last_ai = next((m for m in reversed(state["messages"]) if isinstance(m, AIMessage)), None)
        text = response_text(last_ai) if last_ai is not None else ""

        if pending:
            logger.info(
                "Turn awaiting approval for %d action(s): %s",
                len(pending), [a.id for a in pending],
            )
            return AgentTurnResult(
                outcome=TurnOutcome.AWAITING_APPROVAL,
                content=text or APPROVAL_FALLBACK,
                pending_actions=pending,
                executed_actions=executed,
                notice=APPROVAL_NOTICE,
                iterations=iterations,
            )

        if not text:
            logger.warning("Empty model response, using fallback")
        return AgentTurnResult(
            outcome=TurnOutcome.ANSWERED,
            content=text or EMPTY_ANSWER_FALLBACK,
            executed_actions=executed,
            iterations=iterations,
        )

    def _failure(
        self,
        error: AgentError,
        executed: list[ActionView],
        iterations: int,
        capability: str | None = None,
    ) -> AgentTurnResult:
        if isinstance(error, IterationLimitExceeded):
            outcome = TurnOutcome.ITERATION_LIMIT
            content = error.user_message
        elif isinstance(error, CancellationError):
            outcome = TurnOutcome.CANCELLED
            content = error.user_message
        elif capability is not None:
            outcome = TurnOutcome.FAILED
            content = tool_error_message(capability, error)
        else:
            outcome = TurnOutcome.FAILED
            content = error.user_message

        logger.error(
            "Turn failed [%s] (user=%s, conversation=%s, executed=%d): %s",
            error.code, self.user_id, self.conversation_id, len(executed), error,
        )
        return AgentTurnResult(
            outcome=outcome,
            content=content,
            executed_actions=executed,
            error=None if IS_PRODUCTION else str(error),
            error_code=error.code,
            is_recoverable=error.is_recoverable,
            iterations=iterations,
        )


# ── Runtime ──────────────────────────────────────────────────────────


class AgentRuntime:
    """Owns the long-lived collaborators and hands out per-user objects."""

    def __init__(
        self,
        *,
        engine: Engine,
        catalog: CapabilityCatalog,
        store: PendingActionStore,
        resolver: KnowledgeResolver,
        google: GoogleClient,
        credentials: GoogleCredentials,
        model: ModelClient,
        metrics: MetricsClient,
        max_iterations: int = AGENT_MAX_ITERATIONS,
    ):
        self.engine = engine
        self.catalog = catalog
        self.store = store
        self.resolver = resolver
        self.google = google
        self.credentials = credentials
        self.metrics = metrics
        self.max_iterations = max_iterations
        self.graph = create_agent_graph(model, catalog, store, max_iterations=max_iterations)

    def executor_for(self, user_id: str) -> ToolExecutor:
        return ToolExecutor(
            user_id,
            catalog=self.catalog,
            resolver=self.resolver,
            google=self.google,
            credentials=self.credentials,
            metrics=self.metrics,
        )

    def orchestrator_for(
        self,
        user_id: str,
        conversation_id: str | None = None,
        user_email: str | None = None,
    ) -> AgentOrchestrator:
        return AgentOrchestrator(
            self.graph,
            user_id=user_id,
            executor=self.executor_for(user_id),
            resolver=self.resolver,
            conversation_id=conversation_id,
            user_email=user_email,
            max_iterations=self.max_iterations,
        )

    def approve(
        self,
        user_id: str,
        action_ids: list[str],
        token: CancellationToken | None = None,
    ) -> ApprovalReport:
        return self.store.approve(user_id, action_ids, self.executor_for(user_id), token)

    def reject(self, user_id: str, action_ids: list[str]) -> list[str]:
        return self.store.reject(user_id, action_ids)

    def close(self) -> None:
        self.google.close()
        self.metrics.flush()
        self.engine.dispose()


def create_agent_runtime(
    *,
    database_url: str = DATABASE_URL,
    model: ModelClient | None = None,
    metrics: MetricsClient | None = None,
) -> AgentRuntime:
    """Wire the production collaborators together."""
    metrics = metrics or MetricsClient()
    engine = create_db_engine(database_url)
    init_db(engine)

    catalog = CapabilityCatalog()
    store = PendingActionStore(engine, catalog, metrics=metrics)
    resolver = KnowledgeResolver(
        DirectoryRepository(engine),
        SemanticIndex(engine, EmbeddingClient()),
    )
    runtime = AgentRuntime(
        engine=engine,
        catalog=catalog,
        store=store,
        resolver=resolver,
        google=GoogleClient(),
        credentials=GoogleCredentials(CredentialStore(engine)),
        model=model or ModelClient(catalog, metrics=metrics),
        metrics=metrics,
    )
    logger.info(
        "Agent runtime ready — %d capabilities, database %s",
        len(catalog), engine.url.render_as_string(hide_password=True),
    )
    return runtime
