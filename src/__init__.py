"""Nova AI Agent — an assistant for NovaTech employees that answers company
questions and acts on their behalf, with human approval for side effects.

Architecture Overview
=====================

The orchestration core is a **LangGraph** state machine with two nodes:

1. **model** — Invokes Claude with the conversation history, a personalized
   system prompt and the capability catalog bound as tools.

2. **dispatch** — Validates the requested invocations, executes the
   read-only ones immediately and stages the side-effecting ones
   (``book_calendar_event``, ``send_email``) as ``pending`` actions.

Routing: model → (tool calls?) → dispatch → model (loop) until the model
answers, an action is staged for approval, a tool fails, or the iteration
cap is reached.

Key Design Decisions
--------------------
- **Approval gate**: staged actions live in the ``agent_actions`` table and
  are executed later by ``PendingActionStore.approve``; every status change
  is a compare-and-set, so an action can never run twice.
- **Hybrid retrieval**: ``KnowledgeResolver`` queries the relational
  directory / FAQ / task tables first and falls back to embedding search,
  tagging every result with its source.
- **Resilience**: only the model's "overloaded" signal is retried, with
  exponential backoff.  Calendar, mail and directory calls fail fast so the
  executed / failed accounting stays exact.
- **Cancellation**: a ``CancellationToken`` bounds every blocking call and
  turns a cancelled turn into its own outcome.
- **Dual Interface**: FastAPI server (production) + CLI chat loop (development/testing).

Package Structure
-----------------
- ``src/agent.py`` — LangGraph orchestrator and runtime wiring
- ``src/config.py`` — Centralized configuration from environment variables / SSM
- ``src/errors.py`` — Error taxonomy with codes and user-facing messages
- ``src/prompts.py`` — System prompt with date and user context
- ``src/server.py`` — FastAPI application
- ``src/main.py`` — CLI chat interface
- ``src/ingest.py`` — CSV loader for the knowledge store
- ``src/services/`` — Durable store, external API clients, retrieval, metrics
- ``src/tools/`` — Capability catalog, handlers and the tool executor
- ``src/api/`` — FastAPI routes and Pydantic schemas
"""
