"""CLI entry point for the Nova agent.

A terminal chat for testing and development.  Actions that need approval
are listed after the reply and the operator approves or rejects them
inline.  For production, use the FastAPI server (src/server.py).

Usage:
    python -m src.main --user-id u-123 --email sarah.johnson@novatech.com
    python -m src.main --debug    # debug mode (shows API calls)
"""

from __future__ import annotations

import argparse
import logging
import uuid

from dotenv import load_dotenv

from src.agent import AgentOrchestrator, AgentRuntime, create_agent_runtime
from src.models import AgentTurnResult

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("src").setLevel(logging.DEBUG if debug else logging.INFO)


def _ask_approval(runtime: AgentRuntime, user_id: str, result: AgentTurnResult) -> str | None:
    """Prompt for each pending action; returns a digest for the history."""
    print("Pending actions:")
    for i, action in enumerate(result.pending_actions, start=1):
        print(f"  {i}. {action.description}")
    if result.notice:
        print(f"\n{result.notice}")

    answer = input("Approve? [a]ll / [r]eject all / numbers (e.g. 1,3): ").strip().lower()
    ids = [a.id for a in result.pending_actions]
    if answer in ("a", "all", "y", "yes"):
        chosen = ids
    elif answer and all(part.strip().isdigit() for part in answer.split(",")):
        picked = {int(part) for part in answer.split(",")}
        chosen = [aid for i, aid in enumerate(ids, start=1) if i in picked]
    else:
        chosen = []

    rejected = [aid for aid in ids if aid not in chosen]
    if rejected:
        runtime.reject(user_id, rejected)
        print(f">> Rejected {len(rejected)} action(s).")
    if not chosen:
        return None

    report = runtime.approve(user_id, chosen)
    digest = report.digest()
    print(f"\n{digest}\n")
    return digest


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Nova agent CLI")
    parser.add_argument("--user-id", default="cli-user", help="User id that owns the actions")
    parser.add_argument("--email", help="Employee email used to personalize answers")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Nova AI Agent - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new conversation.")
    print("=" * 60 + "\n")

    runtime = create_agent_runtime()

    def new_conversation() -> tuple[AgentOrchestrator, list[dict[str, str]]]:
        conversation_id = str(uuid.uuid4())
        logger.info("Started new conversation: %s", conversation_id)
        return runtime.orchestrator_for(args.user_id, conversation_id, args.email), []

    orchestrator, history = new_conversation()

    try:
        while True:
            try:
                user_input = input("You: ").strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue

            if user_input.lower() in ("exit", "quit", "q"):
                print("\nGoodbye! Have a great day!")
                break

            if user_input.lower() == "new":
                orchestrator, history = new_conversation()
                print(f"\n>> New conversation started: {orchestrator.conversation_id[:8]}...\n")
                continue

            try:
                result = orchestrator.process_message(user_input, history)
                print(f"\nNova: {result.content}\n")
                history += [
                    {"role": "user", "content": user_input},
                    {"role": "assistant", "content": result.content},
                ]
                if result.awaiting_approval:
                    digest = _ask_approval(runtime, args.user_id, result)
                    if digest:
                        history.append({"role": "assistant", "content": digest})

            except KeyboardInterrupt:
                print("\n\nGoodbye!")
                break
            except Exception as e:
                logger.exception("Error processing message")
                print(f"\nNova: I'm sorry, something went wrong: {e}")
                print("     Please try again or type 'new' to start a fresh conversation.\n")
    finally:
        runtime.close()


if __name__ == "__main__":
    main()
