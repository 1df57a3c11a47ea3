"""Chat model wrapper: ChatAnthropic with the capability catalog bound as tools.

Only the model's "overloaded" signal (HTTP 529/503) is retried, with bounded
attempts and exponential backoff.  The backoff sleeps through the
cancellation token so a cancelled turn stops waiting immediately.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AnyMessage

from src.cancellation import CancellationToken
from src.config import (
    ANTHROPIC_API_KEY,
    MODEL_INITIAL_BACKOFF_SECONDS,
    MODEL_MAX_RETRIES,
    MODEL_MAX_TOKENS,
    MODEL_NAME,
)
from src.errors import CancellationError, ModelError, TransientModelError
from src.services.metrics import MetricsClient
from src.tools.registry import CapabilityCatalog

logger = logging.getLogger(__name__)

_OVERLOADED_STATUS = {503, 529}


def to_anthropic_tool(schema: dict[str, Any]) -> dict[str, Any]:
    """``{name, description, parameters}`` → Anthropic ``input_schema`` tool."""
    return {
        "name": schema["name"],
        "description": schema["description"],
        "input_schema": schema["parameters"],
    }


def is_overloaded(exc: Exception) -> bool:
    status = getattr(exc, "status_code", None)
    if status in _OVERLOADED_STATUS:
        return True
    text = str(exc).lower()
    return "overloaded" in text


def response_text(message: AIMessage) -> str:
    """Concatenate the text blocks of a model response."""
    content = message.content
    if isinstance(content, str):
        return content.strip()
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts).strip()


def build_chat_model() -> ChatAnthropic:
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.1,
        max_tokens=MODEL_MAX_TOKENS,
        max_retries=0,  # overload retries are handled here
    )


class ModelClient:
    """Invokes the tool-bound chat model with overload retries."""

    def __init__(
        self,
        catalog: CapabilityCatalog,
        *,
        llm: Any | None = None,
        max_retries: int = MODEL_MAX_RETRIES,
        initial_backoff: float = MODEL_INITIAL_BACKOFF_SECONDS,
        metrics: MetricsClient | None = None,
    ):
        base = llm if llm is not None else build_chat_model()
        self._llm = base.bind_tools([to_anthropic_tool(s) for s in catalog.schemas()])
        self._max_retries = max(1, max_retries)
        self._initial_backoff = initial_backoff
        self._metrics = metrics or MetricsClient(enabled=False)

    def invoke(
        self, messages: list[AnyMessage], token: CancellationToken | None = None,
    ) -> AIMessage:
        token = token or CancellationToken.none()
        attempt = 0
        while True:
            attempt += 1
            token.raise_if_cancelled()
            kwargs: dict[str, Any] = {}
            remaining = token.remaining()
            if remaining is not None:
                kwargs["timeout"] = remaining

            t0 = time.perf_counter()
            try:
                response = self._llm.invoke(messages, **kwargs)
            except Exception as exc:
                elapsed = (time.perf_counter() - t0) * 1000
                self._metrics.record_model_call(
                    success=False, latency_ms=elapsed, error_type=type(exc).__name__,
                )
                if token.cancelled:
                    raise CancellationError() from exc
                if not is_overloaded(exc):
                    logger.error("Model call failed (%s): %s", type(exc).__name__, exc)
                    raise ModelError(f"Model call failed: {exc}") from exc
                if attempt == self._max_retries:
                    raise TransientModelError(
                        f"Model overloaded after {attempt} attempt(s): {exc}",
                        details={"attempts": attempt},
                    ) from exc
                backoff = self._initial_backoff * (2 ** (attempt - 1))
                logger.warning(
                    "Model overloaded on attempt %d/%d. Retrying in %.1fs…",
                    attempt, self._max_retries, backoff,
                )
                token.sleep(backoff)
                continue

            elapsed = (time.perf_counter() - t0) * 1000
            self._metrics.record_model_call(success=True, latency_ms=elapsed)
            logger.debug("Model responded in %.0fms", elapsed)
            if token.cancelled:
                raise CancellationError()
            return response
