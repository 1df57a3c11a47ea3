"""Sentence embeddings from the Hugging Face inference API.

Model: ``BAAI/bge-small-en-v1.5`` (384 dimensions).  Input text is truncated
to 2,000 characters (roughly the model's 512-token window).  Query vectors
are kept in an LRU cache; ingestion calls bypass it.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.cancellation import CancellationToken
from src.config import (
    EMBEDDING_BASE_URL,
    EMBEDDING_DIMENSIONS,
    EMBEDDING_MODEL,
    EMBEDDING_TIMEOUT_SECONDS,
    HUGGINGFACE_API_KEY,
)
from src.errors import CancellationError
from src.services.cache import LRUCache

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 2000


class EmbeddingError(Exception):
    """Raised when an embedding cannot be produced."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def _flatten(payload: Any) -> list[float]:
    # The endpoint answers with either a flat vector or a [[...]] batch of one.
    if isinstance(payload, list) and payload and isinstance(payload[0], list):
        return [float(v) for row in payload for v in row]
    if isinstance(payload, list):
        return [float(v) for v in payload]
    raise EmbeddingError(f"Unexpected embedding payload: {type(payload).__name__}")


class EmbeddingClient:
    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str = EMBEDDING_MODEL,
        dimensions: int = EMBEDDING_DIMENSIONS,
        http_client: httpx.Client | None = None,
        cache: LRUCache | None = None,
        timeout: float = EMBEDDING_TIMEOUT_SECONDS,
    ):
        self._model = model
        self._dimensions = dimensions
        self._timeout = timeout
        self._cache = cache if cache is not None else LRUCache()
        self._client = http_client or httpx.Client(
            base_url=EMBEDDING_BASE_URL,
            headers={
                "Authorization": f"Bearer {api_key or HUGGINGFACE_API_KEY}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(
        self,
        text: str,
        *,
        token: CancellationToken | None = None,
        use_cache: bool = True,
    ) -> list[float]:
        token = token or CancellationToken.none()
        text = (text or "")[:MAX_INPUT_CHARS]
        if use_cache:
            cached = self._cache.get(text)
            if cached is not None:
                logger.debug("Embedding cache hit for %r", text[:40])
                return cached

        token.raise_if_cancelled()
        try:
            response = self._client.post(
                f"/models/{self._model}",
                json={"inputs": text, "options": {"wait_for_model": True}},
                timeout=token.timeout(self._timeout),
            )
        except httpx.TimeoutException as exc:
            if token.cancelled:
                raise CancellationError() from exc
            raise EmbeddingError(f"Embedding request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"Embedding request failed: {exc}") from exc

        if response.status_code == 401:
            raise EmbeddingError("Invalid Hugging Face API key", status_code=401)
        if response.status_code >= 400:
            raise EmbeddingError(
                f"Embedding API error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        vector = _flatten(response.json())
        if len(vector) != self._dimensions:
            raise EmbeddingError(f"Expected {self._dimensions} dimensions, got {len(vector)}")

        if use_cache:
            self._cache.put(text, vector)
        return vector
