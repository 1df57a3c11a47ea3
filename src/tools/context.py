"""Per-call dependencies handed to every tool handler."""

from __future__ import annotations

from dataclasses import dataclass

from src.cancellation import CancellationToken
from src.services.google_client import GoogleClient
from src.services.knowledge import KnowledgeResolver
from src.services.oauth import GoogleCredentials


@dataclass(frozen=True)
class ToolContext:
    user_id: str
    token: CancellationToken
    resolver: KnowledgeResolver
    google: GoogleClient
    credentials: GoogleCredentials
    request_timeout: float

    def access_token(self) -> str:
        """A valid Google access token for the user (refreshed if expired)."""
        return self.credentials.access_token(self.user_id, self.token)

    def timeout(self) -> float:
        """Timeout for the next external call, bounded by the token's deadline."""
        self.token.raise_if_cancelled()
        return self.token.timeout(self.request_timeout)
