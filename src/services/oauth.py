"""OAuth credential storage and Google access-token refresh.

Credentials live in ``user_oauth_tokens`` keyed by ``(user_id, provider)``.
``GoogleCredentials.access_token`` is the single entry point the tool
handlers use: it returns a usable bearer token, refreshing an expired one
exactly once with the stored refresh token.  A failed refresh leaves the
stored record untouched and raises ``AuthorizationError``.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import httpx
from sqlalchemy.engine import Engine
from sqlmodel import select

from src.cancellation import CancellationToken
from src.config import (
    GOOGLE_API_TIMEOUT_SECONDS,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_TOKEN_URL,
)
from src.errors import AuthorizationError, CancellationError
from src.services.database import OAuthCredential, new_session, utc_now

logger = logging.getLogger(__name__)

GOOGLE_PROVIDER = "google"

NOT_CONNECTED_MESSAGE = (
    "Google account not connected. Please connect your Google account in settings "
    "to use calendar and email features."
)
REFRESH_FAILED_MESSAGE = (
    "Google token expired and could not be refreshed. Please reconnect your Google account."
)


class CredentialStore:
    """CRUD for ``OAuthCredential`` rows."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def get(self, user_id: str, provider: str = GOOGLE_PROVIDER) -> OAuthCredential | None:
        with new_session(self._engine) as session:
            stmt = select(OAuthCredential).where(
                OAuthCredential.user_id == user_id,
                OAuthCredential.provider == provider,
            )
            return session.exec(stmt).first()

    def save(
        self,
        user_id: str,
        *,
        access_token: str,
        refresh_token: str | None = None,
        token_expiry=None,
        scope: str | None = None,
        provider: str = GOOGLE_PROVIDER,
    ) -> OAuthCredential:
        """Insert or replace the credential for ``(user_id, provider)``."""
        with new_session(self._engine) as session:
            stmt = select(OAuthCredential).where(
                OAuthCredential.user_id == user_id,
                OAuthCredential.provider == provider,
            )
            record = session.exec(stmt).first()
            if record is None:
                record = OAuthCredential(user_id=user_id, provider=provider, access_token=access_token)
            record.access_token = access_token
            record.refresh_token = refresh_token or record.refresh_token
            record.token_expiry = token_expiry
            record.scope = scope or record.scope
            record.updated_at = utc_now()
            session.add(record)
            session.commit()
            session.refresh(record)
            return record

    def update_access_token(self, credential_id: str, access_token: str, token_expiry) -> None:
        with new_session(self._engine) as session:
            record = session.get(OAuthCredential, credential_id)
            if record is None:
                return
            record.access_token = access_token
            record.token_expiry = token_expiry
            record.updated_at = utc_now()
            session.add(record)
            session.commit()


class GoogleCredentials:
    """Hands out valid Google access tokens for a user."""

    def __init__(
        self,
        store: CredentialStore,
        *,
        http_client: httpx.Client | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_url: str = GOOGLE_TOKEN_URL,
        timeout: float = GOOGLE_API_TIMEOUT_SECONDS,
    ):
        self._store = store
        self._http = http_client or httpx.Client(timeout=timeout)
        self._client_id = client_id if client_id is not None else GOOGLE_CLIENT_ID
        self._client_secret = client_secret if client_secret is not None else GOOGLE_CLIENT_SECRET
        self._token_url = token_url
        self._timeout = timeout

    def access_token(self, user_id: str, token: CancellationToken | None = None) -> str:
        token = token or CancellationToken.none()
        record = self._store.get(user_id, GOOGLE_PROVIDER)
        if record is None:
            raise AuthorizationError(NOT_CONNECTED_MESSAGE, details={"user_id": user_id})

        if not record.is_expired():
            return record.access_token

        if not record.refresh_token:
            logger.warning("Google token expired with no refresh token (user=%s)", user_id)
            raise AuthorizationError(REFRESH_FAILED_MESSAGE, details={"user_id": user_id})

        logger.info("Refreshing expired Google token (user=%s)", user_id)
        access_token, expiry = self._refresh(record.refresh_token, user_id, token)
        self._store.update_access_token(record.id, access_token, expiry)
        logger.info("Google token refreshed (user=%s)", user_id)
        return access_token

    def _refresh(self, refresh_token: str, user_id: str, token: CancellationToken):
        token.raise_if_cancelled()
        try:
            response = self._http.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
                timeout=token.timeout(self._timeout),
            )
        except httpx.TimeoutException as exc:
            if token.cancelled:
                raise CancellationError() from exc
            logger.error("Google token refresh timed out (user=%s)", user_id)
            raise AuthorizationError(REFRESH_FAILED_MESSAGE, details={"user_id": user_id}) from exc
        except httpx.HTTPError as exc:
            logger.error("Google token refresh failed (user=%s): %s", user_id, exc)
            raise AuthorizationError(REFRESH_FAILED_MESSAGE, details={"user_id": user_id}) from exc

        if response.status_code != 200:
            logger.error(
                "Google token refresh rejected (user=%s): %s %s",
                user_id, response.status_code, response.text,
            )
            raise AuthorizationError(REFRESH_FAILED_MESSAGE, details={"user_id": user_id})

        data = response.json()
        access_token = data.get("access_token")
        if not access_token:
            raise AuthorizationError(REFRESH_FAILED_MESSAGE, details={"user_id": user_id})
        expires_in = int(data.get("expires_in", 3600))
        return access_token, utc_now() + timedelta(seconds=expires_in)
