"""Tests for Google credential storage and token refresh."""

from __future__ import annotations

from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from src.cancellation import CancellationToken
from src.errors import AuthorizationError, CancellationError
from src.services.database import utc_now
from src.services.oauth import (
    NOT_CONNECTED_MESSAGE,
    REFRESH_FAILED_MESSAGE,
    GoogleCredentials,
)

USER_ID = "user-1"


def _credentials(credential_store, handler) -> tuple[GoogleCredentials, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    creds = GoogleCredentials(
        credential_store,
        http_client=httpx.Client(transport=httpx.MockTransport(record)),
        client_id="client-id",
        client_secret="client-secret",
        token_url="https://oauth2.googleapis.com/token",
    )
    return creds, seen


def _expired(credential_store, refresh_token="refresh-token-1"):
    return credential_store.save(
        USER_ID,
        access_token="stale-token",
        refresh_token=refresh_token,
        token_expiry=utc_now() - timedelta(minutes=5),
    )


class TestCredentialStore:
    def test_save_is_an_upsert(self, credential_store):
        first = credential_store.save(USER_ID, access_token="a1", refresh_token="r1")
        second = credential_store.save(USER_ID, access_token="a2")
        assert first.id == second.id
        stored = credential_store.get(USER_ID)
        assert stored.access_token == "a2"
        assert stored.refresh_token == "r1"

    def test_get_missing(self, credential_store):
        assert credential_store.get("nobody") is None

    def test_no_expiry_never_expires(self, credential_store):
        record = credential_store.save(USER_ID, access_token="a1")
        assert record.is_expired() is False


class TestAccessToken:
    def test_valid_token_returned_without_refresh(self, credential_store, connected_user):
        creds, seen = _credentials(credential_store, lambda r: httpx.Response(500))
        assert creds.access_token(USER_ID) == "valid-access-token"
        assert seen == []

    def test_not_connected(self, credential_store):
        creds, _ = _credentials(credential_store, lambda r: httpx.Response(500))
        with pytest.raises(AuthorizationError) as exc_info:
            creds.access_token(USER_ID)
        assert str(exc_info.value) == NOT_CONNECTED_MESSAGE
        assert "reconnect" in exc_info.value.user_message

    def test_expired_token_refreshed_transparently(self, credential_store):
        _expired(credential_store)
        creds, seen = _credentials(
            credential_store,
            lambda r: httpx.Response(200, json={"access_token": "fresh-token", "expires_in": 3600}),
        )

        assert creds.access_token(USER_ID) == "fresh-token"

        (request,) = seen
        form = parse_qs(request.content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["refresh-token-1"]
        assert form["client_id"] == ["client-id"]

        stored = credential_store.get(USER_ID)
        assert stored.access_token == "fresh-token"
        assert stored.is_expired() is False

    def test_refresh_rejected_leaves_record_unchanged(self, credential_store):
        before = _expired(credential_store)
        creds, seen = _credentials(
            credential_store, lambda r: httpx.Response(400, json={"error": "invalid_grant"}),
        )

        with pytest.raises(AuthorizationError) as exc_info:
            creds.access_token(USER_ID)

        assert str(exc_info.value) == REFRESH_FAILED_MESSAGE
        assert len(seen) == 1
        after = credential_store.get(USER_ID)
        assert after.access_token == "stale-token"
        assert after.token_expiry == before.token_expiry

    def test_missing_refresh_token(self, credential_store):
        _expired(credential_store, refresh_token=None)
        creds, seen = _credentials(credential_store, lambda r: httpx.Response(200))
        with pytest.raises(AuthorizationError, match="could not be refreshed"):
            creds.access_token(USER_ID)
        assert seen == []

    def test_response_without_access_token(self, credential_store):
        _expired(credential_store)
        creds, _ = _credentials(credential_store, lambda r: httpx.Response(200, json={}))
        with pytest.raises(AuthorizationError):
            creds.access_token(USER_ID)

    def test_network_error_is_authorization_error(self, credential_store):
        _expired(credential_store)

        def boom(request):
            raise httpx.ConnectError("connection refused")

        creds, _ = _credentials(credential_store, boom)
        with pytest.raises(AuthorizationError):
            creds.access_token(USER_ID)

    def test_cancelled_token_does_not_refresh(self, credential_store):
        _expired(credential_store)
        creds, seen = _credentials(credential_store, lambda r: httpx.Response(200))
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CancellationError):
            creds.access_token(USER_ID, token)
        assert seen == []
