"""HTTP client for the Google Calendar v3 and Gmail v1 REST APIs.

Every call takes the caller's OAuth access token, so one client instance is
shared by all users.  Requests are **never retried**: a failed insert or send
surfaces immediately so the action accounting stays exact (a silent retry
could double-book an event or double-send an email).

Calendar docs: https://developers.google.com/calendar/api/v3/reference
Gmail docs:    https://developers.google.com/gmail/api/reference/rest
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from src.config import GOOGLE_API_BASE_URL, GOOGLE_API_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

_CALENDAR_PREFIX = "/calendar/v3"
_GMAIL_PREFIX = "/gmail/v1"


class GoogleAPIError(Exception):
    """Raised when a Google API call returns an error or cannot be completed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def _error_detail(response: httpx.Response) -> str:
    """Pull ``error.message`` out of a Google error body, else the raw text."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return body.get("error_description") or err
    return response.text


class GoogleClient:
    """Thin wrapper around the Calendar and Gmail endpoints the agent uses."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        http_client: httpx.Client | None = None,
        timeout: float = GOOGLE_API_TIMEOUT_SECONDS,
    ):
        self._timeout = timeout
        self._client = http_client or httpx.Client(
            base_url=base_url or GOOGLE_API_BASE_URL,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )

    # ── Internal helpers ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Execute one request.  Timeouts propagate as ``httpx.TimeoutException``."""
        try:
            response = self._client.request(
                method,
                path,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=timeout if timeout is not None else self._timeout,
            )
        except httpx.TimeoutException:
            raise
        except httpx.HTTPError as exc:
            raise GoogleAPIError(f"Google API request failed: {exc}") from exc

        if response.status_code >= 400:
            kind = "Server error" if response.status_code >= 500 else "Client error"
            raise GoogleAPIError(
                f"{kind} {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()

    # ── Calendar ─────────────────────────────────────────────────────

    def list_events(
        self,
        access_token: str,
        calendar_id: str,
        *,
        time_min: str,
        time_max: str,
        max_results: int = 50,
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        """List single (expanded) events in ``[time_min, time_max)`` ordered by start."""
        data = self._request(
            "GET",
            f"{_CALENDAR_PREFIX}/calendars/{quote(calendar_id, safe='')}/events",
            access_token,
            params={
                "timeMin": time_min,
                "timeMax": time_max,
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": max_results,
            },
            timeout=timeout,
        )
        return data.get("items", [])

    def insert_event(
        self,
        access_token: str,
        event: dict[str, Any],
        *,
        calendar_id: str = "primary",
        send_updates: str = "none",
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Create an event; ``send_updates`` is ``all`` when attendees are invited."""
        data = self._request(
            "POST",
            f"{_CALENDAR_PREFIX}/calendars/{quote(calendar_id, safe='')}/events",
            access_token,
            params={"sendUpdates": send_updates},
            json_body=event,
            timeout=timeout,
        )
        logger.info("Created calendar event %s on %s", data.get("id"), calendar_id)
        return data

    # ── Gmail ────────────────────────────────────────────────────────

    def send_message(
        self,
        access_token: str,
        raw: str,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a base64url-encoded RFC 822 message as the authenticated user."""
        data = self._request(
            "POST",
            f"{_GMAIL_PREFIX}/users/me/messages/send",
            access_token,
            json_body={"raw": raw},
            timeout=timeout,
        )
        logger.info("Gmail accepted message %s", data.get("id"))
        return data

    def close(self) -> None:
        self._client.close()
