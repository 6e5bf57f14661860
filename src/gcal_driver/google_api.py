"""Bearer-authenticated JSON client for the Google Calendar and userinfo APIs.

The client holds an already-valid access token; obtaining and refreshing it
is the OAuth session's job.  There is no retry: a failed request surfaces to
the caller as :class:`GoogleRequestError`.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


class OAuthError(RuntimeError):
    """Base error raised by Google OAuth and API helpers."""


class TokenRefreshError(OAuthError):
    """Raised when the refresh-token request cannot be performed."""


class GoogleRequestError(OAuthError):
    """Raised when a Google API request returns a non-success status."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Google API request failed ({status_code}): {message}")


def safe_google_error_message(response: httpx.Response) -> str:
    """Extract a short, single-line error message from a Google error response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return redact_credential_values(" ".join(message.split()))[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            return redact_credential_values(" ".join(error_payload.split()))[:200]

    raw_text = response.text.strip()
    if raw_text:
        return redact_credential_values(" ".join(raw_text.split()))[:200]
    return "Request failed without an error payload"


def redact_credential_values(message: str) -> str:
    """Redact token and secret values from an error message."""
    redacted = re.sub(
        r"(?i)\b(client_secret|refresh_token|access_token|code)\s*=\s*([^\s,;&]+)",
        r"\1=[REDACTED]",
        message,
    )
    redacted = re.sub(
        r"""(?i)(['"]?(?:client_secret|refresh_token|access_token)['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    return redacted


def google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


class GoogleApiClient:
    """Authenticated Calendar v3 client bound to one access token."""

    def __init__(
        self,
        access_token: str,
        http_client: httpx.AsyncClient,
        *,
        user_agent: str | None = None,
    ) -> None:
        self._access_token = access_token
        self._http_client = http_client
        self._user_agent = user_agent

    async def _get_json(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> dict[str, Any] | None:
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
        }
        if self._user_agent:
            headers["User-Agent"] = self._user_agent
        try:
            response = await self._http_client.get(url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise OAuthError(f"Google API request failed: {exc}") from exc

        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code < 200 or response.status_code >= 300:
            raise GoogleRequestError(
                status_code=response.status_code,
                message=safe_google_error_message(response),
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise OAuthError("Google API returned invalid JSON for a successful response") from exc
        if not isinstance(payload, dict):
            raise OAuthError("Google API returned an unexpected JSON payload shape")
        return payload

    async def list_calendar_list(self, *, page_token: str | None = None) -> dict[str, Any]:
        """Fetch one page of the authenticated user's calendar list."""
        params: dict[str, Any] = {}
        if page_token is not None:
            params["pageToken"] = page_token
        payload = await self._get_json(
            f"{GOOGLE_CALENDAR_API_BASE_URL}/users/me/calendarList",
            params=params or None,
        )
        assert payload is not None
        return payload

    async def list_events(self, calendar_id: str, params: dict[str, Any]) -> dict[str, Any]:
        """Fetch one page of events for *calendar_id* with the given query params."""
        payload = await self._get_json(
            f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/{quote(calendar_id, safe='')}/events",
            params=params,
        )
        assert payload is not None
        return payload

    async def get_event(self, calendar_id: str, event_id: str) -> dict[str, Any] | None:
        """Fetch a single event; ``None`` when Google reports 404."""
        return await self._get_json(
            f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/{quote(calendar_id, safe='')}"
            f"/events/{quote(event_id, safe='')}",
            allow_not_found=True,
        )

    async def get_userinfo(self) -> dict[str, Any]:
        """Fetch the profile of the token's owner (used for its email)."""
        payload = await self._get_json(GOOGLE_USERINFO_URL)
        assert payload is not None
        return payload
