"""Google OAuth session for one host user.

Implements the authorization-code flow the host drives through three
actions:

  1. ``authorization_url()``: consent URL the browser is redirected to
     (offline access, forced consent so Google always returns a refresh token).
  2. ``handle_callback(code)``: exchanges the code for tokens, resolves the
     account email through the userinfo endpoint and persists the token.
  3. ``disconnect()``: forgets every stored token of the user.

On ``start()`` a stored token is loaded and, when expired, refreshed exactly
once.  The session stays disabled when no OAuth client id/secret is
configured; dependent operations then degrade to empty results.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from gcal_driver.google_api import GoogleApiClient, OAuthError, TokenRefreshError
from gcal_driver.models import CallbackResult, TokenRecord, UserContext

if TYPE_CHECKING:
    from gcal_driver.config import GoogleConfig
    from gcal_driver.token_store import TokenStore

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

CALENDAR_READONLY_SCOPE = "https://www.googleapis.com/auth/calendar.readonly"
# Needed by the userinfo lookup that names the connected account.
USERINFO_EMAIL_SCOPE = "https://www.googleapis.com/auth/userinfo.email"
SCOPES = (CALENDAR_READONLY_SCOPE, USERINFO_EMAIL_SCOPE)

CALLBACK_TASK = "calendar"
CALLBACK_ACTION = "plugin.google-oauth-callback"

ERROR_CLIENT_NOT_READY = "client_not_ready"
ERROR_MISSING_CODE = "missing_code"
ERROR_INVALID_TOKEN_RESPONSE = "invalid_token_response"


def build_redirect_uri(host_url: str) -> str:
    """Return the absolute URL of the host's OAuth callback action."""
    parts = urlsplit(host_url)
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in ("_task", "_action")
    ]
    query += [("_task", CALLBACK_TASK), ("_action", CALLBACK_ACTION)]
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", urlencode(query), ""))


class OAuthSessionManager:
    """OAuth client state plus the authenticated API client of one user."""

    def __init__(
        self,
        *,
        user: UserContext,
        google: GoogleConfig,
        redirect_uri: str,
        token_store: TokenStore,
        http_client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._user = user
        self._google = google
        self.redirect_uri = redirect_uri
        self._token_store = token_store
        self._http_client = http_client
        self._clock = clock
        self._client_ready = False
        self._token: TokenRecord | None = None
        self.api: GoogleApiClient | None = None

    @property
    def enabled(self) -> bool:
        return self._client_ready

    @property
    def authenticated(self) -> bool:
        return self.api is not None

    @property
    def token(self) -> TokenRecord | None:
        return self._token

    async def start(self) -> None:
        """Prepare the client and install (refreshing if needed) the stored token."""
        if not self._google.configured:
            logger.info("Google OAuth client id/secret not configured; driver disabled")
            return
        self._client_ready = True

        token = await self._token_store.load(self._user.user_id)
        if token is None:
            logger.debug("No stored Google token for user %s", self._user.user_id)
            return

        if token.is_expired(self._clock()) and token.refresh_token:
            token = await self._refresh(token)

        self._install(token)

    def _install(self, token: TokenRecord) -> None:
        self._token = token
        self.api = GoogleApiClient(
            token.access_token,
            self._http_client,
            user_agent=self._google.application_name,
        )

    async def _refresh(self, token: TokenRecord) -> TokenRecord:
        """Perform the single refresh attempt; returns the token to install."""
        assert token.refresh_token is not None
        payload = await self._request_token(
            {
                "client_id": self._google.client_id,
                "client_secret": self._google.client_secret,
                "refresh_token": token.refresh_token,
                "grant_type": "refresh_token",
            },
            error_cls=TokenRefreshError,
        )

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            logger.warning(
                "Google token refresh failed for user %s: %s",
                self._user.user_id,
                payload.get("error", "no access_token in response"),
            )
            return token

        merged = token.merged({**payload, "created": int(self._clock())})
        await self._token_store.save(self._user.user_id, merged)
        logger.info("Google token refreshed for user %s", self._user.user_id)
        return merged

    async def _request_token(
        self,
        data: dict[str, str],
        *,
        error_cls: type[OAuthError] = OAuthError,
    ) -> dict[str, Any]:
        """POST to the token endpoint and return its JSON body.

        Provider-reported failures come back as a body with an ``error`` key;
        only transport failures and unreadable bodies raise.
        """
        try:
            response = await self._http_client.post(
                GOOGLE_TOKEN_URL,
                data=data,
                headers={
                    "Accept": "application/json",
                    "User-Agent": self._google.application_name,
                },
            )
        except httpx.HTTPError as exc:
            raise error_cls(f"Google OAuth token request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise error_cls(
                f"Google OAuth token endpoint returned invalid JSON ({response.status_code})"
            ) from exc

        if not isinstance(payload, dict):
            raise error_cls("Google OAuth token endpoint returned an unexpected payload shape")
        if response.status_code >= 300 and "error" not in payload:
            payload = {"error": f"http_{response.status_code}"}
        return payload

    def authorization_url(self) -> str | None:
        """Consent URL for the configured client, or ``None`` when disabled."""
        if not self._client_ready:
            return None
        params = {
            "client_id": self._google.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def handle_callback(self, code: str | None) -> CallbackResult:
        """Exchange an authorization code and persist the resulting token."""
        if not self._client_ready:
            return CallbackResult(ok=False, error=ERROR_CLIENT_NOT_READY)

        code = (code or "").strip()
        if not code:
            return CallbackResult(ok=False, error=ERROR_MISSING_CODE)

        payload = await self._request_token(
            {
                "code": code,
                "client_id": self._google.client_id,
                "client_secret": self._google.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            }
        )
        if "error" in payload:
            logger.warning(
                "Google OAuth code exchange rejected for user %s: %s",
                self._user.user_id,
                payload["error"],
            )
            return CallbackResult(ok=False, error=str(payload["error"]))

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            return CallbackResult(ok=False, error=ERROR_INVALID_TOKEN_RESPONSE)

        token = TokenRecord.model_validate({**payload, "created": int(self._clock())})
        api = GoogleApiClient(
            token.access_token,
            self._http_client,
            user_agent=self._google.application_name,
        )
        userinfo = await api.get_userinfo()
        email_raw = userinfo.get("email")
        email = email_raw.strip() if isinstance(email_raw, str) and email_raw.strip() else None

        token = token.merged({"email": email})
        await self._token_store.save(self._user.user_id, token, email)
        self._token = token
        self.api = api

        logger.info("Google account %r connected for user %s", email, self._user.user_id)
        return CallbackResult(ok=True, email=email)

    async def disconnect(self) -> None:
        """Delete the user's stored tokens and drop all in-memory session state."""
        await self._token_store.delete(self._user.user_id)
        self._client_ready = False
        self._token = None
        self.api = None
        logger.info("Google account disconnected for user %s", self._user.user_id)
