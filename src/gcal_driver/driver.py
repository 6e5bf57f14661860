"""Read-only Google Calendar driver for the host calendar application.

This module defines:
- ``CalendarDriver``: the capability set the host calls on any calendar source
- ``GoogleDriver``: the Google implementation, overlaying the user's Google
  calendars and refusing every mutation
"""

from __future__ import annotations

import abc
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import httpx

from gcal_driver.core.logging import set_user_context
from gcal_driver.google_api import google_rfc3339
from gcal_driver.mapping import (
    map_calendar,
    map_event,
    parse_event_key,
    remote_calendar_id,
)
from gcal_driver.models import CalendarDescriptor, CallbackResult, EventRecord, UserContext
from gcal_driver.oauth import OAuthSessionManager, build_redirect_uri
from gcal_driver.token_store import TokenStore

if TYPE_CHECKING:
    import asyncpg

    from gcal_driver.config import DriverConfig

logger = logging.getLogger(__name__)

EVENTS_PAGE_SIZE = 2500
DEFAULT_COUNT_WINDOW = timedelta(days=1)

Instant = datetime | int | float


def _coerce_instant(value: Instant) -> datetime:
    """Accept datetimes or unix timestamps; naive datetimes are taken as UTC."""
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return datetime.fromtimestamp(value, tz=UTC)


def _requested_calendar_ids(calendars: str | Iterable[str] | None) -> list[str]:
    if calendars is None:
        return []
    if isinstance(calendars, str):
        candidates = calendars.split(",")
    else:
        candidates = list(calendars)
    requested: list[str] = []
    for candidate in candidates:
        normalized = str(candidate).strip()
        if normalized and normalized not in requested:
            requested.append(normalized)
    return requested


class CalendarDriver(abc.ABC):
    """Capability set a calendar source exposes to the host application."""

    @abc.abstractmethod
    async def list_calendars(self, filter: int = 0) -> dict[str, CalendarDescriptor]:
        """Return the source's calendars keyed by calendar id."""
        ...

    @abc.abstractmethod
    async def create_calendar(self, prop: Mapping[str, Any]) -> bool: ...

    @abc.abstractmethod
    async def edit_calendar(self, prop: Mapping[str, Any]) -> bool: ...

    @abc.abstractmethod
    async def subscribe_calendar(self, prop: Mapping[str, Any]) -> bool: ...

    @abc.abstractmethod
    async def delete_calendar(self, prop: Mapping[str, Any]) -> bool: ...

    @abc.abstractmethod
    def get_calendar_name(self, calendar_id: str) -> str: ...

    @abc.abstractmethod
    async def search_calendars(self, query: str, source: str) -> list[CalendarDescriptor]: ...

    @abc.abstractmethod
    async def new_event(self, event: Mapping[str, Any]) -> bool: ...

    @abc.abstractmethod
    async def edit_event(self, event: Mapping[str, Any]) -> bool: ...

    @abc.abstractmethod
    async def move_event(self, event: Mapping[str, Any]) -> bool: ...

    @abc.abstractmethod
    async def resize_event(self, event: Mapping[str, Any]) -> bool: ...

    @abc.abstractmethod
    async def remove_event(self, event: Mapping[str, Any], force: bool = True) -> bool: ...

    @abc.abstractmethod
    async def get_event(
        self,
        event: str | Mapping[str, Any],
        scope: int = 0,
        full: bool = False,
    ) -> EventRecord | None:
        """Fetch one event by its composite id."""
        ...

    @abc.abstractmethod
    async def load_events(
        self,
        start: Instant,
        end: Instant,
        query: str | None = None,
        calendars: str | Iterable[str] | None = None,
        virtual: bool = True,
        modifiedsince: Instant | None = None,
    ) -> list[EventRecord]:
        """Return events overlapping ``[start, end]``."""
        ...

    @abc.abstractmethod
    async def count_events(
        self,
        calendars: str | Iterable[str] | None,
        start: Instant,
        end: Instant | None = None,
    ) -> int: ...

    @abc.abstractmethod
    async def pending_alarms(
        self,
        when: Instant,
        calendars: str | Iterable[str] | None = None,
    ) -> list[dict[str, Any]]: ...

    @abc.abstractmethod
    async def dismiss_alarm(self, event_id: str, snooze: int = 0) -> bool: ...


class GoogleDriver(CalendarDriver):
    """Google Calendar overlay acting for one host user.

    Host collaborators are injected: the user context, the driver config, the
    asyncpg pool holding the token table and optionally a shared
    ``httpx.AsyncClient``.  Call :meth:`start` before use and
    :meth:`shutdown` when done (or use the driver as an async context manager).
    """

    alarm_types = ("DISPLAY", "EMAIL")
    nocategories = True

    def __init__(
        self,
        *,
        user: UserContext,
        config: DriverConfig,
        pool: asyncpg.Pool,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.user = user
        self.config = config
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=30.0)
        self.token_store = TokenStore(
            pool,
            table_prefix=config.db.table_prefix,
            clock=clock,
        )
        self.session = OAuthSessionManager(
            user=user,
            google=config.google,
            redirect_uri=build_redirect_uri(config.host.url),
            token_store=self.token_store,
            http_client=self._http_client,
            clock=clock,
        )

    async def start(self) -> None:
        set_user_context(self.user.user_id)
        await self.token_store.ensure_schema()
        await self.session.start()

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> GoogleDriver:
        try:
            await self.start()
        except BaseException:
            await self.shutdown()
            raise
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Session actions
    # ------------------------------------------------------------------

    def begin_authorization(self) -> str | None:
        return self.session.authorization_url()

    async def handle_callback(self, code: str | None) -> CallbackResult:
        return await self.session.handle_callback(code)

    async def disconnect(self) -> None:
        await self.session.disconnect()

    # ------------------------------------------------------------------
    # Calendars
    # ------------------------------------------------------------------

    async def list_calendars(self, filter: int = 0) -> dict[str, CalendarDescriptor]:
        api = self.session.api
        if api is None:
            return {}

        selected = set(self.user.selected_calendars())
        result: dict[str, CalendarDescriptor] = {}
        page_token: str | None = None
        while True:
            payload = await api.list_calendar_list(page_token=page_token)
            items = payload.get("items")
            for item in items if isinstance(items, list) else []:
                if not isinstance(item, dict):
                    continue
                descriptor = map_calendar(item, selected)
                if descriptor is not None:
                    result[descriptor.id] = descriptor

            next_token = payload.get("nextPageToken")
            if not isinstance(next_token, str) or not next_token:
                break
            page_token = next_token

        logger.debug("Listed %d Google calendar(s)", len(result))
        return result

    async def create_calendar(self, prop: Mapping[str, Any]) -> bool:
        return False

    async def edit_calendar(self, prop: Mapping[str, Any]) -> bool:
        return False

    async def subscribe_calendar(self, prop: Mapping[str, Any]) -> bool:
        return False

    async def delete_calendar(self, prop: Mapping[str, Any]) -> bool:
        return False

    def get_calendar_name(self, calendar_id: str) -> str:
        return calendar_id

    async def search_calendars(self, query: str, source: str) -> list[CalendarDescriptor]:
        return []

    # ------------------------------------------------------------------
    # Events (read-only)
    # ------------------------------------------------------------------

    async def new_event(self, event: Mapping[str, Any]) -> bool:
        return False

    async def edit_event(self, event: Mapping[str, Any]) -> bool:
        return False

    async def move_event(self, event: Mapping[str, Any]) -> bool:
        return False

    async def resize_event(self, event: Mapping[str, Any]) -> bool:
        return False

    async def remove_event(self, event: Mapping[str, Any], force: bool = True) -> bool:
        return False

    async def get_event(
        self,
        event: str | Mapping[str, Any],
        scope: int = 0,
        full: bool = False,
    ) -> EventRecord | None:
        api = self.session.api
        if api is None:
            return None

        if isinstance(event, Mapping):
            key = str(event.get("id") or "")
        else:
            key = str(event)

        parsed = parse_event_key(key)
        if parsed is None:
            return None
        _, calendar_id, event_id = parsed

        raw = await api.get_event(calendar_id, event_id)
        if raw is None:
            return None
        return map_event(raw, calendar_id)

    async def load_events(
        self,
        start: Instant,
        end: Instant,
        query: str | None = None,
        calendars: str | Iterable[str] | None = None,
        virtual: bool = True,
        modifiedsince: Instant | None = None,
    ) -> list[EventRecord]:
        api = self.session.api
        if api is None:
            return []

        known = await self.list_calendars()
        requested = _requested_calendar_ids(calendars)
        if requested:
            target_ids = [calendar_id for calendar_id in requested if calendar_id in known]
        else:
            target_ids = list(known)

        base_params: dict[str, Any] = {
            "singleEvents": "true",
            "orderBy": "startTime",
            "timeMin": google_rfc3339(_coerce_instant(start)),
            "timeMax": google_rfc3339(_coerce_instant(end)),
            "maxResults": EVENTS_PAGE_SIZE,
        }
        if query:
            base_params["q"] = query

        events: list[EventRecord] = []
        for calendar_key in target_ids:
            remote_id = remote_calendar_id(calendar_key)
            params = dict(base_params)
            while True:
                payload = await api.list_events(remote_id, params)
                items = payload.get("items")
                for item in items if isinstance(items, list) else []:
                    mapped = map_event(item, remote_id) if isinstance(item, dict) else None
                    if mapped is not None:
                        events.append(mapped)

                next_token = payload.get("nextPageToken")
                if not isinstance(next_token, str) or not next_token:
                    break
                params["pageToken"] = next_token

        logger.debug(
            "Loaded %d Google event(s) from %d calendar(s)",
            len(events),
            len(target_ids),
        )
        return events

    async def count_events(
        self,
        calendars: str | Iterable[str] | None,
        start: Instant,
        end: Instant | None = None,
    ) -> int:
        start_at = _coerce_instant(start)
        end_at = _coerce_instant(end) if end is not None else start_at + DEFAULT_COUNT_WINDOW
        events = await self.load_events(start_at, end_at, None, calendars)
        return len(events)

    # ------------------------------------------------------------------
    # Alarms (not surfaced from Google)
    # ------------------------------------------------------------------

    async def pending_alarms(
        self,
        when: Instant,
        calendars: str | Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        return []

    async def dismiss_alarm(self, event_id: str, snooze: int = 0) -> bool:
        return False
