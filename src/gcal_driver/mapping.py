"""Pure translations from Google Calendar API objects to the host schema.

Malformed provider fields degrade to defaults instead of raising so one bad
event never fails a whole range fetch.
"""

from __future__ import annotations

import html
from collections.abc import Collection
from datetime import UTC, date, datetime
from typing import Any

from gcal_driver.models import Attendee, CalendarDescriptor, EventRecord

NAMESPACE = "google"
DEFAULT_CALENDAR_COLOR = "#1a73e8"
DEFAULT_EVENT_STATUS = "CONFIRMED"
DEFAULT_RESPONSE_STATUS = "NEEDS-ACTION"
ATTENDEE_ROLE = "REQ-PARTICIPANT"
READONLY_FLAG = "readonly"


def calendar_key(remote_calendar_id: str) -> str:
    return f"{NAMESPACE}:{remote_calendar_id}"


def remote_calendar_id(key: str) -> str:
    """Strip the namespace from a calendar key (``google:abc`` → ``abc``)."""
    prefix = f"{NAMESPACE}:"
    return key[len(prefix) :] if key.startswith(prefix) else key


def event_key(remote_calendar: str, remote_event_id: str) -> str:
    return f"{NAMESPACE}:{remote_calendar}:{remote_event_id}"


def parse_event_key(key: str) -> tuple[str, str, str] | None:
    """Split ``namespace:calendarId:eventId``; ``None`` unless there are three non-empty parts."""
    parts = key.split(":", 2)
    if len(parts) != 3 or not all(parts):
        return None
    namespace, calendar_id, event_id = parts
    return namespace, calendar_id, event_id


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _parse_boundary(payload: Any) -> tuple[datetime | None, bool]:
    """Return ``(instant, date_only)`` for a Google ``start``/``end`` object.

    Date-only values become midnight UTC of that date.
    """
    if not isinstance(payload, dict):
        return None, False

    date_value = payload.get("date")
    date_only = isinstance(date_value, str) and bool(date_value.strip())

    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        normalized = date_time.strip()
        if normalized.endswith("Z"):
            normalized = f"{normalized[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError:
            return None, date_only
        return (parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)), date_only

    if date_only:
        try:
            parsed_date = date.fromisoformat(date_value.strip())
        except ValueError:
            return None, True
        return datetime(parsed_date.year, parsed_date.month, parsed_date.day, tzinfo=UTC), True

    return None, False


def upper_status(value: Any, default: str) -> str:
    """Upper-case a Google status (``needsAction`` → ``NEEDSACTION``); *default* when absent."""
    if not isinstance(value, str) or not value.strip():
        return default
    return value.strip().upper()


def map_attendees(payload: Any) -> list[Attendee]:
    if not isinstance(payload, list):
        return []
    attendees: list[Attendee] = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        attendees.append(
            Attendee(
                name=_text(entry.get("displayName")),
                email=_text(entry.get("email")),
                role=ATTENDEE_ROLE,
                status=upper_status(entry.get("responseStatus"), DEFAULT_RESPONSE_STATUS),
            )
        )
    return attendees


def map_event(raw: dict[str, Any], remote_calendar: str) -> EventRecord | None:
    """Translate one Google event into the host event record.

    *remote_calendar* is the Google calendar id without namespace.  Returns
    ``None`` for an entry without an event id.
    """
    event_id = _text(raw.get("id"))
    if not event_id:
        return None
    start, all_day = _parse_boundary(raw.get("start"))
    end, _ = _parse_boundary(raw.get("end"))

    return EventRecord(
        id=event_key(remote_calendar, event_id),
        uid=_text(raw.get("iCalUID")) or event_id,
        calendar=calendar_key(remote_calendar),
        title=_text(raw.get("summary")),
        description=_text(raw.get("description")),
        location=_text(raw.get("location")),
        start=start,
        end=end,
        all_day=1 if all_day else 0,
        status=upper_status(raw.get("status"), DEFAULT_EVENT_STATUS),
        attendees=map_attendees(raw.get("attendees")),
        flags=[READONLY_FLAG],
    )


def map_calendar(
    raw: dict[str, Any],
    selected: Collection[str],
) -> CalendarDescriptor | None:
    """Translate a calendarList entry; always read-only whatever the access role.

    ``active`` is true for every calendar when *selected* is empty.  Entries
    without an id map to ``None``.
    """
    remote_id = _text(raw.get("id"))
    if not remote_id:
        return None
    key = calendar_key(remote_id)
    name = html.escape(_text(raw.get("summary")))
    owner = _text(raw.get("summaryOverride")) or remote_id

    return CalendarDescriptor(
        id=key,
        name=name,
        listname=name,
        editname=name,
        color=_text(raw.get("backgroundColor")) or DEFAULT_CALENDAR_COLOR,
        editable=False,
        group=NAMESPACE,
        active=not selected or key in selected,
        owner=html.escape(owner),
        removable=False,
    )
