"""Pydantic models shared by the token store, OAuth session and driver."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Seconds subtracted from the expiry so a token about to lapse mid-request
# counts as expired.
TOKEN_EXPIRY_SKEW_SECONDS = 30

SELECTED_CALENDARS_PREF = "calendar_google_selected"


class TokenRecord(BaseModel):
    """Canonical OAuth token shape.

    Unknown provider fields are kept so a refresh merge never drops data the
    token endpoint returned earlier.  Secret values are excluded from ``repr``.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str = Field(repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    expires_in: int | None = None
    created: int | None = None
    expires_at: int | None = None
    email: str | None = None
    token_type: str | None = None
    scope: str | None = None
    id_token: str | None = Field(default=None, repr=False)

    def resolved_expires_at(self) -> int | None:
        """Absolute expiry: ``created + expires_in`` first, then ``expires_at``."""
        if self.created is not None and self.expires_in is not None:
            return int(self.created) + int(self.expires_in)
        if self.expires_at is not None:
            return int(self.expires_at)
        return None

    def is_expired(self, now: float) -> bool:
        expires_at = self.resolved_expires_at()
        if expires_at is None:
            return True
        return expires_at - TOKEN_EXPIRY_SKEW_SECONDS < now

    def merged(self, update: Mapping[str, Any]) -> TokenRecord:
        """Return a new record with *update* keys layered over this one."""
        payload = self.model_dump(exclude_none=True)
        payload.update({k: v for k, v in update.items() if v is not None})
        return TokenRecord.model_validate(payload)

    def to_storage_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class UserContext(BaseModel):
    """The host user a driver instance acts for."""

    user_id: int
    prefs: dict[str, Any] = Field(default_factory=dict)

    def selected_calendars(self) -> list[str]:
        raw = self.prefs.get(SELECTED_CALENDARS_PREF)
        if raw is None:
            return []
        if isinstance(raw, str):
            return [raw] if raw else []
        return [str(item) for item in raw]


class CalendarDescriptor(BaseModel):
    """One remote calendar as the host's calendar list expects it."""

    id: str
    name: str
    listname: str
    editname: str
    color: str
    editable: bool = False
    group: str = "google"
    active: bool = True
    owner: str
    removable: bool = False


class Attendee(BaseModel):
    name: str = ""
    email: str = ""
    role: str = "REQ-PARTICIPANT"
    status: str = "NEEDS-ACTION"


class EventRecord(BaseModel):
    """Host-internal event shape produced from a Google event."""

    id: str
    uid: str
    calendar: str
    title: str = ""
    description: str = ""
    location: str = ""
    start: datetime | None = None
    end: datetime | None = None
    all_day: int = 0
    categories: list[str] = Field(default_factory=list)
    free_busy: str = "busy"
    status: str = "CONFIRMED"
    priority: int = 0
    attendees: list[Attendee] = Field(default_factory=list)
    alarms: list[Any] = Field(default_factory=list)
    valarms: list[Any] = Field(default_factory=list)
    flags: list[str] = Field(default_factory=lambda: ["readonly"])

    def to_host_dict(self) -> dict[str, Any]:
        return self.model_dump()


class CallbackResult(BaseModel):
    """Outcome of an OAuth callback: ``ok`` with ``email`` or an ``error`` tag."""

    ok: bool
    email: str | None = None
    error: str | None = None
