"""Unit tests for gcal_driver.mapping (Google objects to host records)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from gcal_driver.mapping import (
    DEFAULT_CALENDAR_COLOR,
    calendar_key,
    event_key,
    map_calendar,
    map_event,
    parse_event_key,
    remote_calendar_id,
    upper_status,
)

pytestmark = pytest.mark.unit


def _event(**overrides) -> dict:
    raw = {
        "id": "ev1",
        "iCalUID": "ev1@google.com",
        "summary": "Standup",
        "start": {"dateTime": "2026-03-10T09:00:00Z"},
        "end": {"dateTime": "2026-03-10T09:15:00Z"},
    }
    raw.update(overrides)
    return raw


class TestKeys:
    def test_calendar_key_round_trip(self) -> None:
        assert calendar_key("primary") == "google:primary"
        assert remote_calendar_id("google:primary") == "primary"

    def test_remote_calendar_id_without_namespace_unchanged(self) -> None:
        assert remote_calendar_id("primary") == "primary"

    def test_event_key_splits_into_three_parts(self) -> None:
        key = event_key("team@group.calendar.google.com", "ev1")
        assert parse_event_key(key) == ("google", "team@group.calendar.google.com", "ev1")

    def test_event_id_may_contain_colons(self) -> None:
        assert parse_event_key("google:primary:ev:1:2") == ("google", "primary", "ev:1:2")

    @pytest.mark.parametrize(
        "key", ["", "google", "google:primary", "google:primary:", ":primary:ev", "google::ev"]
    )
    def test_short_or_empty_keys_rejected(self, key) -> None:
        assert parse_event_key(key) is None


class TestUpperStatus:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("confirmed", "CONFIRMED"),
            ("tentative", "TENTATIVE"),
            ("needsAction", "NEEDSACTION"),
            ("accepted", "ACCEPTED"),
            (None, "DEFAULT"),
            ("  ", "DEFAULT"),
            (3, "DEFAULT"),
        ],
    )
    def test_status_forms(self, value, expected) -> None:
        assert upper_status(value, "DEFAULT") == expected


class TestMapEvent:
    def test_timed_event(self) -> None:
        event = map_event(_event(location="Room 4"), "primary")

        assert event.id == "google:primary:ev1"
        assert event.uid == "ev1@google.com"
        assert event.calendar == "google:primary"
        assert event.title == "Standup"
        assert event.location == "Room 4"
        assert event.start == datetime(2026, 3, 10, 9, 0, tzinfo=UTC)
        assert event.end == datetime(2026, 3, 10, 9, 15, tzinfo=UTC)
        assert event.all_day == 0

    def test_offset_preserved(self) -> None:
        event = map_event(_event(start={"dateTime": "2026-03-10T09:00:00+02:00"}), "primary")
        assert event.start == datetime(2026, 3, 10, 9, 0, tzinfo=timezone(timedelta(hours=2)))

    def test_all_day_event_starts_midnight_utc(self) -> None:
        event = map_event(
            _event(start={"date": "2026-03-10"}, end={"date": "2026-03-11"}),
            "primary",
        )

        assert event.all_day == 1
        assert event.start == datetime(2026, 3, 10, tzinfo=UTC)
        assert event.end == datetime(2026, 3, 11, tzinfo=UTC)

    def test_defaults_for_read_only_overlay(self) -> None:
        event = map_event({"id": "ev1"}, "primary")

        assert event.uid == "ev1"
        assert event.title == ""
        assert event.description == ""
        assert event.status == "CONFIRMED"
        assert event.free_busy == "busy"
        assert event.priority == 0
        assert event.flags == ["readonly"]
        assert event.categories == []
        assert event.alarms == []
        assert event.attendees == []
        assert event.start is None
        assert event.end is None

    def test_status_upper_cased(self) -> None:
        assert map_event(_event(status="cancelled"), "primary").status == "CANCELLED"

    def test_attendees_mapped(self) -> None:
        event = map_event(
            _event(
                attendees=[
                    {
                        "email": "bob@example.com",
                        "displayName": "Bob",
                        "responseStatus": "accepted",
                    },
                    {"email": "carol@example.com"},
                    "not-a-dict",
                ]
            ),
            "primary",
        )

        assert [a.email for a in event.attendees] == ["bob@example.com", "carol@example.com"]
        bob, carol = event.attendees
        assert bob.name == "Bob"
        assert bob.role == "REQ-PARTICIPANT"
        assert bob.status == "ACCEPTED"
        assert carol.name == ""
        assert carol.status == "NEEDS-ACTION"

    @pytest.mark.parametrize(
        "boundary",
        [
            {"dateTime": "not-a-date"},
            {"date": "2026-13-45"},
            "2026-03-10",
            {},
        ],
    )
    def test_malformed_boundaries_become_none(self, boundary) -> None:
        event = map_event(_event(start=boundary), "primary")
        assert event.start is None

    def test_missing_id_yields_nothing(self) -> None:
        raw = _event()
        del raw["id"]

        assert map_event(raw, "primary") is None
        assert map_event(_event(id=""), "primary") is None

    def test_to_host_dict_has_flat_fields(self) -> None:
        data = map_event(_event(), "primary").to_host_dict()
        assert data["id"] == "google:primary:ev1"
        assert data["all_day"] == 0
        assert data["flags"] == ["readonly"]


class TestMapCalendar:
    def test_descriptor_fields(self) -> None:
        descriptor = map_calendar(
            {
                "id": "team@group.calendar.google.com",
                "summary": "Team <Ops>",
                "backgroundColor": "#ff0000",
                "accessRole": "owner",
            },
            selected=[],
        )

        assert descriptor.id == "google:team@group.calendar.google.com"
        assert descriptor.name == "Team &lt;Ops&gt;"
        assert descriptor.listname == descriptor.name
        assert descriptor.editname == descriptor.name
        assert descriptor.color == "#ff0000"
        assert descriptor.editable is False
        assert descriptor.removable is False
        assert descriptor.group == "google"
        assert descriptor.active is True
        assert descriptor.owner == "team@group.calendar.google.com"

    def test_default_color_and_owner_override(self) -> None:
        descriptor = map_calendar(
            {"id": "primary", "summary": "Me", "summaryOverride": "My calendar"},
            selected=[],
        )

        assert descriptor.color == DEFAULT_CALENDAR_COLOR
        assert descriptor.owner == "My calendar"

    def test_missing_id_yields_nothing(self) -> None:
        assert map_calendar({"summary": "Nameless"}, selected=[]) is None
        assert map_calendar({"id": "", "summary": "Blank"}, selected=[]) is None

    def test_selection_controls_active(self) -> None:
        selected = ["google:primary"]

        assert map_calendar({"id": "primary", "summary": "Me"}, selected).active is True
        assert map_calendar({"id": "team", "summary": "Team"}, selected).active is False
