"""Tests for the wire event envelope."""

from __future__ import annotations

import json

import pytest

from nox_stream.core.events import Event, EventKind, InvalidEventError


class TestFromWire:
    def test_parses_json_string(self) -> None:
        event = Event.from_wire(
            json.dumps({"type": "speaking", "ts": 1700000000000, "payload": {"text": "hi"}})
        )
        assert event.kind == "speaking"
        assert event.timestamp == 1700000000000
        assert event.payload == {"text": "hi"}
        assert event.is_recognized
        assert event.has_valid_timestamp

    def test_accepts_bytes_and_dicts(self) -> None:
        assert Event.from_wire(b'{"type": "idle", "ts": 1}').kind == "idle"
        assert Event.from_wire({"type": "task", "ts": 2, "payload": {}}).kind == "task"

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(InvalidEventError):
            Event.from_wire("{not json")

    def test_non_object_raises(self) -> None:
        with pytest.raises(InvalidEventError):
            Event.from_wire("[1, 2, 3]")

    def test_missing_fields_are_tolerated_but_invalid(self) -> None:
        event = Event.from_wire({"payload": "oops"})
        assert event.kind == ""
        assert event.payload == {}
        assert not event.is_recognized
        assert not event.has_valid_timestamp

    def test_unknown_kind_is_not_recognized(self) -> None:
        assert not Event.from_wire({"type": "dance", "ts": 1}).is_recognized

    @pytest.mark.parametrize("ts", ["123", None, True, [1]])
    def test_non_numeric_timestamp_is_invalid(self, ts: object) -> None:
        assert not Event.from_wire({"type": "idle", "ts": ts}).has_valid_timestamp


class TestCreate:
    def test_create_stamps_current_time(self) -> None:
        event = Event.create(EventKind.NARRATE, {"text": "hello"})
        assert event.kind == "narrate"
        assert isinstance(event.timestamp, int)
        assert event.timestamp > 1_600_000_000_000

    def test_payload_is_copied(self) -> None:
        payload = {"text": "a"}
        event = Event.create("speaking", payload)
        event.payload["audioUrl"] = "/audio/x.mp3"
        assert payload == {"text": "a"}

    def test_to_wire_envelope(self) -> None:
        event = Event(kind="mood", timestamp=5, payload={"mood": "excited"})
        assert event.to_wire() == {"type": "mood", "ts": 5, "payload": {"mood": "excited"}}
