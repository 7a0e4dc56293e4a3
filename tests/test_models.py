"""Tests for the message and room models."""
import json
from datetime import datetime, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from plutochat.api.exceptions import ParseError
from plutochat.api.models import (
    Message,
    MessageType,
    Room,
    Session,
    format_timestamp,
    parse_timestamp,
)


class TestTimestamps:
    """Tests for timestamp parsing and formatting."""

    def test_parse_zulu_suffix(self):
        parsed = parse_timestamp("2024-05-01T12:00:00.250Z")
        assert parsed == datetime(2024, 5, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)

    def test_parse_naive_is_utc(self):
        parsed = parse_timestamp("2024-05-01T12:00:00")
        assert parsed.tzinfo is not None
        assert parsed.utcoffset().total_seconds() == 0

    def test_parse_offset_is_kept(self):
        parsed = parse_timestamp("2024-05-01T14:00:00+02:00")
        assert parsed == datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "yesterday", "2024-13-45T99:00:00"])
    def test_parse_invalid_returns_none(self, value):
        assert parse_timestamp(value) is None

    def test_format_uses_millis_and_z(self):
        moment = datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
        assert format_timestamp(moment) == "2024-05-01T12:00:00.123Z"

    @given(st.datetimes(min_value=datetime(2000, 1, 1), max_value=datetime(2100, 1, 1),
                        timezones=st.just(timezone.utc)))
    def test_format_then_parse_truncates_to_millis(self, moment):
        """Property test: formatted timestamps parse back to the same millisecond."""
        parsed = parse_timestamp(format_timestamp(moment))
        assert parsed == moment.replace(microsecond=(moment.microsecond // 1000) * 1000)


class TestMessage:
    """Tests for Message parsing and serialization."""

    def test_from_camel_case_payload(self):
        message = Message.from_payload({
            "id": 42,
            "sender": "bob",
            "content": "📷 Photo",
            "mediaUrl": "/uploads/a.png",
            "type": "image",
            "timestamp": "2024-05-01T12:00:00Z",
            "fileName": "a.png",
            "fileSize": 1024,
            "mimeType": "image/png",
        })

        assert message.id == "42"
        assert message.type == MessageType.IMAGE
        assert message.is_attachment
        assert message.media_url == "/uploads/a.png"
        assert message.file_size == 1024

    def test_missing_type_defaults_to_text(self):
        message = Message.from_payload('{"sender": "bob", "content": "yo", "type": null}')
        assert message.type == MessageType.TEXT
        assert not message.is_attachment

    def test_jvm_array_timestamp(self):
        message = Message.from_payload({
            "sender": "bob",
            "content": "yo",
            "timestamp": [2024, 5, 1, 12, 30, 15, 500000000],
        })
        assert message.sent_at == datetime(2024, 5, 1, 12, 30, 15, 500000, tzinfo=timezone.utc)

    def test_unparseable_timestamp_is_kept_raw(self):
        message = Message.from_payload({"sender": "bob", "content": "yo", "timestamp": "soon"})
        assert message.timestamp == "soon"
        assert message.sent_at is None

    def test_image_without_media_url_is_rejected(self):
        with pytest.raises(ParseError):
            Message.from_payload({"sender": "bob", "type": "IMAGE"})

    @pytest.mark.parametrize("payload", [
        "not json",
        "[1, 2]",
        '{"content": "no sender"}',
        '{"sender": "", "content": "empty sender"}',
        b"{",
    ])
    def test_invalid_payloads_raise_parse_error(self, payload):
        with pytest.raises(ParseError):
            Message.from_payload(payload)

    def test_to_payload_is_camel_case_without_nulls(self):
        message = Message(sender="alice", content="hi", timestamp="2024-05-01T12:00:00.000Z")
        payload = message.to_payload()

        assert payload == {
            "sender": "alice",
            "content": "hi",
            "type": "TEXT",
            "timestamp": "2024-05-01T12:00:00.000Z",
        }
        assert json.loads(json.dumps(payload)) == payload

    def test_unknown_fields_are_ignored(self):
        message = Message.from_payload({"sender": "bob", "content": "x", "reactions": []})
        assert message.content == "x"

    def test_messages_are_immutable(self):
        message = Message(sender="alice", content="hi")
        with pytest.raises(Exception):
            message.content = "changed"


class TestRoom:
    """Tests for the room snapshot model."""

    def test_null_collections_become_empty(self):
        room = Room.from_payload({"roomId": "lobby", "members": None, "messages": None})
        assert room.members == []
        assert room.messages == []

    def test_messages_keep_server_order(self):
        room = Room.from_payload({
            "roomId": "lobby",
            "members": ["alice", "bob"],
            "messages": [
                {"sender": "bob", "content": "second", "timestamp": "2024-05-01T12:00:02Z"},
                {"sender": "alice", "content": "first", "timestamp": "2024-05-01T12:00:01Z"},
            ],
        })
        assert [m.content for m in room.messages] == ["second", "first"]

    def test_room_ids_match_case_insensitively(self):
        room = Room(room_id="Lobby")
        assert room.matches("lobby")
        assert room.matches("LOBBY")
        assert not room.matches("lobby2")

    def test_missing_room_id_raises(self):
        with pytest.raises(ParseError):
            Room.from_payload({"members": []})


class TestSession:
    """Tests for Session."""

    def test_auth_headers_with_token(self):
        assert Session("alice", token="abc").auth_headers() == {"Authorization": "Bearer abc"}

    def test_auth_headers_without_token(self):
        assert Session("alice").auth_headers() == {}
