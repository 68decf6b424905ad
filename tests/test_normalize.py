"""Raw record normalization per source kind."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from smartadmin.errors import MalformedRecordError
from smartadmin.models.channels import SourceKind
from smartadmin.models.message import Message, RawMessage, parse_timestamp, format_timestamp
from smartadmin.normalize import belongs_to, normalize, normalize_batch, synthesize_id


def raw(data, channel="smartadmin-status", id="m1", timestamp=1_700_000_000_000, **kw) -> RawMessage:
    return RawMessage(id=id, channel=channel, data=data, timestamp=timestamp, **kw)


class TestStatus:
    def test_maps_fields(self):
        m = normalize(raw({"clientId": "pc-1", "type": "heartbeat", "data": {"cpu": 3}}), SourceKind.STATUS)
        assert m.id == "m1"
        assert m.client_id == "pc-1"
        assert m.direction == "received"
        assert m.command == "heartbeat"
        assert m.payload == {"cpu": 3}
        assert m.channel == "smartadmin-status"

    def test_fallback_client_field_and_defaults(self):
        m = normalize(raw({"client_id": "pc-2"}), SourceKind.STATUS)
        assert m.client_id == "pc-2"
        assert m.command == "status-update"
        assert m.payload == {}

    def test_missing_client_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            normalize(raw({"type": "heartbeat"}), SourceKind.STATUS)

    def test_non_object_data_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            normalize(raw("hello"), SourceKind.STATUS)

    def test_json_encoded_data_is_decoded(self):
        m = normalize(
            raw(json.dumps({"clientId": "pc-1", "type": "pong"}), encoding="json"),
            SourceKind.STATUS,
        )
        assert m.command == "pong"


class TestControl:
    def test_maps_fields(self):
        m = normalize(
            raw({"targetClientId": "pc-1", "command": "ping", "payload": {"n": 1}}, channel="smartadmin-control-pc-1"),
            SourceKind.CONTROL,
        )
        assert m.client_id == "pc-1"
        assert m.direction == "sent"
        assert m.command == "ping"
        assert m.payload == {"n": 1}

    def test_missing_target_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            normalize(raw({"command": "ping"}), SourceKind.CONTROL)

    def test_missing_command_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            normalize(raw({"targetClientId": "pc-1"}), SourceKind.CONTROL)


class TestBroadcast:
    def test_untargeted_uses_sentinel(self):
        m = normalize(raw({"command": "restart"}, channel="smartadmin-control-broadcast"), SourceKind.BROADCAST)
        assert m.client_id == "broadcast"
        assert m.direction == "sent"

    def test_targeted_keeps_target(self):
        m = normalize(raw({"command": "restart", "target_client_id": "pc-3"}), SourceKind.BROADCAST)
        assert m.client_id == "pc-3"


class TestTimestamp:
    def test_embedded_iso_wins(self):
        m = normalize(raw({"clientId": "a", "timestamp": "2024-01-02T03:04:05.000Z"}), SourceKind.STATUS)
        assert m.timestamp == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    def test_embedded_epoch_ms(self):
        m = normalize(raw({"clientId": "a", "timestamp": 1_000}), SourceKind.STATUS)
        assert m.timestamp == datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)

    def test_vendor_timestamp_fallback(self):
        m = normalize(raw({"clientId": "a"}, timestamp=2_000), SourceKind.STATUS)
        assert m.timestamp == datetime(1970, 1, 1, 0, 0, 2, tzinfo=timezone.utc)

    def test_now_fallback(self):
        before = datetime.now(timezone.utc)
        m = normalize(raw({"clientId": "a"}, timestamp=None), SourceKind.STATUS)
        assert m.timestamp >= before

    def test_parse_and_format(self):
        assert parse_timestamp("not a date") is None
        assert parse_timestamp(True) is None
        naive = parse_timestamp("2024-01-01T00:00:00")
        assert naive.tzinfo is not None
        assert format_timestamp(naive) == "2024-01-01T00:00:00.000000Z"


def test_missing_id_is_synthesized():
    m = normalize(raw({"clientId": "a"}, id=None, timestamp=5_000), SourceKind.STATUS, origin="webhook")
    assert m.id.startswith("webhook-smartadmin-status-5000-")


def test_synthesized_ids_are_unique():
    assert synthesize_id("live", "c", 1) != synthesize_id("live", "c", 1)


def test_batch_drops_malformed():
    batch = [
        raw({"clientId": "a"}, id="ok-1"),
        raw("garbage", id="bad"),
        raw({"type": "x"}, id="bad-2"),
        raw({"clientId": "b"}, id="ok-2"),
    ]
    assert [m.id for m in normalize_batch(batch, SourceKind.STATUS)] == ["ok-1", "ok-2"]


def test_belongs_to():
    t = datetime(2024, 1, 1, tzinfo=timezone.utc)
    own = Message(id="1", client_id="a", direction="received", command="x", timestamp=t)
    other = Message(id="2", client_id="b", direction="received", command="x", timestamp=t)
    broadcast = Message(id="3", client_id="broadcast", direction="sent", command="x", timestamp=t)
    odd = Message(id="4", client_id="broadcast", direction="received", command="x", timestamp=t)
    assert belongs_to(own, "a")
    assert not belongs_to(other, "a")
    assert belongs_to(broadcast, "a")
    assert not belongs_to(odd, "a")


def test_out_of_range_timestamp_is_unparseable():
    assert parse_timestamp("0001-01-01T00:00:00+05:00") is None
    assert parse_timestamp("9999-12-31T23:59:59-05:00") is None
    assert parse_timestamp(10**20) is None


def test_out_of_range_embedded_timestamp_falls_back_to_vendor_time():
    m = normalize(raw({"clientId": "a", "timestamp": "0001-01-01T00:00:00+05:00"}, timestamp=3_000), SourceKind.STATUS)
    assert m.timestamp == datetime(1970, 1, 1, 0, 0, 3, tzinfo=timezone.utc)


def test_message_rejects_out_of_range_timestamp():
    from pydantic import ValidationError

    edge = datetime(1, 1, 1, tzinfo=timezone(timedelta(hours=5)))
    with pytest.raises(ValidationError):
        Message(id="x", client_id="a", direction="received", command="c", timestamp=edge)
