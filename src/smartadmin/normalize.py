"""
Raw vendor record -> Message.

Each source kind shapes its records differently. The field lists below are the
only place that knows which keys to look at, in priority order.
"""

import logging
import uuid
from typing import Any, Iterable, Optional

from smartadmin.errors import MalformedRecordError
from smartadmin.models.channels import BROADCAST_CLIENT_ID, SourceKind
from smartadmin.models.message import Message, RawMessage, epoch_ms, parse_timestamp, utcnow

logger = logging.getLogger("smartadmin.normalize")

DEFAULT_STATUS_COMMAND = "status-update"

CLIENT_FIELDS: dict[SourceKind, tuple[str, ...]] = {
    SourceKind.STATUS: ("clientId", "client_id"),
    SourceKind.CONTROL: ("targetClientId", "target_client_id"),
    SourceKind.BROADCAST: ("targetClientId", "target_client_id"),
}

COMMAND_FIELDS: dict[SourceKind, tuple[str, ...]] = {
    SourceKind.STATUS: ("type",),
    SourceKind.CONTROL: ("command",),
    SourceKind.BROADCAST: ("command",),
}

PAYLOAD_FIELDS: dict[SourceKind, tuple[str, ...]] = {
    SourceKind.STATUS: ("data",),
    SourceKind.CONTROL: ("payload",),
    SourceKind.BROADCAST: ("payload",),
}

DIRECTIONS = {
    SourceKind.STATUS: "received",
    SourceKind.CONTROL: "sent",
    SourceKind.BROADCAST: "sent",
}


def _first(record: dict[str, Any], fields: tuple[str, ...]) -> Any:
    for field in fields:
        value = record.get(field)
        if value not in (None, ""):
            return value
    return None


def synthesize_id(origin: str, channel: Optional[str], timestamp_ms: int) -> str:
    return f"{origin}-{channel or 'unknown'}-{timestamp_ms}-{uuid.uuid4().hex[:8]}"


def normalize(raw: RawMessage, kind: SourceKind, origin: str = "live") -> Message:
    """Normalize one raw record. Raises MalformedRecordError if required fields are missing."""
    if kind not in DIRECTIONS:
        raise MalformedRecordError(f"No field mapping for source kind {kind!r}")
    data = raw.decoded_data()
    if not isinstance(data, dict):
        raise MalformedRecordError("Record data is not an object", {"id": raw.id, "channel": raw.channel})

    client_id = _first(data, CLIENT_FIELDS[kind])
    if client_id is None and kind == SourceKind.BROADCAST:
        client_id = BROADCAST_CLIENT_ID
    if client_id is None:
        raise MalformedRecordError("Record has no client id", {"id": raw.id, "channel": raw.channel})

    command = _first(data, COMMAND_FIELDS[kind])
    if command is None and kind == SourceKind.STATUS:
        command = DEFAULT_STATUS_COMMAND
    if command is None:
        raise MalformedRecordError("Record has no command", {"id": raw.id, "channel": raw.channel})

    payload = _first(data, PAYLOAD_FIELDS[kind])
    timestamp = parse_timestamp(data.get("timestamp")) or parse_timestamp(raw.timestamp) or utcnow()

    try:
        return Message(
            id=raw.id or synthesize_id(origin, raw.channel, epoch_ms(timestamp)),
            client_id=str(client_id),
            direction=DIRECTIONS[kind],
            command=str(command),
            payload=payload if payload is not None else {},
            timestamp=timestamp,
            channel=raw.channel,
        )
    except (ValueError, OverflowError) as e:
        raise MalformedRecordError(f"Record does not form a valid message: {e}", {"id": raw.id, "channel": raw.channel})


def normalize_batch(raws: Iterable[RawMessage], kind: SourceKind, origin: str = "live") -> list[Message]:
    """Normalize a batch, silently dropping malformed records."""
    messages = []
    for raw in raws:
        try:
            messages.append(normalize(raw, kind, origin))
        except MalformedRecordError as e:
            logger.debug(f"Dropping record {raw.id or '?'} from {raw.channel}: {e}")
    return messages


def belongs_to(message: Message, client_id: str) -> bool:
    """Exact owner match, or a broadcast command (addressed to every client)."""
    if message.client_id == client_id:
        return True
    return message.client_id == BROADCAST_CLIENT_ID and message.direction == "sent"
