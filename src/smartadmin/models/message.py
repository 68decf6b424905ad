"""
Message models — the unit the reconciler operates on, and the vendor's raw shape.
"""

import json
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Direction = Literal["sent", "received"]

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept a datetime, epoch milliseconds or an ISO-8601 string.

    Returns an aware UTC datetime, or None if unparseable or outside the
    representable range once shifted to UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        try:
            return _as_utc(value)
        except OverflowError:
            return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return _as_utc(datetime.fromisoformat(text))
        except (OverflowError, ValueError):
            return None
    return None


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC text; sorts lexicographically in time order."""
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


class Message(BaseModel):
    """A normalized message. Immutable once observed."""

    model_config = {"frozen": True}

    id: str
    client_id: str
    direction: Direction
    command: str
    payload: Any = Field(default_factory=dict)
    timestamp: datetime
    channel: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        try:
            return _as_utc(value)
        except OverflowError as e:
            raise ValueError(f"timestamp out of range: {e}")


class MessageLogEntry(Message):
    """A message as stored in the mirror, with its row id and ingestion time."""

    row_id: int
    created_at: Optional[datetime] = None


class RawMessage(BaseModel):
    """A vendor message as delivered by history, the live feed or a webhook."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    id: Optional[str] = None
    name: Optional[str] = None
    channel: Optional[str] = None
    data: Any = None
    encoding: Optional[str] = None
    timestamp: Optional[int] = None
    client_id: Optional[str] = Field(default=None, alias="clientId")

    def decoded_data(self) -> Any:
        """Data with a ``json`` encoding step undone (vendor REST returns it as a string)."""
        data = self.data
        if isinstance(data, str) and self.encoding and "json" in self.encoding.split("/"):
            try:
                return json.loads(data)
            except ValueError:
                return data
        return data


class PresenceMember(BaseModel):
    """A client currently registered on the presence channel."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    client_id: str = Field(alias="clientId")
    action: Optional[Any] = None
    data: Any = None
    timestamp: Optional[int] = None


class MirrorStats(BaseModel):
    total_count: int = 0
    unique_clients: list[str] = []
    unique_commands: list[str] = []
    recent_count: int = 0
    first_message: Optional[datetime] = None
    last_message: Optional[datetime] = None
