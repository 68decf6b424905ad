"""
Channel naming and event constants for the SmartAdmin fleet.
"""

from enum import Enum
from typing import Optional

DEFAULT_PREFIX = "smartadmin"
BROADCAST_CLIENT_ID = "broadcast"


class SourceKind(str, Enum):
    STATUS = "status"
    CONTROL = "control"
    BROADCAST = "broadcast"
    MIRROR = "mirror"


class StatusEvent:
    """Event names published by clients on the status channel."""
    STATUS_UPDATE = "status-update"


class StatusType:
    """Values of the embedded ``type`` field of a status record."""
    HEARTBEAT = "heartbeat"
    PONG = "pong"
    STATUS = "status"
    ACTION_RESULT = "action-result"
    ERROR = "error"
    DISCONNECTING = "disconnecting"
    MESSAGE_LOG = "message-log"


class ControlEvent:
    COMMAND = "command"


class Command:
    PING = "ping"
    GET_STATUS = "get-status"
    EXECUTE_ACTION = "execute-action"
    RESTART = "restart"
    SHUTDOWN = "shutdown"


class ChannelNames:
    def __init__(self, prefix: str = DEFAULT_PREFIX):
        self.prefix = prefix

    @property
    def status(self) -> str:
        return f"{self.prefix}-status"

    @property
    def presence(self) -> str:
        return f"{self.prefix}-presence"

    @property
    def control_prefix(self) -> str:
        return f"{self.prefix}-control-"

    @property
    def broadcast(self) -> str:
        return f"{self.control_prefix}broadcast"

    def control(self, client_id: str) -> str:
        return f"{self.control_prefix}{client_id}"

    def for_client(self, client_id: str) -> list[str]:
        """Channels carrying messages relevant to one client."""
        return [self.status, self.control(client_id), self.broadcast]

    def classify(self, channel: Optional[str]) -> Optional[SourceKind]:
        if not channel or not channel.startswith(f"{self.prefix}-"):
            return None
        if channel == self.status:
            return SourceKind.STATUS
        if channel == self.broadcast:
            return SourceKind.BROADCAST
        if channel.startswith(self.control_prefix) and len(channel) > len(self.control_prefix):
            return SourceKind.CONTROL
        return None
