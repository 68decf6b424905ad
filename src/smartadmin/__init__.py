"""
smartadmin — fleet monitoring over a realtime pub/sub service.

Reconciles live channel history, a durable SQLite mirror and the live feed
into one ordered, deduplicated message timeline per client.
"""

from smartadmin.client import SmartAdmin, AsyncSmartAdmin
from smartadmin.config import Settings, load_settings
from smartadmin.errors import (
    SmartAdminError,
    InvalidInputError,
    SourceUnavailableError,
    MalformedRecordError,
    ConnectionError,
)
from smartadmin.mirror import MirrorStore, MirrorWriter
from smartadmin.models.channels import ChannelNames, Command, SourceKind, StatusType
from smartadmin.models.message import Message, RawMessage
from smartadmin.reconciler import TimelineReconciler, TimelineSession

__version__ = "0.1.0"
__all__ = [
    "SmartAdmin",
    "AsyncSmartAdmin",
    "Settings",
    "load_settings",
    "SmartAdminError",
    "InvalidInputError",
    "SourceUnavailableError",
    "MalformedRecordError",
    "ConnectionError",
    "MirrorStore",
    "MirrorWriter",
    "ChannelNames",
    "Command",
    "SourceKind",
    "StatusType",
    "Message",
    "RawMessage",
    "TimelineReconciler",
    "TimelineSession",
]
