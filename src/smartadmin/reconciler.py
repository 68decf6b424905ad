"""
Timeline reconciler — one deduplicated, time-ordered message log per client.

Sources:
- live history: bounded recent history per channel, fetched in parallel, best effort
- mirror: durable copy, queried only for records older than the oldest live record
- live feed: ongoing pushes, merged into a loaded timeline one at a time

Partial unavailability never fails a reconciliation; only a bad client id does.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, NamedTuple, Optional, Protocol

from smartadmin.errors import InvalidInputError, SourceUnavailableError
from smartadmin.models.channels import ChannelNames, SourceKind
from smartadmin.models.message import Message, RawMessage, utcnow
from smartadmin.normalize import belongs_to, normalize_batch
from smartadmin.timeline import Timeline, merge

logger = logging.getLogger("smartadmin.reconciler")

LOADING = "loading"
READY = "ready"

DEFAULT_HISTORY_TIMEOUT_S = 5.0
DEFAULT_MIRROR_LIMIT = 100
DEFAULT_HISTORY_LIMITS = {
    SourceKind.STATUS: 100,
    SourceKind.CONTROL: 50,
    SourceKind.BROADCAST: 50,
}

FetchLiveHistory = Callable[[str, int], Awaitable[list[RawMessage]]]
FetchMirrorRange = Callable[[str, datetime, int], Awaitable[list[Message]]]
OnMerge = Callable[[list[Message]], None]


class LiveFeed(Protocol):
    def add_event_handler(self, handler: Callable[[RawMessage], None]) -> Callable[[], None]: ...


class MessageSink(Protocol):
    def submit(self, message: Message) -> None: ...


class ChannelSource(NamedTuple):
    channel: str
    kind: SourceKind
    limit: int


def _require_client_id(client_id: Any) -> str:
    if not isinstance(client_id, str) or not client_id.strip():
        raise InvalidInputError("client_id must be a non-empty string")
    return client_id


class TimelineReconciler:
    def __init__(
        self,
        fetch_live_history: Optional[FetchLiveHistory],
        fetch_mirror_range: Optional[FetchMirrorRange] = None,
        *,
        channels: Optional[ChannelNames] = None,
        feed: Optional[LiveFeed] = None,
        writer: Optional[MessageSink] = None,
        history_timeout_s: float = DEFAULT_HISTORY_TIMEOUT_S,
        mirror_timeout_s: Optional[float] = None,
        mirror_limit: int = DEFAULT_MIRROR_LIMIT,
        history_limits: Optional[dict[SourceKind, int]] = None,
    ):
        self._fetch_live_history = fetch_live_history
        self._fetch_mirror_range = fetch_mirror_range
        self.channels = channels or ChannelNames()
        self._feed = feed
        self._writer = writer
        self._history_timeout_s = history_timeout_s
        self._mirror_timeout_s = mirror_timeout_s
        self._mirror_limit = mirror_limit
        self._history_limits = {**DEFAULT_HISTORY_LIMITS, **(history_limits or {})}

    def sources_for(self, client_id: str) -> list[ChannelSource]:
        """Live-history sources for one client, in merge-priority order."""
        return [
            ChannelSource(self.channels.status, SourceKind.STATUS, self._history_limits[SourceKind.STATUS]),
            ChannelSource(self.channels.control(client_id), SourceKind.CONTROL, self._history_limits[SourceKind.CONTROL]),
            ChannelSource(self.channels.broadcast, SourceKind.BROADCAST, self._history_limits[SourceKind.BROADCAST]),
        ]

    async def reconcile(self, client_id: str) -> list[Message]:
        client_id = _require_client_id(client_id)
        sources = self.sources_for(client_id)
        batches = await asyncio.gather(*(self._fetch_source(source, client_id) for source in sources))
        live = [message for batch in batches for message in batch]

        oldest = min((m.timestamp for m in live), default=None) or utcnow()
        backfill = await self._backfill(client_id, oldest)

        messages = merge(live, backfill)
        logger.info(
            f"Reconciled {len(messages)} messages for {client_id} "
            f"({len(live)} live, {len(backfill)} mirror)"
        )
        return messages

    async def _fetch_source(self, source: ChannelSource, client_id: str) -> list[Message]:
        try:
            raws = await self._call_live_history(source)
        except SourceUnavailableError as e:
            logger.warning(f"Live history unavailable: {e}")
            return []
        messages = normalize_batch(raws, source.kind, origin="live")
        return [m for m in messages if belongs_to(m, client_id)]

    async def _call_live_history(self, source: ChannelSource) -> list[RawMessage]:
        if self._fetch_live_history is None:
            return []
        try:
            return list(await asyncio.wait_for(
                self._fetch_live_history(source.channel, source.limit),
                timeout=self._history_timeout_s,
            ))
        except asyncio.TimeoutError:
            raise SourceUnavailableError(
                source.channel, f"{source.channel} timed out after {self._history_timeout_s}s",
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise SourceUnavailableError(source.channel, f"{source.channel}: {e}")

    async def _backfill(self, client_id: str, before: datetime) -> list[Message]:
        if self._fetch_mirror_range is None:
            return []
        try:
            records = await asyncio.wait_for(
                self._fetch_mirror_range(client_id, before, self._mirror_limit),
                timeout=self._mirror_timeout_s,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Mirror unavailable for {client_id}: {e!r}")
            return []
        return [m for m in records if belongs_to(m, client_id)]

    def accept_live(self, raw: RawMessage, client_id: str) -> Optional[Message]:
        """Normalize and filter one live-feed record. None if malformed or not this client's."""
        kind = self.channels.classify(raw.channel)
        if kind is None:
            return None
        messages = normalize_batch([raw], kind, origin="live")
        if not messages or not belongs_to(messages[0], client_id):
            return None
        return messages[0]

    def record(self, message: Message) -> None:
        if self._writer is not None:
            self._writer.submit(message)

    def subscribe_live(self, client_id: str, on_merge: Optional[OnMerge] = None) -> "TimelineSession":
        """Start a live session: bulk reconcile in the background, merge pushes as they arrive.

        The returned session is the unsubscribe handle (call it or ``close()`` it).
        Must be called with a running event loop.
        """
        client_id = _require_client_id(client_id)
        session = TimelineSession(self, client_id, on_merge)
        session.start(self._feed)
        return session


class TimelineSession:
    """Per-client live view. ``loading`` until the bulk reconcile lands, then ``ready``."""

    def __init__(self, reconciler: TimelineReconciler, client_id: str, on_merge: Optional[OnMerge] = None):
        self.client_id = client_id
        self.state = LOADING
        self._reconciler = reconciler
        self._on_merge = on_merge
        self._timeline = Timeline()
        self._pending: list[Message] = []
        self._ready = asyncio.Event()
        self._remove_handler: Optional[Callable[[], None]] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def messages(self) -> list[Message]:
        return self._timeline.snapshot()

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self, feed: Optional[LiveFeed]) -> None:
        # Handler goes in before the load so nothing published meanwhile is missed.
        if feed is not None:
            self._remove_handler = feed.add_event_handler(self._on_raw)
        self._task = asyncio.get_running_loop().create_task(self._load())

    async def _load(self) -> None:
        try:
            messages = await self._reconciler.reconcile(self.client_id)
        except Exception:
            logger.exception(f"Bulk reconcile failed for {self.client_id}, starting from live messages only")
            messages = []
        if self._closed:
            return
        self._timeline = Timeline(messages)
        self.state = READY
        pending, self._pending = self._pending, []
        for message in pending:
            self._timeline.add(message)
        self._ready.set()
        self._notify()

    def _on_raw(self, raw: RawMessage) -> None:
        if self._closed:
            return
        message = self._reconciler.accept_live(raw, self.client_id)
        if message is None:
            return
        self._reconciler.record(message)
        if self.state == LOADING:
            self._pending.append(message)
            return
        if self._timeline.add(message):
            self._notify()

    def _notify(self) -> None:
        if self._on_merge is None:
            return
        try:
            self._on_merge(self.messages)
        except Exception:
            logger.exception(f"on_merge callback failed for {self.client_id}")

    async def wait_ready(self, timeout: Optional[float] = None) -> list[Message]:
        await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        return self.messages

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._remove_handler is not None:
            self._remove_handler()
            self._remove_handler = None
        if self._task is not None and not self._task.done():
            self._task.cancel()

    __call__ = close
