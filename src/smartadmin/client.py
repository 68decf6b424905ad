"""
AsyncSmartAdmin / SmartAdmin — process-scoped clients.

One instance owns the REST client, the realtime stream, the mirror and the
reconciler built on top of them. The realtime stream and the mirror are
created on first use; close() tears everything down.
"""

import asyncio
from datetime import datetime
from typing import Any, Optional

from smartadmin.config import Settings
from smartadmin.errors import ConnectionError, InvalidInputError
from smartadmin.ingest import HistorySync, IngestResult, SyncResult, WebhookIngestor
from smartadmin.mirror import MirrorStore, MirrorWriter
from smartadmin.models.channels import BROADCAST_CLIENT_ID, ChannelNames, ControlEvent, SourceKind
from smartadmin.models.message import Message, PresenceMember, epoch_ms, format_timestamp, utcnow
from smartadmin.normalize import synthesize_id
from smartadmin.reconciler import OnMerge, TimelineReconciler, TimelineSession
from smartadmin.transport.http import HttpClient
from smartadmin.transport.realtime import RealtimeManager


class AsyncSmartAdmin:
    """Async SmartAdmin client (primary)."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        http: Optional[HttpClient] = None,
        mirror: Optional[MirrorStore] = None,
        realtime: Optional[RealtimeManager] = None,
    ):
        self.settings = settings or Settings()
        self.channels = ChannelNames(self.settings.channel_prefix)
        self.http = http or HttpClient(base_url=self.settings.rest_url, key=self.settings.ably_key)
        self.mirror = mirror or MirrorStore(self.settings.database_path)
        self.writer = MirrorWriter(self.mirror)
        self._realtime = realtime
        self._reconciler: Optional[TimelineReconciler] = None
        self._sessions: list[TimelineSession] = []

    @property
    def realtime(self) -> RealtimeManager:
        if self._realtime is None:
            self._realtime = RealtimeManager(
                key=self.settings.ably_key,
                base_url=self.settings.realtime_url,
                ready_timeout=self.settings.ready_timeout_s,
            )
        return self._realtime

    @property
    def reconciler(self) -> TimelineReconciler:
        if self._reconciler is None:
            self._reconciler = TimelineReconciler(
                self.http.channel_history,
                self.mirror.fetch_range,
                channels=self.channels,
                feed=self.realtime,
                writer=self.writer,
                history_timeout_s=self.settings.history_timeout_s,
                mirror_limit=self.settings.mirror_limit,
                history_limits={
                    SourceKind.STATUS: self.settings.status_history_limit,
                    SourceKind.CONTROL: self.settings.control_history_limit,
                    SourceKind.BROADCAST: self.settings.broadcast_history_limit,
                },
            )
        return self._reconciler

    @property
    def connected(self) -> bool:
        return self._realtime is not None and self._realtime.connected

    async def timeline(self, client_id: str) -> list[Message]:
        """Reconciled timeline for one client (live history + mirror backfill)."""
        return await self.reconciler.reconcile(client_id)

    async def follow(self, client_id: str, on_merge: Optional[OnMerge] = None) -> TimelineSession:
        """Open a live session for a client. Close the returned session to unsubscribe."""
        if not self.settings.ably_key and self._realtime is None:
            raise ConnectionError("ably_key required for live updates. Set SMARTADMIN_ABLY_KEY.")
        if not isinstance(client_id, str) or not client_id.strip():
            raise InvalidInputError("client_id must be a non-empty string")
        await self.realtime.attach(*self.channels.for_client(client_id))
        session = self.reconciler.subscribe_live(client_id, on_merge)
        self._sessions.append(session)
        return session

    async def send_command(
        self,
        client_id: Optional[str],
        command: str,
        payload: Optional[Any] = None,
        broadcast: bool = False,
    ) -> Message:
        """Publish a control command and record it in the mirror."""
        if not command:
            raise InvalidInputError("command must be a non-empty string")
        if not broadcast and not client_id:
            raise InvalidInputError("client_id required unless broadcasting")
        now = utcnow()
        channel = self.channels.broadcast if broadcast else self.channels.control(client_id)  # type: ignore[arg-type]
        data = {
            "command": command,
            "payload": payload,
            "targetClientId": client_id,
            "timestamp": format_timestamp(now),
        }
        # The vendor echo carries the same id, so live and mirror copies dedupe.
        message_id = synthesize_id("sent", channel, epoch_ms(now))
        await self.http.publish(channel, ControlEvent.COMMAND, data, message_id=message_id)
        message = Message(
            id=message_id,
            client_id=client_id or BROADCAST_CLIENT_ID,
            direction="sent",
            command=command,
            payload=payload if payload is not None else {},
            timestamp=now,
            channel=channel,
        )
        self.writer.submit(message)
        return message

    async def clients(self) -> list[PresenceMember]:
        """Clients currently present on the presence channel."""
        return await self.http.presence(self.channels.presence)

    async def sync(self, since: Optional[datetime] = None) -> SyncResult:
        return await HistorySync(
            self.http.channel_history,
            self.writer,
            last_timestamp=self.mirror.last_timestamp,
            channels=self.channels,
        ).run(since)

    async def ingest(self, body: Any) -> IngestResult:
        return await WebhookIngestor(self.writer, self.channels).ingest(body)

    async def close(self) -> None:
        for session in self._sessions:
            session.close()
        self._sessions.clear()
        await self.writer.drain()
        if self._realtime is not None:
            await self._realtime.disconnect()
        await self.mirror.close()
        await self.http.close()

    async def __aenter__(self) -> "AsyncSmartAdmin":
        return self

    async def __aexit__(self, *_exc: Any) -> None:
        await self.close()


class SmartAdmin:
    """Sync wrapper around AsyncSmartAdmin. Runs the event loop internally."""

    def __init__(self, settings: Optional[Settings] = None, **kwargs: Any):
        self._loop = asyncio.new_event_loop()
        self._async = AsyncSmartAdmin(settings, **kwargs)

    def _run(self, coro: Any) -> Any:
        return self._loop.run_until_complete(coro)

    @property
    def mirror(self) -> MirrorStore:
        return self._async.mirror

    def timeline(self, client_id: str) -> list[Message]:
        return self._run(self._async.timeline(client_id))

    def send_command(self, client_id: Optional[str], command: str, payload: Optional[Any] = None,
                     broadcast: bool = False) -> Message:
        return self._run(self._async.send_command(client_id, command, payload, broadcast))

    def clients(self) -> list[PresenceMember]:
        return self._run(self._async.clients())

    def sync(self, since: Optional[datetime] = None) -> SyncResult:
        return self._run(self._async.sync(since))

    def ingest(self, body: Any) -> IngestResult:
        return self._run(self._async.ingest(body))

    def close(self) -> None:
        try:
            self._run(self._async.close())
        finally:
            self._loop.close()
