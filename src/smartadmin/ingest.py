"""
Mirror producers other than live sessions: webhook batches and history sync.

Both normalize with the same field mapping as the reconciler and write
through the same MirrorWriter.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Iterator, Optional

from pydantic import BaseModel, ValidationError

from smartadmin.errors import MalformedRecordError
from smartadmin.mirror import MirrorWriter
from smartadmin.models.channels import ChannelNames
from smartadmin.models.message import RawMessage, epoch_ms, utcnow
from smartadmin.normalize import normalize

logger = logging.getLogger("smartadmin.ingest")

SYNC_LOOKBACK = timedelta(hours=24)
SYNC_PAGE_LIMIT = 1000


class IngestResult(BaseModel):
    processed: int = 0
    total: int = 0


class SyncResult(BaseModel):
    synced: int = 0
    processed: int = 0
    since: datetime
    channels: list[str] = []


def _iter_webhook_messages(body: Any) -> Iterator[dict[str, Any]]:
    """Flatten the accepted webhook shapes into message dicts that carry ``channel``.

    - enveloped batch: {"items": [{"data": {"channelId": ..., "messages": [...]}}]}
    - list of messages, each with ``channel``
    - a single message
    """
    if isinstance(body, dict) and isinstance(body.get("items"), list):
        for item in body["items"]:
            data = item.get("data") if isinstance(item, dict) else None
            if not isinstance(data, dict):
                continue
            channel = data.get("channelId") or data.get("channel")
            for message in data.get("messages") or []:
                if isinstance(message, dict):
                    yield {**message, "channel": message.get("channel") or channel}
        return
    for message in body if isinstance(body, list) else [body]:
        if isinstance(message, dict):
            yield message


class WebhookIngestor:
    def __init__(self, writer: MirrorWriter, channels: Optional[ChannelNames] = None):
        self._writer = writer
        self.channels = channels or ChannelNames()

    async def ingest(self, body: Any) -> IngestResult:
        result = IngestResult()
        for item in _iter_webhook_messages(body):
            result.total += 1
            if await self._process(item):
                result.processed += 1
        logger.info(f"Webhook: processed {result.processed}/{result.total} messages")
        return result

    async def _process(self, item: dict[str, Any]) -> bool:
        try:
            raw = RawMessage.model_validate(item)
        except ValidationError as e:
            logger.debug(f"Webhook: skipping invalid message: {e}")
            return False
        kind = self.channels.classify(raw.channel)
        if kind is None:
            logger.debug(f"Webhook: skipping message on channel {raw.channel!r}")
            return False
        try:
            message = normalize(raw, kind, origin="webhook")
        except MalformedRecordError as e:
            logger.debug(f"Webhook: skipping malformed message: {e}")
            return False
        try:
            inserted = await self._writer.write(message)
        except Exception as e:
            logger.error(f"Webhook: error writing {message.id}: {e}")
            return False
        if not inserted:
            logger.debug(f"Webhook: message already exists: {message.id}")
        return inserted


FetchHistory = Callable[..., Awaitable[list[RawMessage]]]
LastTimestamp = Callable[[], Awaitable[Optional[datetime]]]


class HistorySync:
    """Copy vendor history into the mirror, starting where the mirror left off.

    Targeted control channels cannot be enumerated from here, so only the
    status and broadcast channels are synced.
    """

    def __init__(
        self,
        fetch_history: FetchHistory,
        writer: MirrorWriter,
        last_timestamp: Optional[LastTimestamp] = None,
        channels: Optional[ChannelNames] = None,
        limit: int = SYNC_PAGE_LIMIT,
    ):
        self._fetch_history = fetch_history
        self._writer = writer
        self._last_timestamp = last_timestamp
        self.channels = channels or ChannelNames()
        self._limit = limit

    async def _resolve_since(self, since: Optional[datetime]) -> datetime:
        if since is not None:
            return since
        if self._last_timestamp is not None:
            last = await self._last_timestamp()
            if last is not None:
                return last
        return utcnow() - SYNC_LOOKBACK

    async def run(self, since: Optional[datetime] = None) -> SyncResult:
        since = await self._resolve_since(since)
        names = [self.channels.status, self.channels.broadcast]
        result = SyncResult(since=since, channels=names)
        logger.info(f"Syncing messages since {since.isoformat()}")

        for channel in names:
            kind = self.channels.classify(channel)
            try:
                raws = await self._fetch_history(
                    channel, limit=self._limit, direction="forwards", start=epoch_ms(since),
                )
            except Exception as e:
                logger.error(f"Sync: error fetching {channel}: {e}")
                continue
            logger.info(f"Sync: found {len(raws)} messages in {channel}")
            for raw in raws:
                result.processed += 1
                try:
                    message = normalize(raw, kind, origin="sync")
                except MalformedRecordError:
                    continue
                try:
                    if await self._writer.write(message):
                        result.synced += 1
                except Exception as e:
                    logger.error(f"Sync: error writing {message.id}: {e}")

        logger.info(f"Sync completed: {result.synced}/{result.processed} messages")
        return result
