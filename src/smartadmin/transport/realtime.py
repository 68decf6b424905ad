"""
Realtime feed — Ably server-sent events over an httpx stream.

Connection: GET {realtime_url}/sse?v=1.2&channels=a,b with basic auth.
connect() resolves once the stream is open. Each ``data:`` line is one
enveloped message and is dispatched to every registered handler.
"""

import asyncio
import json
import logging
from typing import Callable, Optional

import httpx
from pydantic import ValidationError

from smartadmin.errors import SmartAdminError
from smartadmin.models.message import RawMessage

DEFAULT_REALTIME_URL = "https://realtime.ably.io"
SSE_PATH = "/sse"
PROTOCOL_VERSION = "1.2"

logger = logging.getLogger("smartadmin.transport.realtime")


class RealtimeManager:
    def __init__(
        self,
        key: Optional[str] = None,
        base_url: str = DEFAULT_REALTIME_URL,
        ready_timeout: float = 15.0,
        reconnect_delay: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._key = key
        self._ready_timeout = ready_timeout
        self._reconnect_delay = reconnect_delay
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._task: Optional[asyncio.Task] = None
        self._channels: set[str] = set()
        self._connected = False
        self._last_error: Optional[str] = None
        self._event_handlers: list[Callable[[RawMessage], None]] = []

    @property
    def connected(self) -> bool:
        return self._connected and self._task is not None and not self._task.done()

    @property
    def channels(self) -> set[str]:
        return set(self._channels)

    def add_event_handler(self, handler: Callable[[RawMessage], None]) -> Callable[[], None]:
        """Add an event handler. Returns a cleanup function. Supports multiple concurrent handlers."""
        self._event_handlers.append(handler)
        def remove() -> None:
            try:
                self._event_handlers.remove(handler)
            except ValueError:
                pass
        return remove

    def on_event(self, handler: Optional[Callable[[RawMessage], None]]) -> None:
        """Set a single event handler (replaces all). Use add_event_handler() for several sessions."""
        self._event_handlers.clear()
        if handler is not None:
            self._event_handlers.append(handler)

    async def attach(self, *channels: str) -> None:
        """Make sure the stream covers ``channels``; reopens it if the set grew."""
        missing = set(channels) - self._channels
        if not missing and self.connected:
            return
        self._channels |= missing
        await self.connect()

    async def connect(self) -> None:
        """(Re)open the stream for the current channel set and wait until it is live."""
        if not self._channels:
            raise SmartAdminError("connection_error", "No channels attached")
        await self._stop()
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                auth=self._auth(self._key),
                timeout=httpx.Timeout(10.0, read=None),
                transport=self._transport,
            )
        ready = asyncio.Event()
        self._last_error = None
        self._task = asyncio.get_running_loop().create_task(self._run(sorted(self._channels), ready))
        try:
            await asyncio.wait_for(ready.wait(), timeout=self._ready_timeout)
        except asyncio.TimeoutError:
            await self._stop()
            detail = f": {self._last_error}" if self._last_error else ""
            raise TimeoutError(f"Timed out opening realtime stream after {self._ready_timeout}s{detail}")

    @staticmethod
    def _auth(key: Optional[str]) -> Optional[httpx.BasicAuth]:
        if not key:
            return None
        name, _, secret = key.partition(":")
        return httpx.BasicAuth(name, secret)

    async def _run(self, channels: list[str], ready: asyncio.Event) -> None:
        params = {"v": PROTOCOL_VERSION, "channels": ",".join(channels)}
        while True:
            try:
                async with self._client.stream("GET", SSE_PATH, params=params) as resp:  # type: ignore[union-attr]
                    if resp.status_code >= 400:
                        await resp.aread()
                        raise SmartAdminError("http_error", f"HTTP {resp.status_code}: {resp.text[:200]}")
                    self._connected = True
                    ready.set()
                    logger.info(f"Realtime stream open for {', '.join(channels)}")
                    async for line in resp.aiter_lines():
                        self._dispatch_line(line)
                logger.warning("Realtime stream ended, reconnecting")
            except asyncio.CancelledError:
                raise
            except (httpx.HTTPError, SmartAdminError) as e:
                self._last_error = str(e)
                logger.warning(f"Realtime stream error: {e}")
            finally:
                self._connected = False
            await asyncio.sleep(self._reconnect_delay)

    def _dispatch_line(self, line: str) -> None:
        if not line.startswith("data:"):
            return
        try:
            envelope = json.loads(line[5:].strip())
        except ValueError:
            logger.debug(f"Skipping non-JSON event line: {line[:80]}")
            return
        if not isinstance(envelope, dict):
            return
        try:
            raw = RawMessage.model_validate(envelope)
        except ValidationError as e:
            logger.debug(f"Skipping invalid realtime message: {e}")
            return
        for handler in list(self._event_handlers):
            try:
                handler(raw)
            except Exception:
                logger.exception(f"Realtime handler failed for message {raw.id or '?'} on {raw.channel}")

    async def _stop(self) -> None:
        self._connected = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def disconnect(self) -> None:
        await self._stop()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
