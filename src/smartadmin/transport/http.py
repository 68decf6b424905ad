"""
REST HTTP client for the realtime vendor (Ably REST API).

Channel history, presence and publish. Auth is HTTP basic with the API key
split at the first ``:`` into key name and secret.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from smartadmin.errors import SmartAdminError
from smartadmin.models.message import PresenceMember, RawMessage

DEFAULT_REST_URL = "https://rest.ably.io"
USER_AGENT = "smartadmin/0.1.0"

logger = logging.getLogger("smartadmin.transport.http")


def _channel_path(channel: str, suffix: str) -> str:
    return f"/channels/{quote(channel, safe='')}/{suffix}"


class HttpClient:
    def __init__(
        self,
        base_url: str = DEFAULT_REST_URL,
        key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._key = key
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            auth=self._auth(key),
            timeout=timeout,
            transport=transport,
        )

    @staticmethod
    def _auth(key: Optional[str]) -> Optional[httpx.BasicAuth]:
        if not key:
            return None
        name, _, secret = key.partition(":")
        return httpx.BasicAuth(name, secret)

    @staticmethod
    def _check(resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        message = resp.text[:200]
        try:
            body = resp.json()
            if isinstance(body, dict) and isinstance(body.get("error"), dict):
                message = body["error"].get("message") or message
        except ValueError:
            pass
        raise SmartAdminError("http_error", f"HTTP {resp.status_code}: {message}", {"status": resp.status_code})

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        resp = await self._client.get(path, params=params)
        self._check(resp)
        return resp.json()

    async def post(self, path: str, body: Optional[Any] = None) -> Any:
        resp = await self._client.post(path, json=body)
        self._check(resp)
        return resp.json() if resp.content else None

    async def channel_history(
        self,
        channel: str,
        limit: int = 100,
        direction: str = "backwards",
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> list[RawMessage]:
        """Bounded channel history. ``start``/``end`` are epoch milliseconds."""
        params: dict[str, Any] = {"limit": limit, "direction": direction}
        if start is not None:
            params["start"] = start
        if end is not None:
            params["end"] = end
        items = await self.get(_channel_path(channel, "messages"), params=params)
        messages = []
        for item in items or []:
            try:
                messages.append(RawMessage.model_validate({**item, "channel": channel}))
            except (TypeError, ValidationError) as e:
                logger.debug(f"Skipping invalid history item on {channel}: {e}")
        return messages

    async def presence(self, channel: str) -> list[PresenceMember]:
        items = await self.get(_channel_path(channel, "presence"))
        members = []
        for item in items or []:
            if not isinstance(item, dict) or not item.get("clientId"):
                continue
            try:
                members.append(PresenceMember.model_validate(item))
            except ValidationError as e:
                logger.debug(f"Skipping invalid presence member on {channel}: {e}")
        return members

    async def publish(self, channel: str, name: str, data: Any, message_id: Optional[str] = None) -> None:
        """Publish one message. A client-supplied ``message_id`` makes the publish idempotent."""
        body: dict[str, Any] = {"name": name, "data": data}
        if message_id:
            body["id"] = message_id
        await self.post(_channel_path(channel, "messages"), body)

    async def close(self) -> None:
        await self._client.aclose()
