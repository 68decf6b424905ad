"""REST and realtime transports against httpx.MockTransport."""

import asyncio
import base64
import json

import httpx
import pytest

from smartadmin.errors import SmartAdminError
from smartadmin.transport.http import HttpClient
from smartadmin.transport.realtime import RealtimeManager

KEY = "app.key:secret"


def basic(key: str) -> str:
    return "Basic " + base64.b64encode(key.encode()).decode()


class TestHttpClient:
    @pytest.mark.asyncio
    async def test_channel_history(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.raw_path.decode()
            seen["params"] = dict(request.url.params)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json=[
                {"id": "m1", "name": "status-update", "data": json.dumps({"clientId": "pc-1"}),
                 "encoding": "json", "timestamp": 1000, "clientId": "pc-1"},
            ])

        client = HttpClient(key=KEY, transport=httpx.MockTransport(handler))
        [raw] = await client.channel_history("smartadmin-control-pc/1", limit=50, start=5)
        await client.close()

        assert seen["path"].startswith("/channels/smartadmin-control-pc%2F1/messages")
        assert seen["params"] == {"limit": "50", "direction": "backwards", "start": "5"}
        assert seen["auth"] == basic(KEY)
        assert raw.channel == "smartadmin-control-pc/1"
        assert raw.client_id == "pc-1"
        assert raw.decoded_data() == {"clientId": "pc-1"}

    @pytest.mark.asyncio
    async def test_invalid_history_items_are_skipped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[
                {"id": "good", "data": {"clientId": "pc-1"}, "timestamp": 1000},
                {"id": 12345, "data": {"clientId": "pc-1"}, "timestamp": 2000},
                {"id": "bad-ts", "data": {}, "timestamp": "yesterday"},
                "not an object",
                {"id": "also-good", "data": {"clientId": "pc-1"}, "timestamp": 3000},
            ])

        client = HttpClient(transport=httpx.MockTransport(handler))
        raws = await client.channel_history("smartadmin-status")
        await client.close()
        assert [r.id for r in raws] == ["good", "also-good"]

    @pytest.mark.asyncio
    async def test_error_uses_vendor_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": "Invalid key", "code": 40101}})

        client = HttpClient(key=KEY, transport=httpx.MockTransport(handler))
        with pytest.raises(SmartAdminError) as exc:
            await client.channel_history("smartadmin-status")
        await client.close()
        assert exc.value.code == "http_error"
        assert exc.value.details == {"status": 401}
        assert "Invalid key" in str(exc.value)

    @pytest.mark.asyncio
    async def test_presence_skips_anonymous_members(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[
                {"clientId": "pc-1", "action": 1, "data": {"hostname": "box"}},
                {"action": 1},
            ])

        client = HttpClient(transport=httpx.MockTransport(handler))
        members = await client.presence("smartadmin-presence")
        await client.close()
        assert [m.client_id for m in members] == ["pc-1"]
        assert members[0].data == {"hostname": "box"}

    @pytest.mark.asyncio
    async def test_publish_sends_id(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201)

        client = HttpClient(key=KEY, transport=httpx.MockTransport(handler))
        await client.publish("smartadmin-control-pc-1", "command", {"command": "ping"}, message_id="sent-1")
        await client.publish("smartadmin-control-pc-1", "command", {"command": "ping"})
        await client.close()
        assert bodies[0] == {"name": "command", "data": {"command": "ping"}, "id": "sent-1"}
        assert "id" not in bodies[1]


def sse_body(*events) -> bytes:
    return "".join(f"data: {json.dumps(e)}\n\n" for e in events).encode()


class TestRealtimeManager:
    @pytest.mark.asyncio
    async def test_attach_streams_messages_to_handlers(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=sse_body(
                {"id": "m1", "channel": "smartadmin-status", "data": {"clientId": "pc-1"}, "timestamp": 1},
                "not-a-message",
            ) + b": keepalive\n\ndata: {broken\n\n")

        manager = RealtimeManager(key=KEY, transport=httpx.MockTransport(handler), reconnect_delay=60)
        received = []
        got = asyncio.Event()

        def on_raw(raw):
            received.append(raw)
            got.set()

        remove = manager.add_event_handler(on_raw)
        await manager.attach("smartadmin-status", "smartadmin-control-pc-1")
        await asyncio.wait_for(got.wait(), timeout=1)

        assert [r.id for r in received] == ["m1"]
        assert received[0].channel == "smartadmin-status"
        params = dict(requests[0].url.params)
        assert params == {"v": "1.2", "channels": "smartadmin-control-pc-1,smartadmin-status"}
        assert manager.channels == {"smartadmin-status", "smartadmin-control-pc-1"}

        remove()
        remove()
        await manager.disconnect()
        assert not manager.connected

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_the_stream(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=sse_body(
                {"id": "m1", "channel": "smartadmin-status", "data": {}},
                {"id": "m2", "channel": "smartadmin-status", "data": {}},
            ))

        manager = RealtimeManager(transport=httpx.MockTransport(handler), reconnect_delay=60)
        received = []
        done = asyncio.Event()

        def failing(raw):
            raise RuntimeError("handler bug")

        def recording(raw):
            received.append(raw.id)
            if raw.id == "m2":
                done.set()

        manager.add_event_handler(failing)
        manager.add_event_handler(recording)
        await manager.attach("smartadmin-status")
        await asyncio.wait_for(done.wait(), timeout=1)
        assert received == ["m1", "m2"]
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_ended_stream_waits_before_reconnecting(self):
        requests = []

        async def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=b"")

        manager = RealtimeManager(transport=httpx.MockTransport(handler), reconnect_delay=60)
        await manager.attach("a")
        await asyncio.sleep(0.05)
        await manager.disconnect()
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_rejected_stream_times_out_with_reason(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="Unauthorized")

        manager = RealtimeManager(
            key="bad:key", transport=httpx.MockTransport(handler), ready_timeout=0.2, reconnect_delay=60,
        )
        with pytest.raises(TimeoutError) as exc:
            await manager.attach("smartadmin-status")
        assert "401" in str(exc.value)
        assert not manager.connected
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_connect_without_channels(self):
        with pytest.raises(SmartAdminError):
            await RealtimeManager().connect()

    def test_on_event_replaces_handlers(self):
        manager = RealtimeManager()
        manager.add_event_handler(lambda raw: None)
        manager.add_event_handler(lambda raw: None)
        manager.on_event(lambda raw: None)
        assert len(manager._event_handlers) == 1
        manager.on_event(None)
        assert manager._event_handlers == []
