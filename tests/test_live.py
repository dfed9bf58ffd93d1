import asyncio

import pytest

import live
from live import Hub, conversation_channel, notifications_channel


@pytest.mark.anyio
async def test_publish_reaches_channel_subscribers_only():
    hub = Hub()
    a = hub.subscribe("conversation:1")
    b = hub.subscribe("conversation:2")
    hub.publish("conversation:1")
    assert await asyncio.wait_for(a.get(), 1) == "conversation:1"
    await asyncio.sleep(0)
    assert b.empty()


@pytest.mark.anyio
async def test_unsubscribe_drops_empty_channels():
    hub = Hub()
    queue = hub.subscribe("marketplace")
    assert hub.subscriber_count("marketplace") == 1
    hub.unsubscribe("marketplace", queue)
    assert hub.subscriber_count("marketplace") == 0
    hub.unsubscribe("marketplace", queue)
    hub.publish("marketplace")


def test_channel_names():
    assert conversation_channel("abc") == "conversation:abc"
    assert notifications_channel("u1") == "notifications:u1"


class FakeSocket:
    def __init__(self):
        self.incoming = asyncio.Queue()
        self.sent = []
        self.sent_event = asyncio.Event()

    async def receive(self):
        return await self.incoming.get()

    async def send_json(self, data):
        self.sent.append(data)
        self.sent_event.set()

    async def next_snapshot(self):
        await asyncio.wait_for(self.sent_event.wait(), 1)
        self.sent_event.clear()
        return self.sent[-1]


@pytest.mark.anyio
async def test_stream_ends_on_disconnect_without_any_publish(monkeypatch):
    monkeypatch.setattr(live, "hub", Hub())
    socket = FakeSocket()

    async def load():
        return [{"text": "hello"}]

    task = asyncio.ensure_future(live.stream_snapshots(socket, "conversation:1", load))
    assert await socket.next_snapshot() == {"type": "snapshot", "items": [{"text": "hello"}]}
    assert live.hub.subscriber_count("conversation:1") == 1

    socket.incoming.put_nowait({"type": "websocket.disconnect", "code": 1000})
    await asyncio.wait_for(task, 1)
    assert live.hub.subscriber_count("conversation:1") == 0


@pytest.mark.anyio
async def test_stream_ignores_client_messages(monkeypatch):
    monkeypatch.setattr(live, "hub", Hub())
    socket = FakeSocket()
    loads = []

    async def load():
        loads.append(1)
        return []

    task = asyncio.ensure_future(live.stream_snapshots(socket, "marketplace", load))
    await socket.next_snapshot()
    socket.incoming.put_nowait({"type": "websocket.receive", "text": "ping"})
    await asyncio.sleep(0.01)
    assert len(loads) == 1

    live.hub.publish("marketplace")
    await socket.next_snapshot()
    assert len(loads) == 2

    socket.incoming.put_nowait({"type": "websocket.disconnect", "code": 1000})
    await asyncio.wait_for(task, 1)
