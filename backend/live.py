"""In-process change feed for the WebSocket snapshot endpoints.

Writers call ``publish(channel)`` after touching a collection; every socket
subscribed to that channel re-queries and resends the whole list.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Tuple

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

MARKETPLACE = "marketplace"

def conversation_channel(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"

def notifications_channel(user_id: str) -> str:
    return f"notifications:{user_id}"


class Hub:
    def __init__(self):
        # channel -> {queue: loop the subscriber is waiting on}
        self._subscribers: Dict[str, Dict[asyncio.Queue, asyncio.AbstractEventLoop]] = {}

    def subscribe(self, channel: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(channel, {})[queue] = asyncio.get_running_loop()
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue):
        queues = self._subscribers.get(channel)
        if not queues:
            return
        queues.pop(queue, None)
        if not queues:
            del self._subscribers[channel]

    def publish(self, channel: str):
        subscribers: List[Tuple[asyncio.Queue, asyncio.AbstractEventLoop]] = list(self._subscribers.get(channel, {}).items())
        for queue, loop in subscribers:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(queue.put_nowait, channel)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))


hub = Hub()

def publish(channel: str):
    hub.publish(channel)


async def stream_snapshots(websocket: WebSocket, channel: str, load: Callable[[], Awaitable[List[dict]]]):
    """Send ``load()`` now and after every change on ``channel`` until the socket closes.

    The socket is read while waiting for changes: a disconnect ends the
    stream, any other client message is ignored.
    """
    queue = hub.subscribe(channel)
    receiving = asyncio.ensure_future(websocket.receive())
    changed = None
    try:
        while True:
            items = await load()
            await websocket.send_json({"type": "snapshot", "items": jsonable_encoder(items)})
            changed = asyncio.ensure_future(queue.get())
            while not changed.done():
                await asyncio.wait({receiving, changed}, return_when=asyncio.FIRST_COMPLETED)
                if receiving.done():
                    if receiving.result()["type"] == "websocket.disconnect":
                        logger.debug("Socket on %s disconnected", channel)
                        return
                    receiving = asyncio.ensure_future(websocket.receive())
            # collapse bursts of writes into one snapshot
            while not queue.empty():
                queue.get_nowait()
    except WebSocketDisconnect:
        logger.debug("Socket on %s disconnected", channel)
    finally:
        receiving.cancel()
        if changed is not None:
            changed.cancel()
        hub.unsubscribe(channel, queue)
