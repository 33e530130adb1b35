"""In-process fan-out of alert notifications to connected observers.

Usage example:

    hub = NotificationHub(maxsize=256)
    observer_id, sub = hub.connect()

    hub.notify(AlertEvent(EventKind.APPROACH_ALERT, "3C6444", "DLH4AB", "3C6444"))

    async for env in sub:
        msg = unpack(env.payload)   # {"type": "APPROACH_ALERT", ...}
        await websocket.send_json(msg)

Notes
-----
- Each observer has its own bounded asyncio.Queue.
- Backpressure policy is drop-oldest when an observer queue is full, so a
  slow observer loses its own backlog and never stalls the poller or others.
- ``notify`` never raises on behalf of an observer; delivery problems are
  logged and counted.
- Payloads are msgpack-encoded message dicts (see ``AlertEvent.to_message``).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from time import monotonic
from typing import Any, AsyncIterator, Dict, Protocol

import msgpack

from approachwatch.core.models import AlertEvent

__all__ = [
    "NotificationSink",
    "NotificationHub",
    "Subscription",
    "Envelope",
    "HubMetrics",
    "pack",
    "unpack",
]

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Fire-and-forget outbound channel used by the core."""

    def notify(self, event: AlertEvent) -> None:
        ...


@dataclass(slots=True)
class Envelope:
    ts: float
    payload: bytes


@dataclass(slots=True)
class HubMetrics:
    observers: int
    published: int
    deliveries: int
    drops: int


_Sentinel = object()


class NotificationHub:
    """Broadcast/unicast notification channel with drop-oldest backpressure."""

    def __init__(self, *, maxsize: int = 256) -> None:
        self._maxsize = max(1, int(maxsize))
        self._queues: Dict[str, asyncio.Queue[Envelope | object]] = {}
        self._ids = itertools.count(1)
        self._closed = False
        # metrics
        self._published = 0
        self._deliveries = 0
        self._drops = 0

    def connect(self, observer_id: str | None = None) -> tuple[str, "Subscription"]:
        """Register a new observer and return its id and subscription."""
        if self._closed:
            raise RuntimeError("NotificationHub is closed")
        oid = observer_id or f"obs-{next(self._ids)}"
        if oid in self._queues:
            raise ValueError(f"observer already connected: {oid}")
        queue: asyncio.Queue[Envelope | object] = asyncio.Queue(maxsize=self._maxsize)
        self._queues[oid] = queue
        logger.debug("Observer %s connected (%d total)", oid, len(self._queues))
        return oid, Subscription(self, oid, queue)

    def disconnect(self, observer_id: str) -> None:
        queue = self._queues.pop(observer_id, None)
        if queue is None:
            return
        _force_put(queue, _Sentinel)
        logger.debug("Observer %s disconnected", observer_id)

    def notify(self, event: AlertEvent) -> None:
        """Deliver *event* to its recipient, or to every observer."""
        if self._closed:
            return
        self.publish(event.to_message(), recipient=event.recipient)

    def send(self, observer_id: str, message: Dict[str, Any]) -> None:
        """Unicast an arbitrary message dict (e.g. the INIT seed)."""
        self.publish(message, recipient=observer_id)

    def publish(self, message: Dict[str, Any], *, recipient: str | None = None) -> None:
        env = Envelope(ts=monotonic(), payload=pack(message))
        self._published += 1
        if recipient is not None:
            queue = self._queues.get(recipient)
            if queue is None:
                logger.debug("Dropping %s for departed observer %s", message.get("type"), recipient)
                return
            targets = [(recipient, queue)]
        else:
            # Snapshot to tolerate disconnects during iteration
            targets = list(self._queues.items())

        for oid, q in targets:
            try:
                if q.full():
                    q.get_nowait()
                    self._drops += 1
                q.put_nowait(env)
                self._deliveries += 1
            except (asyncio.QueueEmpty, asyncio.QueueFull):
                # Rare race with a concurrent consumer; this observer misses one
                self._drops += 1
                logger.warning("Notification to %s dropped", oid)

    def observers(self) -> list[str]:
        return list(self._queues)

    def metrics(self) -> HubMetrics:
        return HubMetrics(
            observers=len(self._queues),
            published=self._published,
            deliveries=self._deliveries,
            drops=self._drops,
        )

    async def close(self) -> None:
        """Signal every subscription to finish."""
        if self._closed:
            return
        self._closed = True
        for oid in list(self._queues):
            self.disconnect(oid)


def _force_put(queue: asyncio.Queue[Envelope | object], item: object) -> None:
    # The terminating sentinel must get in even if the observer is backlogged
    if queue.full():
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
    queue.put_nowait(item)


class Subscription:
    """An observer's feed, yielding Envelopes as an async iterator."""

    def __init__(
        self,
        hub: NotificationHub,
        observer_id: str,
        queue: asyncio.Queue[Envelope | object],
    ) -> None:
        self._hub = hub
        self.observer_id = observer_id
        self._queue = queue
        self._closed = False

    def __aiter__(self) -> AsyncIterator[Envelope]:
        return self

    async def __anext__(self) -> Envelope:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _Sentinel:
            self._closed = True
            raise StopAsyncIteration
        assert isinstance(item, Envelope)
        return item

    def pending(self) -> list[Dict[str, Any]]:
        """Drain and decode whatever is queued without waiting."""
        out: list[Dict[str, Any]] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return out
            if item is _Sentinel:
                self._closed = True
                return out
            assert isinstance(item, Envelope)
            out.append(unpack(item.payload))

    async def close(self) -> None:
        if self._closed:
            return
        self._hub.disconnect(self.observer_id)


# Serialization helpers -----------------------------------------------------


def pack(obj: Any) -> bytes:
    """Serialize an object to bytes using msgpack."""
    return msgpack.packb(obj, use_bin_type=True)


def unpack(b: bytes) -> Any:
    """Deserialize bytes into an object using msgpack."""
    return msgpack.unpackb(b, raw=False, strict_map_key=False)
