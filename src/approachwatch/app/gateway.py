"""Transport-agnostic observer endpoint.

A transport (WebSocket server, test harness, ...) calls :meth:`connect`
when an observer joins, forwards each inbound message to
:meth:`handle_message`, pumps the returned subscription to the client, and
calls :meth:`disconnect` when it leaves.

Inbound messages understood::

    {"type": "ACK", "key": "<FlightKey>"}

Outbound messages besides the broadcast alerts::

    {"type": "INIT", "alerts": [{key, callsign, hex}, ...], "acked": [...]}
    {"type": "ACK_OK", "key": "<FlightKey>"}      # to the requester only
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping

from approachwatch.core.errors import UnknownKeyError
from approachwatch.core.lifecycle import AlertLifecycleStore
from approachwatch.core.notify import NotificationHub, Subscription

__all__ = ["AckResult", "ObserverGateway"]

logger = logging.getLogger(__name__)


class AckResult(str, Enum):
    OK = "ok"
    UNKNOWN_KEY = "unknown_key"
    IGNORED = "ignored"


class ObserverGateway:
    def __init__(self, store: AlertLifecycleStore, hub: NotificationHub) -> None:
        self._store = store
        self._hub = hub

    async def connect(self, observer_id: str | None = None) -> tuple[str, Subscription]:
        """Register an observer and queue its INIT seed as the first message."""
        oid, sub = self._hub.connect(observer_id)
        state = await self._store.state_snapshot()
        self._hub.send(oid, {"type": "INIT", **state})
        logger.info(
            "Observer %s joined (%d alerts, %d acked)",
            oid,
            len(state["alerts"]),
            len(state["acked"]),
        )
        return oid, sub

    def disconnect(self, observer_id: str) -> None:
        self._hub.disconnect(observer_id)

    async def acknowledge(self, observer_id: str, key: str) -> AckResult:
        try:
            event = await self._store.acknowledge(key, requester=observer_id)
        except UnknownKeyError as e:
            logger.info("ACK from %s rejected: %s", observer_id, e)
            return AckResult.UNKNOWN_KEY
        self._hub.notify(event)
        return AckResult.OK

    async def handle_message(self, observer_id: str, message: Any) -> AckResult:
        """Dispatch one decoded inbound message; malformed input is ignored."""
        if not isinstance(message, Mapping):
            logger.debug("Ignoring non-object message from %s", observer_id)
            return AckResult.IGNORED
        key = message.get("key")
        if message.get("type") == "ACK" and isinstance(key, str) and key:
            return await self.acknowledge(observer_id, key)
        logger.debug("Ignoring message %r from %s", message.get("type"), observer_id)
        return AckResult.IGNORED
