"""Per-aircraft alert lifecycle.

State machine per FlightKey::

    (new) --approaching--> ALERTING --acknowledge--> ACKNOWLEDGED
      |                       |                          |
      +-------landed----------+----------landed----------+--> LANDED (terminal)

A key is held in at most one of the three states. Entering LANDED evicts the
key from the others and closes the approach episode for the session: later
approaching observations of the same key are ignored.

All operations are coroutines serialized by one ``asyncio.Lock``. The poll
orchestrator is the only caller of :meth:`AlertLifecycleStore.observe`; the
observer gateway is the only caller of
:meth:`AlertLifecycleStore.acknowledge`. The store never performs I/O while
holding the lock; emitted events are returned to the caller for dispatch.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from approachwatch.core.errors import UnknownKeyError
from approachwatch.core.models import (
    Acknowledged,
    AircraftSnapshot,
    AlertEvent,
    Alerting,
    AlertRecord,
    EventKind,
    Landed,
    flight_summary,
)
from approachwatch.core.time import TimeSource, utc_now

__all__ = ["AlertLifecycleStore"]

logger = logging.getLogger(__name__)


class AlertLifecycleStore:
    """Owns every AlertRecord, keyed by FlightKey."""

    def __init__(self, ts: TimeSource) -> None:
        self._ts = ts
        self._lock = asyncio.Lock()
        self._alerting: Dict[str, Alerting] = {}
        self._acked: Dict[str, Acknowledged] = {}
        self._landed: Dict[str, Landed] = {}

    # Writers -----------------------------------------------------------------

    async def observe(
        self,
        key: str,
        snapshot: AircraftSnapshot,
        approaching: bool,
        landed: bool,
    ) -> Optional[AlertEvent]:
        """Fold one classified snapshot into the store.

        Returns the event to broadcast, or None when nothing transitioned.
        """
        async with self._lock:
            if landed:
                return self._enter_landed(key, snapshot)
            if not approaching or key in self._acked or key in self._landed:
                return None

            prior = self._alerting.get(key)
            if prior is not None:
                # Same episode: refresh kinematics, keep the alert's age
                self._alerting[key] = Alerting(snapshot, prior.first_seen_at)
                return None

            self._alerting[key] = Alerting(snapshot, utc_now(self._ts))
            logger.info(
                "Approach alert %s (callsign=%s alt=%s ft)",
                key,
                snapshot.callsign,
                None if snapshot.alt_ft is None else round(snapshot.alt_ft),
            )
            return AlertEvent(
                EventKind.APPROACH_ALERT, key, snapshot.callsign, snapshot.hex
            )

    async def acknowledge(self, key: str, requester: Optional[str] = None) -> AlertEvent:
        """Move *key* from ALERTING to ACKNOWLEDGED.

        Returns the ACK_OK event addressed to *requester*.

        Raises:
            UnknownKeyError: *key* is not currently alerting (never seen,
                already acknowledged, or landed).
        """
        async with self._lock:
            record = self._alerting.pop(key, None)
            if record is None:
                raise UnknownKeyError(key)
            self._acked[key] = Acknowledged(record.snapshot, utc_now(self._ts))
            logger.info("Alert %s acknowledged by %s", key, requester or "?")
            return AlertEvent(EventKind.ACK_OK, key, recipient=requester)

    def _enter_landed(self, key: str, snapshot: AircraftSnapshot) -> Optional[AlertEvent]:
        if key in self._landed:
            return None
        self._alerting.pop(key, None)
        self._acked.pop(key, None)
        self._landed[key] = Landed(snapshot, utc_now(self._ts))
        logger.info("Landed %s (callsign=%s)", key, snapshot.callsign)
        return AlertEvent(EventKind.LANDED, key, snapshot.callsign, snapshot.hex)

    # Readers -----------------------------------------------------------------

    async def current_alerts(self) -> List[Dict[str, Any]]:
        async with self._lock:
            return [flight_summary(k, r.snapshot) for k, r in self._alerting.items()]

    async def current_acknowledged(self) -> List[Dict[str, Any]]:
        async with self._lock:
            return [flight_summary(k, r.snapshot_at_ack) for k, r in self._acked.items()]

    async def state_snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        """Alerts and acknowledged flights read under a single lock hold."""
        async with self._lock:
            return {
                "alerts": [
                    flight_summary(k, r.snapshot) for k, r in self._alerting.items()
                ],
                "acked": [
                    flight_summary(k, r.snapshot_at_ack) for k, r in self._acked.items()
                ],
            }

    async def landed_keys(self) -> List[str]:
        async with self._lock:
            return list(self._landed)

    async def record_of(self, key: str) -> Optional[AlertRecord]:
        """Current record for *key*, whichever state holds it."""
        async with self._lock:
            return (
                self._alerting.get(key) or self._acked.get(key) or self._landed.get(key)
            )

    async def memberships(self, key: str) -> List[str]:
        """Names of the states holding *key* (at most one entry)."""
        async with self._lock:
            return [
                name
                for name, table in (
                    ("alerting", self._alerting),
                    ("acknowledged", self._acked),
                    ("landed", self._landed),
                )
                if key in table
            ]

    def counts(self) -> Dict[str, int]:
        # Unlocked read; may straddle a transition
        return {
            "alerting": len(self._alerting),
            "acknowledged": len(self._acked),
            "landed": len(self._landed),
        }
