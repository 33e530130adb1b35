from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

SnapshotSrc = Literal["OPENSKY", "ADSBX", "SIM"]


class AircraftSnapshot(BaseModel):
    """
    One point-in-time observation of an aircraft, normalized for the domain.
    Missing kinematic fields are None; unknown is never coerced to 0.
    """

    ts: datetime = Field(..., description="Observation timestamp (UTC)")
    hex: Optional[str] = Field(None, description="Transponder code, uppercase")
    callsign: Optional[str] = Field(None, description="Flight callsign, if known")

    lat: float
    lon: float

    alt_ft: Optional[float] = Field(None, description="Altitude in feet")
    gs_kt: Optional[float] = Field(None, description="Ground speed in knots")
    track_deg: Optional[float] = Field(
        None, description="Course over ground in degrees true"
    )
    vs_fpm: Optional[float] = Field(
        None, description="Vertical rate in ft/min, positive when climbing"
    )

    src: SnapshotSrc = "OPENSKY"

    @field_validator("hex")
    @classmethod
    def _normalize_hex(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().upper()
        return v or None

    @field_validator("callsign")
    @classmethod
    def _normalize_callsign(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    def __repr__(self) -> str:  # pragma: no cover
        ident = self.hex or self.callsign or "?"
        return f"AircraftSnapshot({ident} @ {self.ts.isoformat(timespec='seconds')})"


def flight_key(snapshot: AircraftSnapshot) -> str:
    """Derive the FlightKey: hex, else callsign, else a random fallback.

    The fallback is a degraded identity: the same anonymous aircraft gets a
    new key every cycle and two fallbacks may in principle collide. Both are
    accepted limitations.
    """
    if snapshot.hex:
        return snapshot.hex
    if snapshot.callsign:
        return snapshot.callsign
    key = f"unk-{secrets.token_hex(5)}"
    logger.debug("Anonymous aircraft at %.4f,%.4f -> %s", snapshot.lat, snapshot.lon, key)
    return key


class EventKind(str, Enum):
    APPROACH_ALERT = "APPROACH_ALERT"
    LANDED = "LANDED"
    ACK_OK = "ACK_OK"


@dataclass(frozen=True, slots=True)
class AlertEvent:
    """Notification emitted by the lifecycle store.

    ``recipient`` is set for events addressed to a single observer (ACK_OK);
    None means broadcast.
    """

    kind: EventKind
    key: str
    callsign: Optional[str] = None
    hex: Optional[str] = None
    recipient: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        if self.kind is EventKind.ACK_OK:
            return {"type": self.kind.value, "key": self.key}
        return {
            "type": self.kind.value,
            "key": self.key,
            "callsign": self.callsign,
            "hex": self.hex,
        }


# Alert records: one class per lifecycle state ------------------------------


@dataclass(frozen=True, slots=True)
class Alerting:
    snapshot: AircraftSnapshot
    first_seen_at: datetime


@dataclass(frozen=True, slots=True)
class Acknowledged:
    snapshot_at_ack: AircraftSnapshot
    acked_at: datetime


@dataclass(frozen=True, slots=True)
class Landed:
    snapshot_at_landing: AircraftSnapshot
    landed_at: datetime


AlertRecord = Union[Alerting, Acknowledged, Landed]


def flight_summary(key: str, snapshot: AircraftSnapshot) -> Dict[str, Any]:
    """Observer-facing summary ``{key, callsign, hex}``."""
    return {"key": key, "callsign": snapshot.callsign, "hex": snapshot.hex}


__all__ = [
    "SnapshotSrc",
    "AircraftSnapshot",
    "flight_key",
    "EventKind",
    "AlertEvent",
    "Alerting",
    "Acknowledged",
    "Landed",
    "AlertRecord",
    "flight_summary",
]
