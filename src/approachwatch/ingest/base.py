"""Traffic source protocol and shared record-coercion helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from math import isfinite
from typing import Any, Optional, Protocol, Sequence

from approachwatch.core.models import AircraftSnapshot

__all__ = ["TrafficSource", "coerce_float", "epoch_to_utc"]


class TrafficSource(Protocol):
    """Anything that yields one normalized batch per call.

    ``fetch`` raises :class:`~approachwatch.core.errors.FetchError` once its
    own retry budget is exhausted; an empty sequence means empty airspace.
    """

    name: str

    async def fetch(self) -> Sequence[AircraftSnapshot]:
        ...

    async def close(self) -> None:
        ...


def coerce_float(v: Any) -> Optional[float]:
    # bool is an int subclass; upstream flags must not become 0.0/1.0
    if v is None or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if isfinite(f) else None


def epoch_to_utc(seconds: float) -> datetime:
    return datetime.fromtimestamp(float(seconds), tz=timezone.utc)
