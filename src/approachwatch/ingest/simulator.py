"""Synthetic traffic for demos and tests without a live upstream.

Each fetch yields 1-3 aircraft placed uniformly in angle within the search
radius, tracking a runway heading, 120-200 kt, 1000-8000 ft and descending
200-900 fpm. A seeded generator makes the sequence reproducible.

Example:

    src = SimulatedTrafficSource(cfg.airport, seed=42, ts=SimTimeSource())
    batch = await src.fetch()
"""

from __future__ import annotations

import random
from math import cos, pi, radians, sin
from typing import Sequence

from approachwatch.config import AirportConfig
from approachwatch.core.geo import KM_PER_DEG_LAT
from approachwatch.core.models import AircraftSnapshot
from approachwatch.core.time import RealTimeSource, TimeSource, utc_now

__all__ = ["SimulatedTrafficSource"]


class SimulatedTrafficSource:
    def __init__(
        self,
        airport: AirportConfig,
        *,
        seed: int | None = None,
        ts: TimeSource | None = None,
        max_batch: int = 3,
    ) -> None:
        self._cfg = airport
        self._rng = random.Random(seed)
        self._ts = ts or RealTimeSource()
        self._max_batch = max(1, max_batch)
        # Bearing gate configs may carry no runways; fly straight at the field then
        self._headings = list(airport.runway_headings)
        self.name = "sim"

    async def fetch(self) -> Sequence[AircraftSnapshot]:
        rng = self._rng
        cfg = self._cfg
        now = utc_now(self._ts)
        out: list[AircraftSnapshot] = []
        for _ in range(rng.randint(1, self._max_batch)):
            r = rng.random() * cfg.radius_km
            theta = rng.random() * 2.0 * pi
            lat = cfg.lat + (r / KM_PER_DEG_LAT) * cos(theta)
            lon = cfg.lon + (r / (KM_PER_DEG_LAT * cos(radians(cfg.lat)))) * sin(theta)
            if self._headings:
                track = rng.choice(self._headings)
            else:
                # Inbound: opposite of the outward radial
                track = (theta * 180.0 / pi + 180.0) % 360.0
            out.append(
                AircraftSnapshot(
                    ts=now,
                    hex=f"{rng.getrandbits(24):06X}",
                    callsign=f"SIM{rng.randint(100, 999)}",
                    lat=lat,
                    lon=lon,
                    gs_kt=120.0 + rng.random() * 80.0,
                    alt_ft=8000.0 - rng.random() * 7000.0,
                    track_deg=track,
                    vs_fpm=-(200.0 + rng.random() * 700.0),
                    src="SIM",
                )
            )
        return out

    async def close(self) -> None:
        return None
