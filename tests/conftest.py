from __future__ import annotations

import json
from datetime import datetime, timezone
from math import cos, radians
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest
from aiohttp import web

from approachwatch.config import AirportConfig
from approachwatch.core.geo import KM_PER_DEG_LAT
from approachwatch.core.models import AircraftSnapshot

# Paris-CDG reference point used throughout the suite
APT_LAT = 49.0097
APT_LON = 2.5479


def west_of_airport(km: float) -> tuple[float, float]:
    """Position *km* due west of the airport (inbound track ~090)."""
    return APT_LAT, APT_LON - km / (KM_PER_DEG_LAT * cos(radians(APT_LAT)))


@pytest.fixture
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def load_fixture(fixtures_dir: Path) -> Callable[[str], Any]:
    def _load(name: str) -> Any:
        with (fixtures_dir / name).open("r", encoding="utf-8") as f:
            return json.load(f)

    return _load


@pytest.fixture
def make_airport() -> Callable[..., AirportConfig]:
    def _make(**overrides: Any) -> AirportConfig:
        base: dict[str, Any] = dict(
            icao="LFPG",
            name="Paris Charles-de-Gaulle",
            lat=APT_LAT,
            lon=APT_LON,
            radius_km=148.16,
            alt_max_ft=15000.0,
            eta_max_min=40.0,
            gate="runway",
            bearing_max_deg=35.0,
            runway_headings=[84.0, 264.0],
            runway_tol_deg=25.0,
            runway_gate_radius_km=30.0,
        )
        base.update(overrides)
        return AirportConfig(**base)

    return _make


@pytest.fixture
def airport(make_airport: Callable[..., AirportConfig]) -> AirportConfig:
    return make_airport()


@pytest.fixture
def make_snapshot() -> Callable[..., AircraftSnapshot]:
    """Approaching aircraft 40 km west at 6000 ft unless overridden."""

    def _make(**overrides: Any) -> AircraftSnapshot:
        lat, lon = west_of_airport(overrides.pop("km_west", 40.0))
        base: dict[str, Any] = dict(
            ts=datetime(2024, 5, 3, 19, 40, tzinfo=timezone.utc),
            hex="3C6444",
            callsign="DLH4AB",
            lat=lat,
            lon=lon,
            alt_ft=6000.0,
            gs_kt=150.0,
            track_deg=90.0,
            vs_fpm=-700.0,
            src="SIM",
        )
        base.update(overrides)
        return AircraftSnapshot(**base)

    return _make


async def start_app(app: web.Application) -> tuple[web.AppRunner, str]:
    """Serve *app* on an ephemeral localhost port; returns (runner, base_url)."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    server = site._server
    assert server is not None
    sockets = getattr(server, "sockets", None)
    assert sockets, "Server sockets not available"
    port = sockets[0].getsockname()[1]
    return runner, f"http://127.0.0.1:{port}"


class ScriptedSource:
    """TrafficSource returning queued batches (or raising queued errors).

    The last entry repeats once the script is exhausted.
    """

    def __init__(self, name: str, script: list[Any]) -> None:
        self.name = name
        self.script = list(script)
        self.calls = 0
        self.closed = False

    async def fetch(self) -> Sequence[AircraftSnapshot]:
        self.calls += 1
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True
