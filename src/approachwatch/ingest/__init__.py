"""Traffic sources and the factory that wires them from configuration."""

from __future__ import annotations

import logging

from approachwatch.config import AppConfig
from approachwatch.core.time import TimeSource

from .adsbx import AdsbxSource
from .base import TrafficSource
from .fallback import FallbackTrafficSource
from .opensky import OpenSkySource, credentials_from_config
from .simulator import SimulatedTrafficSource

__all__ = [
    "AdsbxSource",
    "FallbackTrafficSource",
    "OpenSkySource",
    "SimulatedTrafficSource",
    "TrafficSource",
    "build_source",
]

logger = logging.getLogger(__name__)


def build_source(cfg: AppConfig, *, ts: TimeSource, seed: int | None = None) -> TrafficSource:
    """Simulation when enabled, else OpenSky with ADSBx as fallback."""
    if cfg.simulate:
        logger.info("Simulation mode (seed=%s)", seed)
        return SimulatedTrafficSource(cfg.airport, seed=seed, ts=ts)

    primary = OpenSkySource(
        cfg.airport,
        config=cfg.opensky,
        retry=cfg.retry,
        credentials=credentials_from_config(cfg.opensky, ts=ts),
        ts=ts,
    )
    secondary = None
    if cfg.adsbx.enabled:
        secondary = AdsbxSource(cfg.airport, config=cfg.adsbx, retry=cfg.retry, ts=ts)
    else:
        logger.info("No RAPIDAPI_KEY; empty-feed fallback disabled")
    return FallbackTrafficSource(primary, secondary, ts=ts, config=cfg.fallback)
