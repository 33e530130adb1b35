"""Primary/secondary source selection driven by sustained empty batches.

A run of consecutive empty batches from the primary is read as an upstream
outage or coverage gap rather than empty airspace. After ``empty_trigger``
such batches the secondary is used for ``cooldown_s`` seconds, then the
primary is tried again with a fresh count.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from approachwatch.config import FallbackConfig
from approachwatch.core.errors import FetchError
from approachwatch.core.models import AircraftSnapshot
from approachwatch.core.time import TimeSource
from approachwatch.ingest.base import TrafficSource

__all__ = ["FallbackTrafficSource"]

logger = logging.getLogger(__name__)


class FallbackTrafficSource:
    def __init__(
        self,
        primary: TrafficSource,
        secondary: Optional[TrafficSource],
        *,
        ts: TimeSource,
        config: FallbackConfig | None = None,
    ) -> None:
        self._primary = primary
        self._secondary = secondary
        self._ts = ts
        self._cfg = config or FallbackConfig()
        self._empty_run = 0
        self._fallback_until: Optional[float] = None
        self.name = f"{primary.name}+{secondary.name if secondary else 'none'}"

    @property
    def on_fallback(self) -> bool:
        return self._fallback_until is not None and self._ts.monotonic() < self._fallback_until

    @property
    def empty_run(self) -> int:
        return self._empty_run

    async def fetch(self) -> Sequence[AircraftSnapshot]:
        if self._fallback_until is not None:
            if self._ts.monotonic() < self._fallback_until:
                return await self._fetch_secondary()
            logger.info("Fallback cooldown over; reverting to %s", self._primary.name)
            self._fallback_until = None
            self._empty_run = 0

        batch = await self._primary.fetch()
        if batch:
            self._empty_run = 0
            return batch

        self._empty_run += 1
        if self._empty_run >= self._cfg.empty_trigger:
            logger.warning(
                "%s returned %d consecutive empty batches; using %s for %.0fs",
                self._primary.name,
                self._empty_run,
                self._secondary.name if self._secondary else "no fallback",
                self._cfg.cooldown_s,
            )
            self._fallback_until = self._ts.monotonic() + self._cfg.cooldown_s
            self._empty_run = 0
        return batch

    async def _fetch_secondary(self) -> Sequence[AircraftSnapshot]:
        if self._secondary is None:
            return []
        try:
            return await self._secondary.fetch()
        except FetchError as e:
            logger.warning("Fallback source %s unavailable: %s", self._secondary.name, e)
            return []

    async def close(self) -> None:
        await self._primary.close()
        if self._secondary is not None:
            await self._secondary.close()
