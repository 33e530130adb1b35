"""Process wiring: build the core from an :class:`AppConfig` and run it.

The service owns the clock, store, hub, gateway and poller. A logging
observer is attached so the notification stream is visible without any
transport; a WebSocket server would attach through :attr:`Service.gateway`
the same way.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from approachwatch.app.gateway import ObserverGateway
from approachwatch.app.poller import PollOrchestrator
from approachwatch.config import AppConfig
from approachwatch.core.classifier import ApproachClassifier
from approachwatch.core.lifecycle import AlertLifecycleStore
from approachwatch.core.notify import NotificationHub, unpack
from approachwatch.core.time import RealTimeSource, TimeSource
from approachwatch.ingest import TrafficSource, build_source

__all__ = ["Service"]

logger = logging.getLogger(__name__)


class Service:
    def __init__(
        self,
        cfg: AppConfig,
        *,
        ts: TimeSource | None = None,
        source: TrafficSource | None = None,
        seed: int | None = None,
    ) -> None:
        self.cfg = cfg
        self.ts = ts or RealTimeSource()
        self.source = source or build_source(cfg, ts=self.ts, seed=seed)
        self.store = AlertLifecycleStore(self.ts)
        self.hub = NotificationHub()
        self.gateway = ObserverGateway(self.store, self.hub)
        self.poller = PollOrchestrator(
            self.source,
            ApproachClassifier(cfg.airport),
            self.store,
            self.hub,
            self.ts,
            cfg.poll,
        )
        self._log_task: Optional[asyncio.Task[None]] = None

    async def _log_notifications(self) -> None:
        oid, sub = await self.gateway.connect("log")
        async for env in sub:
            msg = unpack(env.payload)
            if msg.get("type") == "INIT":
                continue
            logger.info(
                "[%s] %s callsign=%s hex=%s",
                msg.get("type"),
                msg.get("key"),
                msg.get("callsign"),
                msg.get("hex"),
            )

    async def run(self, cycles: int | None = None) -> None:
        """Run forever, or for exactly *cycles* poll cycles."""
        a = self.cfg.airport
        logger.info(
            "Watching %s (%s) radius=%.1fkm ceiling=%.0fft gate=%s simulate=%s",
            a.icao,
            a.name,
            a.radius_km,
            a.alt_max_ft,
            a.gate,
            self.cfg.simulate,
        )
        self._log_task = asyncio.create_task(self._log_notifications(), name="log_observer")
        # Let the log observer register before the first cycle
        await asyncio.sleep(0)
        try:
            if cycles is None:
                await self.poller.run()
            else:
                for i in range(cycles):
                    self.poller.last_report = await self.poller.run_cycle()
                    self.poller.cycles += 1
                    if i < cycles - 1:
                        await self.ts.sleep(self.poller.next_delay())
                # Let the log observer drain
                await asyncio.sleep(0)
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        await self.poller.stop()
        await self.hub.close()
        if self._log_task is not None:
            await asyncio.gather(self._log_task, return_exceptions=True)
            self._log_task = None
        await self.source.close()
