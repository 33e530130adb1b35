"""Poll orchestrator: fetch, classify, fold into the lifecycle store, notify.

Example usage:

    ts = RealTimeSource()
    store = AlertLifecycleStore(ts)
    hub = NotificationHub()
    poller = PollOrchestrator(
        source, ApproachClassifier(cfg.airport), store, hub, ts, cfg.poll
    )
    await poller.start()
    ...
    await poller.stop()

Cycles never overlap: the next one is scheduled only after the current one
has finished every store mutation and notification. Any failure inside a
cycle is logged and contained so that the loop keeps running.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Optional

from approachwatch.config import PollConfig
from approachwatch.core.classifier import ApproachClassifier
from approachwatch.core.errors import FetchError
from approachwatch.core.lifecycle import AlertLifecycleStore
from approachwatch.core.models import AlertEvent, flight_key
from approachwatch.core.notify import NotificationSink
from approachwatch.core.time import TimeSource
from approachwatch.ingest.base import TrafficSource

__all__ = ["CycleReport", "PollOrchestrator"]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CycleReport:
    """Outcome of one poll cycle."""

    fetched: int = 0
    processed: int = 0
    dropped: int = 0
    events: list[AlertEvent] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PollOrchestrator:
    def __init__(
        self,
        source: TrafficSource,
        classifier: ApproachClassifier,
        store: AlertLifecycleStore,
        sink: NotificationSink,
        ts: TimeSource,
        config: PollConfig | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._source = source
        self._classifier = classifier
        self._store = store
        self._sink = sink
        self._ts = ts
        self._cfg = config or PollConfig()
        self._rng = rng or random.Random()

        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.cycles = 0
        self.last_report: CycleReport | None = None

    @property
    def running(self) -> bool:
        return self._running

    def next_delay(self) -> float:
        """Interval plus bounded jitter, never below the configured floor."""
        jitter = self._rng.uniform(-self._cfg.jitter_s, self._cfg.jitter_s)
        return max(self._cfg.floor_s, self._cfg.interval_s + jitter)

    async def run_cycle(self) -> CycleReport:
        """Run exactly one fetch/classify/observe/notify pass."""
        report = CycleReport()
        try:
            batch = await self._source.fetch()
        except asyncio.CancelledError:
            raise
        except FetchError as e:
            logger.warning("Poll skipped: %s", e)
            report.error = str(e)
            return report
        except Exception as e:  # noqa: BLE001
            logger.exception("Poll fetch crashed (source=%s)", self._source.name)
            report.error = f"{e.__class__.__name__}: {e}"
            return report

        report.fetched = len(batch)
        for snap in batch:
            try:
                key = flight_key(snap)
                verdict = self._classifier.classify(snap)
                event = await self._store.observe(
                    key, snap, verdict.approaching, verdict.landed
                )
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                # One bad snapshot never aborts the rest of the batch
                logger.exception("Failed to process snapshot %r", snap)
                report.dropped += 1
                continue

            report.processed += 1
            if event is not None:
                report.events.append(event)
                self._dispatch(event)

        logger.debug(
            "Cycle %d: fetched=%d processed=%d dropped=%d events=%d state=%s",
            self.cycles + 1,
            report.fetched,
            report.processed,
            report.dropped,
            len(report.events),
            self._store.counts(),
        )
        return report

    def _dispatch(self, event: AlertEvent) -> None:
        try:
            self._sink.notify(event)
        except Exception:  # noqa: BLE001
            logger.exception("Notification sink failed for %s %s", event.kind.value, event.key)

    async def run(self) -> None:
        """Poll until cancelled or :meth:`stop` is called."""
        self._running = True
        logger.info(
            "Polling %s every %.1fs (+/-%.1fs, floor %.1fs)",
            self._source.name,
            self._cfg.interval_s,
            self._cfg.jitter_s,
            self._cfg.floor_s,
        )
        try:
            while self._running:
                try:
                    self.last_report = await self.run_cycle()
                except asyncio.CancelledError:
                    raise
                except Exception:  # noqa: BLE001
                    logger.exception("Unexpected error in poll cycle")
                self.cycles += 1
                if not self._running:
                    break
                await self._ts.sleep(self.next_delay())
        finally:
            self._running = False

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self.run(), name="poll_orchestrator")

    async def stop(self) -> None:
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
