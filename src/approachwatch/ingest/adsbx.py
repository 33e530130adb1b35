"""
ADS-B Exchange v2 traffic source (RapidAPI).

Queries ``/v2/lat/{lat}/lon/{lon}/dist/{nm}/`` around the airport and maps
the readsb-style ``ac`` records into :class:`AircraftSnapshot` objects.
Used as the secondary feed when the primary source goes quiet.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Iterator, Optional, Sequence

import aiohttp

from approachwatch.config import AdsbxConfig, AirportConfig, RetryPolicy
from approachwatch.core.errors import FetchError, MalformedSnapshotError
from approachwatch.core.geo import km_to_nm
from approachwatch.core.models import AircraftSnapshot
from approachwatch.core.time import RealTimeSource, TimeSource
from approachwatch.ingest.base import coerce_float, epoch_to_utc
from approachwatch.ingest.retry import retry_async

__all__ = ["AdsbxSource", "snapshot_from_ac"]

logger = logging.getLogger(__name__)

# The API rejects larger query radii
MAX_DIST_NM = 250
# Records not refreshed for this long are stale positions
STALE_S = 60.0


def snapshot_from_ac(ac: Any, *, now_s: float) -> AircraftSnapshot:
    """Map one ``ac`` record to a snapshot.

    Raises:
        MalformedSnapshotError: Not a record, or no position.
    """
    if not isinstance(ac, dict):
        raise MalformedSnapshotError("not an aircraft record", ac)
    lat = coerce_float(ac.get("lat"))
    lon = coerce_float(ac.get("lon"))
    if lat is None or lon is None:
        raise MalformedSnapshotError("aircraft record without position", ac)

    alt_baro = ac.get("alt_baro")
    if alt_baro == "ground":
        alt_ft: Optional[float] = 0.0
    else:
        alt_ft = coerce_float(ac.get("alt_geom"))
        if alt_ft is None:
            alt_ft = coerce_float(alt_baro)

    vr = coerce_float(ac.get("baro_rate"))
    if vr is None:
        vr = coerce_float(ac.get("geom_rate"))

    seen = coerce_float(ac.get("seen_pos")) or coerce_float(ac.get("seen")) or 0.0
    hex_ = ac.get("hex")
    flight = ac.get("flight")

    return AircraftSnapshot(
        ts=epoch_to_utc(now_s - seen),
        # "~" prefixes non-ICAO (TIS-B) addresses
        hex=hex_.lstrip("~") if isinstance(hex_, str) else None,
        callsign=flight if isinstance(flight, str) else None,
        lat=lat,
        lon=lon,
        alt_ft=alt_ft,
        gs_kt=coerce_float(ac.get("gs")),
        track_deg=coerce_float(ac.get("track")),
        vs_fpm=vr,
        src="ADSBX",
    )


class AdsbxSource:
    """Fetches one batch of snapshots per :meth:`fetch` call."""

    def __init__(
        self,
        airport: AirportConfig,
        *,
        config: AdsbxConfig,
        retry: RetryPolicy | None = None,
        ts: TimeSource | None = None,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str | None = None,
        rng: random.Random | None = None,
    ) -> None:
        if not config.api_key:
            raise ValueError("AdsbxSource requires an API key")
        self._cfg = config
        self._retry = retry or RetryPolicy()
        self._ts = ts or RealTimeSource()
        self._rng = rng or random.Random()
        self._ext_session = session
        self._session: Optional[aiohttp.ClientSession] = session

        dist = min(MAX_DIST_NM, max(1, round(km_to_nm(airport.radius_km))))
        base = (base_url or f"https://{config.host}").rstrip("/")
        self._url = f"{base}/v2/lat/{airport.lat:.4f}/lon/{airport.lon:.4f}/dist/{dist}/"
        self.name = "adsbx"

    async def fetch(self) -> Sequence[AircraftSnapshot]:
        payload = await retry_async(
            self._get, self._retry, ts=self._ts, rng=self._rng, what="ADSBx aircraft"
        )
        return list(self._iter_snapshots(payload))

    async def close(self) -> None:
        if self._session is not None and self._ext_session is None:
            await self._session.close()
        self._session = None

    async def _get(self) -> Any:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._cfg.timeout_s)
            )
        headers = {
            "X-RapidAPI-Key": self._cfg.api_key or "",
            "X-RapidAPI-Host": self._cfg.host,
            "Accept": "application/json",
        }
        async with self._session.get(self._url, headers=headers) as resp:
            if resp.status in (401, 403):
                raise FetchError(f"ADSBx rejected API key (HTTP {resp.status})")
            resp.raise_for_status()
            return await resp.json(content_type=None)

    def _iter_snapshots(self, payload: Any) -> Iterator[AircraftSnapshot]:
        if not isinstance(payload, dict):
            return
        ac_list = payload.get("ac")
        if not isinstance(ac_list, list):
            return

        # v2 reports "now" in milliseconds
        now = coerce_float(payload.get("now"))
        if now is None:
            now_s = self._ts.wall_time()
        else:
            now_s = now / 1000.0 if now > 1e11 else now

        for ac in ac_list:
            if isinstance(ac, dict):
                seen = coerce_float(ac.get("seen")) or 0.0
                seen_pos = coerce_float(ac.get("seen_pos")) or 0.0
                if seen > STALE_S or seen_pos > STALE_S:
                    continue
            try:
                yield snapshot_from_ac(ac, now_s=now_s)
            except MalformedSnapshotError as e:
                logger.debug("Dropping ADSBx record: %s", e)
            except ValueError as e:
                logger.debug("Dropping ADSBx record: %s", e)
