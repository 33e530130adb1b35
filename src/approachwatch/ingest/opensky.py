"""
OpenSky Network ``states/all`` traffic source.

Queries the bounding box around the configured airport and normalizes the
state-vector arrays into :class:`AircraftSnapshot` objects. Supports
anonymous access, HTTP Basic credentials and the OAuth2 client-credentials
flow (token cached until shortly before expiry).
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Iterator, Optional, Protocol, Sequence

import aiohttp

from approachwatch import __version__
from approachwatch.config import AirportConfig, OpenSkyConfig, RetryPolicy
from approachwatch.core.errors import AuthError, FetchError, MalformedSnapshotError
from approachwatch.core.geo import bbox_around, m_to_feet, ms_to_fpm, ms_to_knots
from approachwatch.core.models import AircraftSnapshot
from approachwatch.core.time import RealTimeSource, TimeSource
from approachwatch.ingest.base import coerce_float, epoch_to_utc
from approachwatch.ingest.retry import retry_async

__all__ = [
    "CredentialProvider",
    "BasicCredentials",
    "OAuth2ClientCredentials",
    "OpenSkySource",
    "snapshot_from_state",
    "credentials_from_config",
]

logger = logging.getLogger(__name__)

USER_AGENT = f"approachwatch/{__version__}"

# Column indexes of an OpenSky state vector
_ICAO24, _CALLSIGN, _LAST_CONTACT, _LON, _LAT = 0, 1, 4, 5, 6
_BARO_ALT, _VELOCITY, _TRACK, _VRATE, _GEO_ALT = 7, 9, 10, 11, 13


class CredentialProvider(Protocol):
    #: Whether :meth:`invalidate` followed by :meth:`headers` can yield new
    #: credentials (token schemes); static schemes cannot.
    refreshable: bool

    async def headers(self, session: aiohttp.ClientSession) -> dict[str, str]:
        ...

    def invalidate(self) -> None:
        ...


class BasicCredentials:
    refreshable = False

    def __init__(self, username: str, password: str) -> None:
        self._value = aiohttp.BasicAuth(username, password).encode()

    async def headers(self, session: aiohttp.ClientSession) -> dict[str, str]:
        return {"Authorization": self._value}

    def invalidate(self) -> None:
        return None


class OAuth2ClientCredentials:
    """Client-credentials bearer token with expiry-aware caching."""

    refreshable = True

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        *,
        ts: TimeSource,
        margin_s: float = 60.0,
    ) -> None:
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._ts = ts
        self._margin_s = margin_s
        self._token: Optional[str] = None
        self._valid_until: float = 0.0
        self._lock = asyncio.Lock()
        self.exchanges = 0

    async def headers(self, session: aiohttp.ClientSession) -> dict[str, str]:
        return {"Authorization": f"Bearer {await self.token(session)}"}

    def invalidate(self) -> None:
        self._token = None
        self._valid_until = 0.0

    async def token(self, session: aiohttp.ClientSession) -> str:
        async with self._lock:
            if self._token is not None and self._ts.monotonic() < self._valid_until:
                return self._token
            try:
                token, expires_in = await self._exchange(session)
            except AuthError as first:
                logger.warning("OpenSky token exchange failed (%s); retrying once", first)
                token, expires_in = await self._exchange(session)
            self._token = token
            self._valid_until = self._ts.monotonic() + max(0.0, expires_in - self._margin_s)
            return token

    async def _exchange(self, session: aiohttp.ClientSession) -> tuple[str, float]:
        self.exchanges += 1
        form = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        try:
            async with session.post(self._token_url, data=form) as resp:
                if resp.status != 200:
                    raise AuthError(f"token endpoint returned HTTP {resp.status}")
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise AuthError(f"token exchange failed: {e}") from e
        token = body.get("access_token") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token:
            raise AuthError("token endpoint response lacks access_token")
        expires_in = coerce_float(body.get("expires_in")) or 300.0
        logger.debug("OpenSky token refreshed (expires_in=%.0fs)", expires_in)
        return token, expires_in


def credentials_from_config(
    cfg: OpenSkyConfig, *, ts: TimeSource
) -> Optional[CredentialProvider]:
    """OAuth2 when a client id/secret is set, else Basic, else anonymous."""
    if cfg.client_id and cfg.client_secret:
        return OAuth2ClientCredentials(
            cfg.token_url, cfg.client_id, cfg.client_secret, ts=ts, margin_s=cfg.token_margin_s
        )
    if cfg.username and cfg.password:
        return BasicCredentials(cfg.username, cfg.password)
    return None


def snapshot_from_state(state: Any, *, now_s: float) -> AircraftSnapshot:
    """Map one OpenSky state vector to a snapshot.

    Raises:
        MalformedSnapshotError: Not a state vector, or no position.
    """
    if not isinstance(state, (list, tuple)) or len(state) <= _LAT:
        raise MalformedSnapshotError("not a state vector", state)

    def col(i: int) -> Any:
        return state[i] if len(state) > i else None

    lat = coerce_float(col(_LAT))
    lon = coerce_float(col(_LON))
    if lat is None or lon is None:
        raise MalformedSnapshotError("state vector without position", state)

    icao = col(_ICAO24)
    callsign = col(_CALLSIGN)
    geo_alt = coerce_float(col(_GEO_ALT))
    alt_m = geo_alt if geo_alt is not None else coerce_float(col(_BARO_ALT))
    last_contact = coerce_float(col(_LAST_CONTACT))

    return AircraftSnapshot(
        ts=epoch_to_utc(last_contact if last_contact is not None else now_s),
        hex=icao if isinstance(icao, str) else None,
        callsign=callsign if isinstance(callsign, str) else None,
        lat=lat,
        lon=lon,
        alt_ft=m_to_feet(alt_m),
        gs_kt=ms_to_knots(coerce_float(col(_VELOCITY))),
        track_deg=coerce_float(col(_TRACK)),
        vs_fpm=ms_to_fpm(coerce_float(col(_VRATE))),
        src="OPENSKY",
    )


class OpenSkySource:
    """Fetches one batch of snapshots per :meth:`fetch` call."""

    def __init__(
        self,
        airport: AirportConfig,
        *,
        config: OpenSkyConfig | None = None,
        retry: RetryPolicy | None = None,
        credentials: CredentialProvider | None = None,
        ts: TimeSource | None = None,
        session: Optional[aiohttp.ClientSession] = None,
        rng: random.Random | None = None,
    ) -> None:
        self._cfg = config or OpenSkyConfig()
        self._retry = retry or RetryPolicy()
        self._ts = ts or RealTimeSource()
        self._auth = credentials
        self._rng = rng or random.Random()
        self._ext_session = session
        self._session: Optional[aiohttp.ClientSession] = session

        lamin, lomin, lamax, lomax = bbox_around(airport.lat, airport.lon, airport.radius_km)
        self._params = {
            "lamin": f"{lamin:.5f}",
            "lomin": f"{lomin:.5f}",
            "lamax": f"{lamax:.5f}",
            "lomax": f"{lomax:.5f}",
        }
        self.name = "opensky"

    async def fetch(self) -> Sequence[AircraftSnapshot]:
        """Fetch and normalize the current state vectors.

        Raises:
            FetchError: Upstream unreachable, rejected, or retries exhausted.
        """
        try:
            payload = await retry_async(
                self._get_states, self._retry, ts=self._ts, rng=self._rng, what="OpenSky states"
            )
        except AuthError as e:
            raise FetchError(f"OpenSky authorization failed: {e}") from e
        return list(self._iter_snapshots(payload))

    async def close(self) -> None:
        # Caller owns an injected session
        if self._session is not None and self._ext_session is None:
            await self._session.close()
        self._session = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._cfg.timeout_s)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            )
        return self._session

    async def _get_states(self) -> Any:
        session = await self._ensure_session()
        for refreshed in (False, True):
            if refreshed:
                assert self._auth is not None
                self._auth.invalidate()
            headers = await self._auth.headers(session) if self._auth else {}
            async with session.get(self._cfg.url, params=self._params, headers=headers) as resp:
                if resp.status == 401:
                    if self._auth is None or not self._auth.refreshable:
                        raise AuthError("OpenSky rejected credentials (HTTP 401)")
                    if refreshed:
                        raise AuthError("OpenSky rejected refreshed token (HTTP 401)")
                    logger.info("OpenSky returned 401; refreshing token")
                    continue
                resp.raise_for_status()
                return await resp.json(content_type=None)
        raise AssertionError("unreachable")

    def _iter_snapshots(self, payload: Any) -> Iterator[AircraftSnapshot]:
        if not isinstance(payload, dict):
            return
        states = payload.get("states")
        if not isinstance(states, list):
            return
        now_s = coerce_float(payload.get("time")) or self._ts.wall_time()
        for state in states:
            try:
                yield snapshot_from_state(state, now_s=now_s)
            except MalformedSnapshotError as e:
                logger.debug("Dropping OpenSky record: %s (%r)", e, e.record)
            except ValueError as e:
                # pydantic rejected a field value
                logger.debug("Dropping OpenSky record: %s", e)
