from __future__ import annotations

import base64
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import web

from approachwatch.config import OpenSkyConfig, RetryPolicy
from approachwatch.core.errors import FetchError, MalformedSnapshotError
from approachwatch.core.time import SimTimeSource
from approachwatch.ingest.opensky import (
    BasicCredentials,
    OAuth2ClientCredentials,
    OpenSkySource,
    credentials_from_config,
    snapshot_from_state,
)

from conftest import start_app

NO_WAIT = RetryPolicy(attempts=3, initial_delay_s=0.0, max_delay_s=0.0, jitter_s=0.0)


class FakeOpenSky:
    """States endpoint plus an OAuth2 token endpoint with scripted behaviour."""

    def __init__(self, states_body: Any) -> None:
        self.states_body = states_body
        self.statuses: list[int] = []  # consumed one per states request
        self.requests: list[dict[str, Any]] = []
        self.valid_tokens: set[str] = set()
        self.require_token = False
        self.token_requests: list[dict[str, str]] = []
        self.token_failures = 0
        # Issued tokens are never accepted
        self.revoke_on_issue = False

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/states/all", self._states)
        app.router.add_post("/token", self._token)
        return app

    async def _states(self, request: web.Request) -> web.Response:
        self.requests.append(
            {"query": request.query.copy(), "headers": request.headers.copy()}
        )
        if self.require_token:
            auth = request.headers.get("Authorization", "")
            if auth.removeprefix("Bearer ") not in self.valid_tokens:
                return web.json_response({"error": "unauthorized"}, status=401)
        status = self.statuses.pop(0) if self.statuses else 200
        if status != 200:
            return web.json_response({"error": "boom"}, status=status)
        return web.json_response(self.states_body)

    async def _token(self, request: web.Request) -> web.Response:
        form = await request.post()
        self.token_requests.append({k: str(v) for k, v in form.items()})
        if self.token_failures:
            self.token_failures -= 1
            return web.json_response({"error": "unavailable"}, status=503)
        token = f"tok-{len(self.token_requests)}"
        if not self.revoke_on_issue:
            self.valid_tokens.add(token)
        return web.json_response({"access_token": token, "expires_in": 1800})


@pytest_asyncio.fixture
async def fake_server(load_fixture):
    fake = FakeOpenSky(load_fixture("opensky_states.json"))
    runner, base = await start_app(fake.app())
    fake.base = base  # type: ignore[attr-defined]
    try:
        yield fake
    finally:
        await runner.cleanup()


def _source(airport, fake, **kw) -> OpenSkySource:
    cfg = OpenSkyConfig(url=f"{fake.base}/api/states/all", token_url=f"{fake.base}/token")
    return OpenSkySource(
        airport, config=cfg, retry=NO_WAIT, ts=kw.pop("ts", SimTimeSource(wall_start=0.0)), **kw
    )


def _oauth(fake, ts) -> OAuth2ClientCredentials:
    return OAuth2ClientCredentials(f"{fake.base}/token", "cid", "secret", ts=ts, margin_s=60.0)


# Record mapping --------------------------------------------------------------


def test_snapshot_from_state_converts_units() -> None:
    state = ["3c6444", "DLH4AB  ", "DE", 1, 1714765199, 2.0, 49.0, 1828.8, False,
             77.17, 90.0, -4.06, None, 1859.28]
    s = snapshot_from_state(state, now_s=0.0)
    assert s.hex == "3C6444"
    assert s.callsign == "DLH4AB"
    # Geometric altitude preferred over barometric
    assert s.alt_ft == pytest.approx(6100.0, abs=0.5)
    assert s.gs_kt == pytest.approx(150.0, abs=0.1)
    assert s.vs_fpm == pytest.approx(-799.2, abs=0.5)
    assert s.ts.timestamp() == 1714765199
    assert s.src == "OPENSKY"


def test_snapshot_from_state_falls_back_to_baro_altitude() -> None:
    state = ["39856a", "AFR12", "FR", 1, 1, 2.7, 49.2, 3048.0, False, 120.0, 200.0, 5.0, None, None]
    assert snapshot_from_state(state, now_s=0.0).alt_ft == pytest.approx(10000.0, abs=0.5)


def test_snapshot_from_state_rejects_malformed() -> None:
    with pytest.raises(MalformedSnapshotError):
        snapshot_from_state("nope", now_s=0.0)
    with pytest.raises(MalformedSnapshotError):
        snapshot_from_state(["abc", "X", "FR", None, None, None, None], now_s=0.0)


# Fetching --------------------------------------------------------------------


@pytest.mark.asyncio
async def test_fetch_parses_batch_and_drops_bad_records(airport, fake_server) -> None:
    src = _source(airport, fake_server)
    try:
        batch = await src.fetch()
    finally:
        await src.close()

    assert [s.hex for s in batch] == ["3C6444", "39856A", "4CA7B5"]
    anon = batch[2]
    assert anon.callsign is None
    assert anon.alt_ft is None
    # No last_contact: payload time is used
    assert anon.ts.timestamp() == 1714765200

    req = fake_server.requests[0]
    query, headers = req["query"], req["headers"]
    for p in ("lamin", "lomin", "lamax", "lomax"):
        assert p in query
    assert float(query["lamin"]) < airport.lat < float(query["lamax"])
    assert float(query["lomin"]) < airport.lon < float(query["lomax"])
    assert headers["User-Agent"].startswith("approachwatch/")
    assert "Authorization" not in headers


@pytest.mark.asyncio
async def test_fetch_retries_server_errors(airport, fake_server) -> None:
    fake_server.statuses = [500, 503]
    src = _source(airport, fake_server)
    try:
        batch = await src.fetch()
    finally:
        await src.close()
    assert len(batch) == 3
    assert len(fake_server.requests) == 3


@pytest.mark.asyncio
async def test_fetch_exhausted_raises_fetch_error(airport, fake_server) -> None:
    fake_server.statuses = [500, 500, 500]
    src = _source(airport, fake_server)
    try:
        with pytest.raises(FetchError):
            await src.fetch()
    finally:
        await src.close()
    assert len(fake_server.requests) == NO_WAIT.attempts


@pytest.mark.asyncio
async def test_client_error_is_not_retried(airport, fake_server) -> None:
    fake_server.statuses = [404]
    src = _source(airport, fake_server)
    try:
        with pytest.raises(FetchError):
            await src.fetch()
    finally:
        await src.close()
    assert len(fake_server.requests) == 1


@pytest.mark.asyncio
async def test_basic_credentials_header(airport, fake_server) -> None:
    src = _source(airport, fake_server, credentials=BasicCredentials("alice", "s3cret"))
    try:
        await src.fetch()
    finally:
        await src.close()
    auth = fake_server.requests[0]["headers"]["Authorization"]
    assert auth == "Basic " + base64.b64encode(b"alice:s3cret").decode()


@pytest.mark.asyncio
async def test_unauthorized_without_refreshable_credentials(airport, fake_server) -> None:
    fake_server.require_token = True
    src = _source(airport, fake_server, credentials=BasicCredentials("alice", "wrong"))
    try:
        with pytest.raises(FetchError, match="authorization"):
            await src.fetch()
    finally:
        await src.close()
    assert len(fake_server.requests) == 1


@pytest.mark.asyncio
async def test_oauth_token_is_cached_until_near_expiry(airport, fake_server) -> None:
    fake_server.require_token = True
    ts = SimTimeSource(wall_start=0.0)
    creds = _oauth(fake_server, ts)
    src = _source(airport, fake_server, credentials=creds, ts=ts)
    try:
        await src.fetch()
        await src.fetch()
        assert creds.exchanges == 1
        assert fake_server.token_requests[0] == {
            "grant_type": "client_credentials",
            "client_id": "cid",
            "client_secret": "secret",
        }

        # 1800 s lifetime minus the 60 s margin
        ts.advance(1739.0)
        await src.fetch()
        assert creds.exchanges == 1
        ts.advance(2.0)
        await src.fetch()
        assert creds.exchanges == 2
    finally:
        await src.close()


@pytest.mark.asyncio
async def test_oauth_refreshes_once_on_401(airport, fake_server) -> None:
    fake_server.require_token = True
    ts = SimTimeSource(wall_start=0.0)
    creds = _oauth(fake_server, ts)
    src = _source(airport, fake_server, credentials=creds, ts=ts)
    try:
        await src.fetch()
        # Server revokes the cached token early
        fake_server.valid_tokens.clear()
        batch = await src.fetch()
    finally:
        await src.close()

    assert len(batch) == 3
    assert creds.exchanges == 2
    auths = [r["headers"]["Authorization"] for r in fake_server.requests]
    assert auths == ["Bearer tok-1", "Bearer tok-1", "Bearer tok-2"]


@pytest.mark.asyncio
async def test_oauth_gives_up_when_refreshed_token_rejected(airport, fake_server) -> None:
    fake_server.require_token = True
    ts = SimTimeSource(wall_start=0.0)
    creds = _oauth(fake_server, ts)
    src = _source(airport, fake_server, credentials=creds, ts=ts)
    fake_server.revoke_on_issue = True
    try:
        with pytest.raises(FetchError):
            await src.fetch()
    finally:
        await src.close()
    assert creds.exchanges == 2
    # Initial request plus exactly one refreshed retry
    assert len(fake_server.requests) == 2


@pytest.mark.asyncio
async def test_oauth_exchange_retried_once(airport, fake_server) -> None:
    fake_server.require_token = True
    fake_server.token_failures = 1
    ts = SimTimeSource(wall_start=0.0)
    creds = _oauth(fake_server, ts)
    src = _source(airport, fake_server, credentials=creds, ts=ts)
    try:
        batch = await src.fetch()
    finally:
        await src.close()
    assert len(batch) == 3
    assert creds.exchanges == 2


def test_credentials_from_config() -> None:
    ts = SimTimeSource()
    assert credentials_from_config(OpenSkyConfig(), ts=ts) is None
    basic = credentials_from_config(OpenSkyConfig(username="u", password="p"), ts=ts)
    assert isinstance(basic, BasicCredentials)
    oauth = credentials_from_config(
        OpenSkyConfig(username="u", password="p", client_id="c", client_secret="s"), ts=ts
    )
    assert isinstance(oauth, OAuth2ClientCredentials)
