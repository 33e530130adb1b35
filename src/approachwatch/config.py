"""Runtime configuration.

Defaults live in ``defaults.yml`` next to this module. :func:`load_config`
deep-merges an optional user YAML file over them, applies the recognized
environment overrides and validates the result into :class:`AppConfig`.
Invalid values raise ``pydantic.ValidationError`` at startup rather than
surfacing mid-poll.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, List, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

_DEFAULTS_PATH = Path(__file__).parent / "defaults.yml"

GateStrategy = Literal["runway", "bearing"]


class AirportConfig(BaseModel):
    """Reference point and classification thresholds for one airport.

    Parameters
    ----------
    gate: Directional gate strategy. ``runway`` accepts tracks aligned with
        any runway heading within ``runway_tol_deg``; the check only applies
        inside ``runway_gate_radius_km`` (None applies it everywhere).
        ``bearing`` accepts tracks within ``bearing_max_deg`` of the direct
        bearing to the airport.
    """

    icao: str = "LFPG"
    name: str = ""
    lat: float = Field(..., ge=-90.0, le=90.0)
    lon: float = Field(..., ge=-180.0, le=180.0)
    radius_km: float = Field(..., gt=0)
    alt_max_ft: float = Field(..., gt=0)
    eta_max_min: float = Field(..., gt=0)
    gate: GateStrategy = "runway"
    bearing_max_deg: float = Field(35.0, ge=0, le=180)
    runway_headings: List[float] = Field(default_factory=list)
    runway_tol_deg: float = Field(25.0, ge=0, le=180)
    runway_gate_radius_km: Optional[float] = Field(30.0, gt=0)
    landing_max_alt_ft: float = 200.0
    landing_max_gs_kt: float = 50.0

    @field_validator("runway_headings")
    @classmethod
    def _norm_headings(cls, v: List[float]) -> List[float]:
        return [float(h) % 360.0 for h in v]

    @model_validator(mode="after")
    def _chk_runways(self) -> "AirportConfig":
        if self.gate == "runway" and not self.runway_headings:
            raise ValueError("gate 'runway' requires at least one runway heading")
        return self


class PollConfig(BaseModel):
    interval_s: float = Field(12.0, gt=0)
    jitter_s: float = Field(1.0, ge=0)
    # Lower bound on the delay between cycles, whatever interval is set
    floor_s: float = Field(5.0, ge=0)


class RetryPolicy(BaseModel):
    """Exponential backoff with additive jitter for upstream requests."""

    attempts: int = Field(4, ge=1)
    initial_delay_s: float = Field(0.8, ge=0)
    max_delay_s: float = Field(6.0, ge=0)
    jitter_s: float = Field(0.4, ge=0)


class FallbackConfig(BaseModel):
    empty_trigger: int = Field(3, ge=1)
    cooldown_s: float = Field(120.0, ge=0)


class OpenSkyConfig(BaseModel):
    url: str = "https://opensky-network.org/api/states/all"
    token_url: str = (
        "https://auth.opensky-network.org/auth/realms/opensky-network"
        "/protocol/openid-connect/token"
    )
    timeout_s: float = Field(10.0, gt=0)
    token_margin_s: float = Field(60.0, ge=0)
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None


class AdsbxConfig(BaseModel):
    host: str = "adsbexchange-com1.p.rapidapi.com"
    timeout_s: float = Field(10.0, gt=0)
    api_key: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


class AppConfig(BaseModel):
    airport: AirportConfig
    poll: PollConfig = Field(default_factory=PollConfig)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    opensky: OpenSkyConfig = Field(default_factory=OpenSkyConfig)
    adsbx: AdsbxConfig = Field(default_factory=AdsbxConfig)
    simulate: bool = False


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, Mapping) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top-level YAML value must be a mapping")
    return raw


def _truthy(v: str) -> bool:
    return v.strip().lower() in {"1", "true", "yes", "on"}


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if "SIMULATE" in env:
        out["simulate"] = _truthy(env["SIMULATE"])

    sky: dict[str, Any] = {}
    for var, field in (
        ("OPENSKY_USER", "username"),
        ("OPENSKY_PASS", "password"),
        ("OPENSKY_CLIENT_ID", "client_id"),
        ("OPENSKY_CLIENT_SECRET", "client_secret"),
    ):
        if env.get(var):
            sky[field] = env[var]
    if sky:
        out["opensky"] = sky

    if env.get("RAPIDAPI_KEY"):
        out["adsbx"] = {"api_key": env["RAPIDAPI_KEY"]}

    poll_s = env.get("APPROACHWATCH_POLL_S")
    if poll_s:
        try:
            out["poll"] = {"interval_s": float(poll_s)}
        except ValueError:
            logger.warning("Invalid APPROACHWATCH_POLL_S=%r", poll_s)
    return out


def load_config(
    path: str | Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> AppConfig:
    """Build the :class:`AppConfig` for this process.

    Precedence (lowest first): packaged defaults, user YAML (*path*, else
    ``APPROACHWATCH_CONFIG``), environment overrides.
    """
    env = os.environ if env is None else env
    data = _read_yaml(_DEFAULTS_PATH)

    user_path = path or env.get("APPROACHWATCH_CONFIG")
    if user_path:
        p = Path(user_path).expanduser()
        data = _deep_merge(data, _read_yaml(p))
        logger.info("Loaded config overrides from %s", p)

    data = _deep_merge(data, _env_overrides(env))
    return AppConfig.model_validate(data)


__all__ = [
    "GateStrategy",
    "AirportConfig",
    "PollConfig",
    "RetryPolicy",
    "FallbackConfig",
    "OpenSkyConfig",
    "AdsbxConfig",
    "AppConfig",
    "load_config",
]
