"""Approach classification and landing detection for single snapshots.

Every gate rejects on definitive disqualifying evidence. Missing data is
handled per gate: unknown altitude rejects, while unknown track, vertical
rate or ground speed never does.

Example:

    clf = ApproachClassifier(cfg.airport)
    verdict = clf.classify(snapshot)
    if verdict.landed:
        ...
    elif verdict.approaching:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass

from approachwatch.config import AirportConfig
from approachwatch.core.geo import KM_PER_NM, angular_difference, bearing_deg, distance_km
from approachwatch.core.models import AircraftSnapshot

__all__ = ["ApproachClassifier", "Verdict", "MIN_ETA_SPEED_KT"]

# Below this speed the aircraft is treated as stationary/taxiing and no ETA
# is computed.
MIN_ETA_SPEED_KT: float = 20.0


@dataclass(frozen=True, slots=True)
class Verdict:
    approaching: bool
    landed: bool
    distance_km: float


class ApproachClassifier:
    """Pure decision functions bound to one :class:`AirportConfig`."""

    def __init__(self, airport: AirportConfig) -> None:
        self._cfg = airport

    @property
    def airport(self) -> AirportConfig:
        return self._cfg

    def distance_to_airport(self, snap: AircraftSnapshot) -> float:
        return distance_km(snap.lat, snap.lon, self._cfg.lat, self._cfg.lon)

    def is_landed(self, snap: AircraftSnapshot) -> bool:
        """Low and slow: altitude and ground speed both known and under limits."""
        return (
            snap.alt_ft is not None
            and snap.alt_ft < self._cfg.landing_max_alt_ft
            and snap.gs_kt is not None
            and snap.gs_kt < self._cfg.landing_max_gs_kt
        )

    def is_approaching(self, snap: AircraftSnapshot) -> bool:
        return self._approaching(snap, self.distance_to_airport(snap))

    def classify(self, snap: AircraftSnapshot) -> Verdict:
        """Run the landing detector, then the approach gates unless landed."""
        d_km = self.distance_to_airport(snap)
        if self.is_landed(snap):
            return Verdict(approaching=False, landed=True, distance_km=d_km)
        return Verdict(
            approaching=self._approaching(snap, d_km), landed=False, distance_km=d_km
        )

    # Gates -----------------------------------------------------------------

    def _approaching(self, snap: AircraftSnapshot, d_km: float) -> bool:
        cfg = self._cfg
        if d_km > cfg.radius_km:
            return False
        if snap.alt_ft is None or snap.alt_ft > cfg.alt_max_ft:
            return False
        if snap.vs_fpm is not None and snap.vs_fpm > 0:
            return False
        if not self._direction_ok(snap, d_km):
            return False
        if snap.gs_kt is not None and snap.gs_kt > MIN_ETA_SPEED_KT:
            eta_min = d_km / (snap.gs_kt * KM_PER_NM) * 60.0
            if eta_min > cfg.eta_max_min:
                return False
        return True

    def _direction_ok(self, snap: AircraftSnapshot, d_km: float) -> bool:
        track = snap.track_deg
        if track is None:
            return True
        cfg = self._cfg
        if cfg.gate == "bearing":
            to_airport = bearing_deg(snap.lat, snap.lon, cfg.lat, cfg.lon)
            return angular_difference(track, to_airport) <= cfg.bearing_max_deg

        # Farther out, aircraft holding or being vectored are not yet aligned
        if cfg.runway_gate_radius_km is not None and d_km > cfg.runway_gate_radius_km:
            return True
        return any(
            angular_difference(track, hdg) <= cfg.runway_tol_deg
            for hdg in cfg.runway_headings
        )
