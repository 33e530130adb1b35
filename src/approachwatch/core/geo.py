"""Great-circle helpers and unit conversions for approach classification.

All angles are in degrees and distances in kilometres unless stated. The
sphere uses the mean Earth radius (6371.0 km). Conversion factors are exact
multiplicative constants; classification thresholds are tuned against them
so they must not be rounded.
"""

from __future__ import annotations

from math import asin, atan2, cos, degrees, radians, sin, sqrt
from typing import Optional, Tuple

__all__ = [
    "EARTH_RADIUS_KM",
    "KM_PER_DEG_LAT",
    "KM_PER_NM",
    "distance_km",
    "bearing_deg",
    "angular_difference",
    "bbox_around",
    "ms_to_knots",
    "m_to_feet",
    "ms_to_fpm",
    "km_to_nm",
]


EARTH_RADIUS_KM: float = 6371.0
# Flat approximation used only for bounding-box queries
KM_PER_DEG_LAT: float = 111.32
KM_PER_NM: float = 1.852

_KT_PER_MS: float = 1.9438444924
_FT_PER_M: float = 3.280839895
_FPM_PER_MS: float = 196.8503937


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine great-circle distance in kilometres.

    Args:
        lat1: Latitude of point 1 in degrees.
        lon1: Longitude of point 1 in degrees.
        lat2: Latitude of point 2 in degrees.
        lon2: Longitude of point 2 in degrees.
    Returns:
        Distance in kilometres (0.0 for identical points).
    """
    if lat1 == lat2 and lon1 == lon2:
        return 0.0

    phi1 = radians(lat1)
    phi2 = radians(lat2)
    sdphi = sin((phi2 - phi1) * 0.5)
    sdl = sin(radians(lon2 - lon1) * 0.5)
    a = sdphi * sdphi + cos(phi1) * cos(phi2) * sdl * sdl
    # Clamp due to rounding
    a = min(1.0, max(0.0, a))
    return 2.0 * EARTH_RADIUS_KM * asin(sqrt(a))


def bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial (forward) azimuth from point 1 to point 2 in [0, 360).

    If the two points are identical, returns 0.0 by convention.
    """
    if lat1 == lat2 and lon1 == lon2:
        return 0.0

    phi1 = radians(lat1)
    phi2 = radians(lat2)
    dlambda = radians(lon2 - lon1)
    x = sin(dlambda) * cos(phi2)
    y = cos(phi1) * sin(phi2) - sin(phi1) * cos(phi2) * cos(dlambda)
    brg = degrees(atan2(x, y)) % 360.0
    # -0.0 % 360 and tiny negatives can round to 360.0
    return 0.0 if brg >= 360.0 else brg


def angular_difference(a: float, b: float) -> float:
    """Smallest absolute separation between two headings, in [0, 180]."""
    return abs(((a - b) % 360.0 + 540.0) % 360.0 - 180.0)


def bbox_around(
    lat: float, lon: float, radius_km: float
) -> Tuple[float, float, float, float]:
    """Bounding box ``(lamin, lomin, lamax, lomax)`` enclosing a radius.

    Longitude span widens with latitude (cos scaling). Intended for upstream
    area queries only; exact filtering is done with :func:`distance_km`.
    """
    dlat = radius_km / KM_PER_DEG_LAT
    dlon = radius_km / (KM_PER_DEG_LAT * max(cos(radians(lat)), 1e-6))
    return (lat - dlat, lon - dlon, lat + dlat, lon + dlon)


def ms_to_knots(v: Optional[float]) -> Optional[float]:
    return None if v is None else v * _KT_PER_MS


def m_to_feet(m: Optional[float]) -> Optional[float]:
    return None if m is None else m * _FT_PER_M


def ms_to_fpm(v: Optional[float]) -> Optional[float]:
    return None if v is None else v * _FPM_PER_MS


def km_to_nm(km: float) -> float:
    return km / KM_PER_NM
