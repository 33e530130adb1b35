"""Error taxonomy for the ingestion and alerting core."""

from __future__ import annotations

from typing import Any

__all__ = [
    "ApproachWatchError",
    "FetchError",
    "AuthError",
    "UnknownKeyError",
    "MalformedSnapshotError",
]


class ApproachWatchError(Exception):
    """Base class for all errors raised by approachwatch."""


class FetchError(ApproachWatchError):
    """Upstream unreachable, rejected the request, or retries were exhausted.

    The poll orchestrator recovers by skipping the cycle.
    """


class AuthError(ApproachWatchError):
    """Credential exchange or authorization with an upstream failed."""


class UnknownKeyError(ApproachWatchError):
    """Acknowledgement of a key that is not currently alerting."""

    def __init__(self, key: str) -> None:
        super().__init__(f"unknown or already-handled key: {key!r}")
        self.key = key


class MalformedSnapshotError(ApproachWatchError):
    """A single upstream record is missing mandatory fields."""

    def __init__(self, reason: str, record: Any = None) -> None:
        super().__init__(reason)
        self.record = record
