"""Application layer: the poll loop, the observer gateway and process wiring."""

from .gateway import AckResult, ObserverGateway
from .poller import CycleReport, PollOrchestrator

__all__ = ["AckResult", "CycleReport", "ObserverGateway", "PollOrchestrator"]
