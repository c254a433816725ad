"""Relay session lifecycle."""

from .loop import SessionLoop, SessionState
from .stats import SessionStats, rolling_average

__all__ = ["SessionLoop", "SessionState", "SessionStats", "rolling_average"]
