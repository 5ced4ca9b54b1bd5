"""
Replay system for projection reconstruction.

Replay applies the reducer to the event stream to rebuild every update's
current state. Same events -> same projections.
"""

from .projection import Projection, default_reducer, project, register_handlers
from .runner import Mismatch, ReplayResult, replay, verify

__all__ = [
    "Mismatch",
    "Projection",
    "ReplayResult",
    "default_reducer",
    "project",
    "register_handlers",
    "replay",
    "verify",
]
