"""
Stream relay: paced, error-aware SSE delivery of upstream model output.
"""

from .models import PreflightError, RelayOptions, RelayState
from .session import RelaySession

__all__ = [
    "PreflightError",
    "RelayOptions",
    "RelaySession",
    "RelayState",
]
