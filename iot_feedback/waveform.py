"""Deterministic periodic signal used to simulate environment drift."""

from __future__ import annotations

import math

# sin(x / 40) repeats every 80 * pi iterations.
STRETCH = 40.0
PERIOD = 2.0 * math.pi * STRETCH


def offset(amplitude: float, x: float) -> float:
    """Return ``amplitude * sin(x / 40)`` for iteration ``x``."""
    return amplitude * math.sin(x / STRETCH)
