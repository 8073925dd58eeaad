"""Scale raw physiological readings into the [0, 1] range models expect."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from edgeml.core.errors import InvalidArguments

# kind -> (lower, upper) of the raw unit
HEALTH_RANGES: dict[str, tuple[float, float]] = {
    "heart_rate": (40.0, 200.0),      # bpm
    "hrv": (0.0, 100.0),              # ms
    "temperature": (96.0, 102.0),     # degrees F
    "sleep_score": (0.0, 100.0),
    "steps": (0.0, 30000.0),
    "cycle_day": (1.0, 40.0),
}


def normalize_health_data(values: Sequence[float], kind: str) -> list[float]:
    """Min-max scale *values* for *kind* and clamp to [0, 1]."""
    if kind not in HEALTH_RANGES:
        raise InvalidArguments(
            f"Unknown health data kind '{kind}'. "
            f"Available: {sorted(HEALTH_RANGES)}"
        )
    lower, upper = HEALTH_RANGES[kind]
    arr = np.asarray(values, dtype=np.float64)
    scaled = (arr - lower) / (upper - lower)
    return np.clip(scaled, 0.0, 1.0).tolist()
