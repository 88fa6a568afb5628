"""Descriptor similarity scoring and the match decision.

Both descriptors are L2-normalised before comparison so the Euclidean
distance between them always lies in ``[0, 2]``. The distance is mapped to a
similarity with ``1 - distance / MAX_DISTANCE``: identical descriptors score
exactly ``1.0`` and opposite descriptors score ``0.0``.

The transform constant and the default threshold are a calibration against
the 128-d face-api style embedding (same-person distances below ~0.6 on unit
vectors map to similarities above ~0.7). Recalibrate both when swapping the
embedding model.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

from django.conf import settings

import numpy as np

from .descriptors import validate_descriptor
from .exceptions import InvalidDescriptorError

logger = logging.getLogger(__name__)

MAX_DISTANCE = 2.0
DEFAULT_MATCH_THRESHOLD = 0.55


def get_match_threshold() -> float:
    """Return the configured similarity threshold for accepting a match."""

    return float(getattr(settings, "BIOMETRICS_MATCH_THRESHOLD", DEFAULT_MATCH_THRESHOLD))


def _normalise(vector: np.ndarray, name: str) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0 or not math.isfinite(norm):
        raise InvalidDescriptorError(f"{name} has zero magnitude")
    return vector / norm


def descriptor_distance(descriptor_a: Any, descriptor_b: Any) -> float:
    """Return the Euclidean distance between two unit-normalised descriptors."""

    first = _normalise(validate_descriptor(descriptor_a, name="descriptor_a"), "descriptor_a")
    second = _normalise(validate_descriptor(descriptor_b, name="descriptor_b"), "descriptor_b")
    return float(np.linalg.norm(first - second))


def distance_to_similarity(distance: float) -> float:
    """Map a normalised distance onto the 0-1 similarity scale."""

    if math.isnan(distance):
        return 0.0
    return float(min(1.0, max(0.0, 1.0 - distance / MAX_DISTANCE)))


def similarity(descriptor_a: Any, descriptor_b: Any) -> float:
    """Return the bounded similarity between two face descriptors.

    Raises:
        InvalidDescriptorError: when either descriptor is not exactly 128
            finite floats or has zero magnitude.
    """

    return distance_to_similarity(descriptor_distance(descriptor_a, descriptor_b))


def is_match(score: Optional[float], threshold: Optional[float] = None) -> bool:
    """Return ``True`` when ``score`` clears the threshold (inclusive)."""

    if score is None or math.isnan(score):
        return False
    if threshold is None:
        threshold = get_match_threshold()
    return bool(score >= threshold)


__all__ = [
    "DEFAULT_MATCH_THRESHOLD",
    "MAX_DISTANCE",
    "descriptor_distance",
    "distance_to_similarity",
    "get_match_threshold",
    "is_match",
    "similarity",
]
