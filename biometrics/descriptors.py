"""Face descriptor coercion and validation.

A face descriptor is the 128-dimensional embedding produced by the external
face recognition network. Descriptors that are not exactly 128 finite floats
are treated as absent; they are never truncated, padded or partially used.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import numpy as np

from .exceptions import InvalidDescriptorError

logger = logging.getLogger(__name__)

DESCRIPTOR_LENGTH = 128


def coerce_descriptor(value: Any) -> Optional[np.ndarray]:
    """Return ``value`` as a float64 vector, or ``None`` when it is unusable.

    Accepts lists, tuples, numpy arrays and payloads shaped like
    ``{"descriptor": [...]}`` or ``{"embedding": [...]}``.
    """

    if value is None:
        return None

    if isinstance(value, dict):
        value = value.get("descriptor", value.get("embedding"))
        if value is None:
            return None

    if isinstance(value, (str, bytes)):
        return None

    try:
        vector = np.asarray(value, dtype=np.float64)
    except (TypeError, ValueError):
        logger.debug("Unable to coerce descriptor values to floats")
        return None

    if vector.ndim != 1 or vector.shape[0] != DESCRIPTOR_LENGTH:
        logger.debug(
            "Rejected descriptor with shape %s",
            vector.shape,
            extra={"event": "descriptor_rejected", "reason": "shape"},
        )
        return None

    if not np.all(np.isfinite(vector)):
        logger.debug(
            "Rejected descriptor with non-finite values",
            extra={"event": "descriptor_rejected", "reason": "non_finite"},
        )
        return None

    return vector


def is_valid_descriptor(value: Any) -> bool:
    return coerce_descriptor(value) is not None


def validate_descriptor(value: Any, *, name: str = "descriptor") -> np.ndarray:
    """Return a validated descriptor or raise :class:`InvalidDescriptorError`."""

    vector = coerce_descriptor(value)
    if vector is None:
        length = None
        try:
            length = len(value)  # type: ignore[arg-type]
        except TypeError:
            pass
        raise InvalidDescriptorError(
            f"{name} must contain exactly {DESCRIPTOR_LENGTH} finite floats (got length {length})"
        )
    return vector


__all__ = [
    "DESCRIPTOR_LENGTH",
    "coerce_descriptor",
    "is_valid_descriptor",
    "validate_descriptor",
]
