"""Shared fixtures for the biometrics test suite."""

import numpy as np
import pytest

from biometrics import monitoring
from biometrics.types import FaceDetection


@pytest.fixture(autouse=True)
def reset_monitoring():
    """Give every test a fresh metrics registry and health state."""
    monitoring.reset_for_tests()
    yield
    monitoring.reset_for_tests()


@pytest.fixture(autouse=True)
def clear_cache():
    """Throttle counters live in the default cache; start each test empty."""
    from django.core.cache import cache

    cache.clear()
    yield


@pytest.fixture
def descriptor():
    """A deterministic, non-degenerate 128-d descriptor."""
    rng = np.random.default_rng(7)
    return rng.normal(0.0, 1.0, 128)


@pytest.fixture
def textured_frame():
    """A 240x320 BGR frame with mid-grey noise: well lit and sharp."""
    rng = np.random.default_rng(11)
    gray = rng.integers(60, 196, size=(240, 320), dtype=np.uint8)
    return np.dstack([gray, gray, gray])


@pytest.fixture
def centred_face():
    """A frontal, centred, well sized detection for the textured frame."""
    return FaceDetection(
        box=(110, 70, 100, 100),
        score=0.9,
        landmarks={"left_eye": (135.0, 100.0), "right_eye": (185.0, 100.0)},
    )
