"""Tests for descriptor coercion and validation."""

import numpy as np
import pytest

from biometrics.descriptors import (
    DESCRIPTOR_LENGTH,
    coerce_descriptor,
    is_valid_descriptor,
    validate_descriptor,
)
from biometrics.exceptions import InvalidDescriptorError


def test_list_payload_is_coerced_to_float_array() -> None:
    vector = coerce_descriptor([0.5] * DESCRIPTOR_LENGTH)
    assert isinstance(vector, np.ndarray)
    assert vector.dtype == np.float64
    assert vector.shape == (DESCRIPTOR_LENGTH,)


@pytest.mark.parametrize("key", ["descriptor", "embedding"])
def test_mapping_payloads_are_unwrapped(key) -> None:
    assert coerce_descriptor({key: [1.0] * DESCRIPTOR_LENGTH}) is not None


@pytest.mark.parametrize(
    "value",
    [
        None,
        "not a descriptor",
        b"\x00" * DESCRIPTOR_LENGTH,
        [1.0] * 127,
        [1.0] * 129,
        np.ones((2, 64)),
        ["a"] * DESCRIPTOR_LENGTH,
        {"other": [1.0] * DESCRIPTOR_LENGTH},
        [float("inf")] + [1.0] * 127,
    ],
)
def test_unusable_values_coerce_to_none(value) -> None:
    assert coerce_descriptor(value) is None
    assert is_valid_descriptor(value) is False


def test_validate_descriptor_reports_length() -> None:
    with pytest.raises(InvalidDescriptorError, match="got length 5"):
        validate_descriptor([1.0] * 5, name="probe")


def test_invalid_descriptor_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        validate_descriptor([])
