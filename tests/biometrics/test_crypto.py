"""Tests for at-rest encryption of reference descriptors."""

from django.core.exceptions import ImproperlyConfigured
from django.test import override_settings

import numpy as np
import pytest
from cryptography.fernet import Fernet

from biometrics.crypto import DescriptorEncryption
from biometrics.exceptions import InvalidDescriptorError, ReferenceDataError


@pytest.fixture
def cipher():
    return DescriptorEncryption(Fernet.generate_key())


def test_descriptor_survives_encryption(cipher, descriptor) -> None:
    token = cipher.encrypt_descriptor(descriptor)

    assert descriptor.tobytes() not in token
    np.testing.assert_array_equal(cipher.decrypt_descriptor(token), descriptor)


def test_invalid_descriptor_is_not_encrypted(cipher) -> None:
    with pytest.raises(InvalidDescriptorError):
        cipher.encrypt_descriptor([1.0] * 64)


def test_tampered_token_is_reported(cipher, descriptor) -> None:
    token = bytearray(cipher.encrypt_descriptor(descriptor))
    token[-5] ^= 0x01
    with pytest.raises(ReferenceDataError):
        cipher.decrypt_descriptor(bytes(token))


def test_token_from_another_key_is_reported(cipher, descriptor) -> None:
    other = DescriptorEncryption(Fernet.generate_key())
    with pytest.raises(ReferenceDataError):
        cipher.decrypt_descriptor(other.encrypt_descriptor(descriptor))


def test_wrong_payload_length_is_reported(descriptor) -> None:
    key = Fernet.generate_key()
    token = Fernet(key).encrypt(b"\x00" * 16)
    with pytest.raises(ReferenceDataError):
        DescriptorEncryption(key).decrypt_descriptor(token)


def test_non_bytes_token_is_rejected(cipher) -> None:
    with pytest.raises(TypeError):
        cipher.decrypt_descriptor("not-bytes")


@override_settings(FACE_DATA_ENCRYPTION_KEY=None)
def test_missing_key_is_a_configuration_error(descriptor) -> None:
    with pytest.raises(ImproperlyConfigured):
        DescriptorEncryption().encrypt_descriptor(descriptor)


def test_invalid_key_is_a_configuration_error(descriptor) -> None:
    with pytest.raises(ImproperlyConfigured):
        DescriptorEncryption("too-short").encrypt_descriptor(descriptor)


def test_settings_key_is_used_by_default(descriptor) -> None:
    token = DescriptorEncryption().encrypt_descriptor(descriptor)
    np.testing.assert_array_equal(DescriptorEncryption().decrypt_descriptor(token), descriptor)
