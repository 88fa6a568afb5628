"""Fernet encryption for reference descriptors stored at rest."""

from __future__ import annotations

from typing import Any, Union

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

import numpy as np
from cryptography.fernet import Fernet, InvalidToken

from .descriptors import DESCRIPTOR_LENGTH, validate_descriptor
from .exceptions import ReferenceDataError

BytesLike = Union[bytes, bytearray, memoryview]

# Descriptors are serialised as little-endian float64.
_DTYPE = np.dtype("<f8")


class DescriptorEncryption:
    """Encrypt and decrypt 128-float reference descriptors."""

    def __init__(self, key: BytesLike | str | None = None) -> None:
        self._key_override = key
        self._cipher: Fernet | None = None

    def _resolve_key(self) -> bytes:
        key = self._key_override
        if key is None:
            key = getattr(settings, "FACE_DATA_ENCRYPTION_KEY", None)
        if not key:
            raise ImproperlyConfigured("FACE_DATA_ENCRYPTION_KEY is not configured.")
        key_bytes = key.encode() if isinstance(key, str) else bytes(key)
        try:
            Fernet(key_bytes)
        except (TypeError, ValueError) as exc:
            raise ImproperlyConfigured("FACE_DATA_ENCRYPTION_KEY is invalid.") from exc
        return key_bytes

    def _get_cipher(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._resolve_key())
        return self._cipher

    def encrypt_descriptor(self, descriptor: Any) -> bytes:
        """Validate and encrypt ``descriptor``.

        Raises:
            InvalidDescriptorError: If ``descriptor`` is not 128 finite floats.
        """

        vector = validate_descriptor(descriptor)
        return self._get_cipher().encrypt(vector.astype(_DTYPE).tobytes())

    def decrypt_descriptor(self, token: BytesLike) -> np.ndarray:
        """Decrypt a stored token back into a descriptor.

        Raises:
            ReferenceDataError: If the token was tampered with, was encrypted
                with another key, or does not hold a 128-float descriptor.
        """

        if not isinstance(token, (bytes, bytearray, memoryview)):
            raise TypeError("decrypt_descriptor expects a bytes-like object")
        try:
            payload = self._get_cipher().decrypt(bytes(token))
        except InvalidToken as exc:
            raise ReferenceDataError("Stored reference descriptor could not be decrypted") from exc

        if len(payload) != DESCRIPTOR_LENGTH * _DTYPE.itemsize:
            raise ReferenceDataError(
                f"Stored reference descriptor has {len(payload)} bytes, "
                f"expected {DESCRIPTOR_LENGTH * _DTYPE.itemsize}"
            )
        return np.frombuffer(payload, dtype=_DTYPE).astype(np.float64)


__all__ = ["DescriptorEncryption"]
