"""Database models for the biometrics app."""

from __future__ import annotations

import logging
from typing import Any

from django.conf import settings
from django.db import models

import numpy as np

from .crypto import DescriptorEncryption

logger = logging.getLogger(__name__)


class FaceReference(models.Model):
    """The enrolled reference descriptor for one user.

    The descriptor is only ever stored encrypted; use :attr:`descriptor` to
    read or replace it.
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="face_reference",
    )
    encrypted_descriptor = models.BinaryField(editable=False)
    source = models.CharField(
        max_length=32,
        blank=True,
        default="enrollment",
        help_text="Where the reference was captured (e.g. 'enrollment', 'admin')",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Face Reference"
        verbose_name_plural = "Face References"

    def __str__(self) -> str:
        return f"Face reference for user {self.user_id}"

    @property
    def descriptor(self) -> np.ndarray:
        return DescriptorEncryption().decrypt_descriptor(self.encrypted_descriptor)

    @descriptor.setter
    def descriptor(self, value: Any) -> None:
        self.encrypted_descriptor = DescriptorEncryption().encrypt_descriptor(value)
