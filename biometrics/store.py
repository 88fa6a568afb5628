"""Django-backed reference descriptor store."""

from __future__ import annotations

import logging
from typing import Any, Optional

from django.db import transaction

import numpy as np
from asgiref.sync import sync_to_async

from .descriptors import validate_descriptor
from .models import FaceReference

logger = logging.getLogger(__name__)


class DjangoReferenceStore:
    """Read and write enrolled descriptors through :class:`FaceReference`.

    ``get_reference_descriptor`` is synchronous; the orchestrator runs it in a
    worker thread. Async callers outside the orchestrator can use
    :meth:`aget_reference_descriptor`.
    """

    def get_reference_descriptor(self, user_id: Any) -> Optional[np.ndarray]:
        """Return the decrypted descriptor for ``user_id`` or ``None``.

        Raises:
            ReferenceDataError: If a stored record exists but cannot be decoded.
        """

        reference = FaceReference.objects.filter(user_id=user_id).first()
        if reference is None:
            logger.info(
                "No reference descriptor enrolled",
                extra={"event": "reference_lookup", "user_id": user_id, "status": "missing"},
            )
            return None
        return reference.descriptor

    async def aget_reference_descriptor(self, user_id: Any) -> Optional[np.ndarray]:
        return await sync_to_async(self.get_reference_descriptor, thread_sensitive=True)(user_id)

    def set_reference_descriptor(
        self, user: Any, descriptor: Any, *, source: str = "enrollment"
    ) -> FaceReference:
        """Create or replace the reference descriptor for ``user``."""

        vector = validate_descriptor(descriptor)
        with transaction.atomic():
            reference, created = FaceReference.objects.select_for_update().get_or_create(
                user=user,
                defaults={"source": source, "encrypted_descriptor": b""},
            )
            reference.descriptor = vector
            reference.source = source
            reference.save()

        logger.info(
            "Reference descriptor %s",
            "enrolled" if created else "replaced",
            extra={"event": "reference_enroll", "user_id": reference.user_id, "source": source},
        )
        return reference

    def delete_reference(self, user_id: Any) -> bool:
        deleted, _ = FaceReference.objects.filter(user_id=user_id).delete()
        if deleted:
            logger.info(
                "Reference descriptor removed",
                extra={"event": "reference_delete", "user_id": user_id},
            )
        return bool(deleted)

    def has_reference(self, user_id: Any) -> bool:
        return FaceReference.objects.filter(user_id=user_id).exists()


__all__ = ["DjangoReferenceStore"]
