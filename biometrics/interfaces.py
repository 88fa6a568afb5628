"""Collaborator contracts consumed by the verification orchestrator.

Implementations may be synchronous or asynchronous; the orchestrator awaits
coroutine results and runs plain callables in a worker thread so every wait
can be bounded by a timeout.
"""

from __future__ import annotations

from typing import Any, Awaitable, Protocol, Sequence, Union, runtime_checkable

import numpy as np

from .types import FaceDetection

MaybeAwaitable = Union[Any, Awaitable[Any]]


@runtime_checkable
class FrameSource(Protocol):
    def read(self) -> MaybeAwaitable:
        """Return the next frame, or ``None`` while the camera is warming up."""


@runtime_checkable
class FaceDetector(Protocol):
    def detect(self, frame: np.ndarray) -> Sequence[FaceDetection]:
        """Return every face found in ``frame``."""


@runtime_checkable
class DescriptorExtractor(Protocol):
    def embed(self, frame: np.ndarray) -> MaybeAwaitable:
        """Return a 128-float descriptor for the face in ``frame`` or ``None``."""


@runtime_checkable
class ReferenceStore(Protocol):
    def get_reference_descriptor(self, user_id: Any) -> MaybeAwaitable:
        """Return the enrolled descriptor for ``user_id`` or ``None``."""


__all__ = [
    "DescriptorExtractor",
    "FaceDetector",
    "FrameSource",
    "ReferenceStore",
]
