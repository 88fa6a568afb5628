"""Default settings entry point; production deployments use ``settings.production``."""

from .base import *  # noqa: F401,F403
