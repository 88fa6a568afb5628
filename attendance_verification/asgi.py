"""ASGI config for the attendance verification project."""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "attendance_verification.settings.production")

application = get_asgi_application()
