"""
WSGI config for the attendance verification project.

It exposes the WSGI callable as a module-level variable named ``application``.
"""

import os

from django.core.wsgi import get_wsgi_application

# Application servers default to the hardened production settings.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "attendance_verification.settings.production")

application = get_wsgi_application()
