"""App configuration for the biometrics app."""

from django.apps import AppConfig


class BiometricsConfig(AppConfig):
    """Configuration class for the biometrics app."""

    name = "biometrics"
    default_auto_field = "django.db.models.BigAutoField"
    verbose_name = "Biometric verification"
