from django.urls import path

from .views import (
    EnrollReferenceView,
    HealthView,
    ThresholdsView,
    VerifyDescriptorView,
)

urlpatterns = [
    path("biometrics/reference/", EnrollReferenceView.as_view(), name="biometrics-reference"),
    path("biometrics/verify/", VerifyDescriptorView.as_view(), name="biometrics-verify"),
    path("biometrics/thresholds/", ThresholdsView.as_view(), name="biometrics-thresholds"),
    path("biometrics/health/", HealthView.as_view(), name="biometrics-health"),
]
