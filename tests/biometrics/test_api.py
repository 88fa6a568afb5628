"""Tests for the biometrics REST endpoints."""

from django.contrib.auth import get_user_model
from django.test import override_settings
from django.urls import reverse

import numpy as np
import pytest
from rest_framework.test import APIClient

from biometrics.models import FaceReference
from biometrics.store import DjangoReferenceStore

pytestmark = pytest.mark.django_db


@pytest.fixture
def user():
    return get_user_model().objects.create_user(username="bob", password="pass-1234")


@pytest.fixture
def staff():
    return get_user_model().objects.create_user(
        username="admin", password="pass-1234", is_staff=True
    )


@pytest.fixture
def client(user):
    api_client = APIClient()
    api_client.force_authenticate(user=user)
    return api_client


def _payload(vector, **extra):
    return {"descriptor": [float(value) for value in vector], **extra}


class TestEnroll:
    def test_user_enrolls_own_reference(self, client, user, descriptor) -> None:
        response = client.post(reverse("biometrics-reference"), _payload(descriptor), format="json")

        assert response.status_code == 201
        assert response.data["user_id"] == user.pk
        assert FaceReference.objects.filter(user=user).exists()

    def test_wrong_length_is_rejected(self, client) -> None:
        response = client.post(
            reverse("biometrics-reference"), {"descriptor": [0.5] * 127}, format="json"
        )
        assert response.status_code == 400
        assert "descriptor" in response.data

    def test_non_staff_cannot_enroll_others(self, client, staff, descriptor) -> None:
        response = client.post(
            reverse("biometrics-reference"), _payload(descriptor, user_id=staff.pk), format="json"
        )
        assert response.status_code == 403

    def test_staff_enrolls_for_user(self, staff, user, descriptor) -> None:
        api_client = APIClient()
        api_client.force_authenticate(user=staff)
        response = api_client.post(
            reverse("biometrics-reference"),
            _payload(descriptor, user_id=user.pk, source="admin"),
            format="json",
        )

        assert response.status_code == 201
        assert FaceReference.objects.get(user=user).source == "admin"

    def test_delete_reference(self, client, user, descriptor) -> None:
        DjangoReferenceStore().set_reference_descriptor(user, descriptor)

        assert client.delete(reverse("biometrics-reference")).status_code == 204
        assert client.delete(reverse("biometrics-reference")).status_code == 404

    def test_anonymous_requests_are_refused(self, descriptor) -> None:
        response = APIClient().post(
            reverse("biometrics-reference"), _payload(descriptor), format="json"
        )
        assert response.status_code in (401, 403)


class TestServerSideVerification:
    def test_matching_probe_verifies(self, client, user, descriptor) -> None:
        DjangoReferenceStore().set_reference_descriptor(user, descriptor)

        response = client.post(
            reverse("biometrics-verify"), _payload(descriptor, purpose="clock_in"), format="json"
        )

        assert response.status_code == 200
        assert response.data["verified"] is True
        assert response.data["similarity"] == pytest.approx(1.0)
        assert response.data["purpose"] == "clock_in"

    def test_negated_probe_is_below_threshold(self, client, user, descriptor) -> None:
        DjangoReferenceStore().set_reference_descriptor(user, descriptor)

        response = client.post(reverse("biometrics-verify"), _payload(-descriptor), format="json")

        assert response.status_code == 200
        assert response.data["verified"] is False
        assert response.data["reason"] == "below-threshold"
        assert response.data["similarity"] == pytest.approx(0.0, abs=1e-9)

    def test_missing_reference_is_reported_distinctly(self, client, descriptor) -> None:
        response = client.post(reverse("biometrics-verify"), _payload(descriptor), format="json")

        assert response.status_code == 200
        assert response.data["verified"] is False
        assert response.data["reason"] == "no-reference-data"
        assert response.data["similarity"] is None

    def test_corrupt_reference_is_reported_as_missing(self, client, user, descriptor) -> None:
        DjangoReferenceStore().set_reference_descriptor(user, descriptor)
        FaceReference.objects.filter(user=user).update(encrypted_descriptor=b"garbage")

        response = client.post(reverse("biometrics-verify"), _payload(descriptor), format="json")
        assert response.data["reason"] == "no-reference-data"

    @override_settings(BIOMETRICS_MATCH_THRESHOLD=0.95)
    def test_threshold_comes_from_settings(self, client, user, descriptor) -> None:
        noisy = descriptor + np.random.default_rng(1).normal(0.0, 0.3, 128)
        DjangoReferenceStore().set_reference_descriptor(user, descriptor)

        response = client.post(reverse("biometrics-verify"), _payload(noisy), format="json")

        assert response.data["threshold"] == 0.95
        assert response.data["verified"] is False

    def test_invalid_probe_is_rejected(self, client) -> None:
        response = client.post(
            reverse("biometrics-verify"), {"descriptor": "not-a-list"}, format="json"
        )
        assert response.status_code == 400

    def test_non_staff_cannot_verify_other_users(self, client, staff, descriptor) -> None:
        response = client.post(
            reverse("biometrics-verify"), _payload(descriptor, user_id=staff.pk), format="json"
        )
        assert response.status_code == 403


def test_thresholds_endpoint(client) -> None:
    response = client.get(reverse("biometrics-thresholds"))

    assert response.status_code == 200
    assert response.data["match_threshold"] == 0.55
    assert response.data["min_capture_quality"] == 0.55
    assert response.data["auto_capture_required_detections"] == 2


def test_health_requires_staff(client, staff) -> None:
    assert client.get(reverse("biometrics-health")).status_code == 403

    admin_client = APIClient()
    admin_client.force_authenticate(user=staff)
    response = admin_client.get(reverse("biometrics-health"))
    assert response.status_code == 200
    assert "camera" in response.data


def test_metrics_endpoint_exports_verification_counts(client, user, staff, descriptor) -> None:
    DjangoReferenceStore().set_reference_descriptor(user, descriptor)
    client.post(reverse("biometrics-verify"), _payload(descriptor), format="json")

    from django.test import Client

    browser = Client()
    browser.force_login(staff)
    response = browser.get(reverse("monitoring-metrics"))

    assert response.status_code == 200
    body = response.content.decode()
    assert 'biometrics_verification_total{result="verified",reason="none"} 1.0' in body
