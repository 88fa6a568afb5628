import logging

from django.conf import settings
from django.contrib.admin.views.decorators import staff_member_required
from django.contrib.auth import get_user_model
from django.http import HttpResponse
from django.shortcuts import get_object_or_404

from rest_framework import permissions, status
from rest_framework.exceptions import PermissionDenied
from rest_framework.response import Response
from rest_framework.views import APIView

from biometrics import monitoring
from biometrics.exceptions import ReferenceDataError
from biometrics.orchestrator import VerificationConfig, match_descriptors
from biometrics.store import DjangoReferenceStore
from biometrics.types import FailureReason, VerificationOutcome

from .serializers import (
    EnrollReferenceSerializer,
    ThresholdsSerializer,
    VerifyDescriptorSerializer,
)

logger = logging.getLogger(__name__)

User = get_user_model()


def _resolve_target_user_id(request, requested_id):
    """Return the user id being acted on; only staff may act for others."""

    if requested_id is None or requested_id == request.user.pk:
        return request.user.pk
    if not request.user.is_staff:
        raise PermissionDenied("Only staff may act on another user's reference data.")
    return requested_id


class EnrollReferenceView(APIView):
    """Enroll, replace or remove the reference descriptor for a user."""

    permission_classes = [permissions.IsAuthenticated]
    store_class = DjangoReferenceStore

    def post(self, request):
        serializer = EnrollReferenceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        user_id = _resolve_target_user_id(request, data.get("user_id"))
        user = get_object_or_404(User, pk=user_id)
        reference = self.store_class().set_reference_descriptor(
            user, data["descriptor"], source=data["source"]
        )
        return Response(
            {
                "user_id": reference.user_id,
                "source": reference.source,
                "updated_at": reference.updated_at,
            },
            status=status.HTTP_201_CREATED,
        )

    def delete(self, request):
        raw_user_id = request.query_params.get("user_id")
        try:
            requested_id = int(raw_user_id) if raw_user_id else None
        except ValueError:
            return Response(
                {"user_id": ["A valid integer is required."]}, status=status.HTTP_400_BAD_REQUEST
            )

        user_id = _resolve_target_user_id(request, requested_id)
        removed = self.store_class().delete_reference(user_id)
        if not removed:
            return Response(
                {"detail": "No reference descriptor enrolled."}, status=status.HTTP_404_NOT_FOUND
            )
        return Response(status=status.HTTP_204_NO_CONTENT)


class VerifyDescriptorView(APIView):
    """Recompute a verification decision from a submitted probe descriptor.

    The client may run the full pipeline locally, but the decision that
    gates login or attendance is the one returned here: the reference is
    re-fetched server-side and compared with the same threshold the client
    would use. Both no-reference and below-threshold outcomes are returned
    with HTTP 200 and a distinct ``reason``.
    """

    permission_classes = [permissions.IsAuthenticated]
    store_class = DjangoReferenceStore

    def post(self, request):
        serializer = VerifyDescriptorSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        user_id = _resolve_target_user_id(request, data.get("user_id"))
        threshold = VerificationConfig.from_settings().match_threshold

        try:
            reference = self.store_class().get_reference_descriptor(user_id)
        except ReferenceDataError as exc:
            logger.error(
                "Stored reference descriptor is unreadable",
                extra={"event": "reference_lookup", "user_id": user_id, "status": "corrupt"},
            )
            outcome = VerificationOutcome.failure(
                FailureReason.NO_REFERENCE_DATA, threshold=threshold, detail=str(exc)
            )
        else:
            outcome = match_descriptors(data["descriptor"], reference, threshold)

        monitoring.record_outcome(
            outcome.verified, outcome.reason.value if outcome.reason else None, outcome.similarity
        )
        logger.info(
            "Server-side verification completed",
            extra={
                "event": "server_verification",
                "user_id": user_id,
                "purpose": data["purpose"],
                "verified": outcome.verified,
                "reason": outcome.reason.value if outcome.reason else None,
            },
        )
        payload = outcome.to_dict()
        payload["user_id"] = user_id
        payload["purpose"] = data["purpose"]
        return Response(payload, status=status.HTTP_200_OK)


class ThresholdsView(APIView):
    """Expose the decision thresholds so clients apply the same values."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        config = VerificationConfig.from_settings()
        serializer = ThresholdsSerializer(
            {
                "match_threshold": config.match_threshold,
                "min_capture_quality": config.min_capture_quality,
                "max_frame_attempts": config.max_frame_attempts,
                "multi_face_min_size": config.multi_face_min_size,
                "auto_capture_interval": float(
                    getattr(settings, "BIOMETRICS_AUTO_CAPTURE_INTERVAL", 0.5)
                ),
                "auto_capture_required_detections": int(
                    getattr(settings, "BIOMETRICS_AUTO_CAPTURE_REQUIRED_DETECTIONS", 2)
                ),
            }
        )
        return Response(serializer.data)


class HealthView(APIView):
    """Camera, stage timing and alert snapshot for administrators."""

    permission_classes = [permissions.IsAdminUser]

    def get(self, request):
        return Response(monitoring.get_health_snapshot())


@staff_member_required
def monitoring_metrics(request):
    """Expose Prometheus metrics for the biometrics app."""

    payload = monitoring.export_metrics()
    return HttpResponse(payload, content_type=monitoring.prometheus_content_type())
