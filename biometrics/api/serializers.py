from rest_framework import serializers

from biometrics.descriptors import DESCRIPTOR_LENGTH, coerce_descriptor


class DescriptorField(serializers.ListField):
    """A list of exactly 128 finite floats."""

    child = serializers.FloatField()

    def __init__(self, **kwargs):
        kwargs.setdefault("min_length", DESCRIPTOR_LENGTH)
        kwargs.setdefault("max_length", DESCRIPTOR_LENGTH)
        kwargs.setdefault("allow_empty", False)
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        values = super().to_internal_value(data)
        vector = coerce_descriptor(values)
        if vector is None:
            raise serializers.ValidationError(
                f"Descriptor must contain exactly {DESCRIPTOR_LENGTH} finite floats."
            )
        return vector


class EnrollReferenceSerializer(serializers.Serializer):
    """Payload for enrolling or replacing a reference descriptor."""

    descriptor = DescriptorField()
    user_id = serializers.IntegerField(required=False, help_text="Staff only; defaults to caller")
    source = serializers.CharField(max_length=32, required=False, default="enrollment")


class VerifyDescriptorSerializer(serializers.Serializer):
    """Probe descriptor submitted for server-side re-verification."""

    descriptor = DescriptorField(help_text="Probe descriptor extracted on the client")
    user_id = serializers.IntegerField(required=False, help_text="Staff only; defaults to caller")
    purpose = serializers.ChoiceField(
        choices=[("login", "Login"), ("clock_in", "Clock in"), ("clock_out", "Clock out")],
        required=False,
        default="login",
    )


class ThresholdsSerializer(serializers.Serializer):
    match_threshold = serializers.FloatField()
    min_capture_quality = serializers.FloatField()
    max_frame_attempts = serializers.IntegerField()
    multi_face_min_size = serializers.IntegerField()
    auto_capture_interval = serializers.FloatField()
    auto_capture_required_detections = serializers.IntegerField()
