"""Admin registrations for the biometrics app."""

from django.contrib import admin

from .models import FaceReference


@admin.register(FaceReference)
class FaceReferenceAdmin(admin.ModelAdmin):
    """List enrolled references without exposing descriptor contents."""

    list_display = ("user", "source", "created_at", "updated_at")
    list_filter = ("source",)
    search_fields = ("user__username",)
    ordering = ("-updated_at",)
    readonly_fields = ("created_at", "updated_at")
    exclude = ("encrypted_descriptor",)
