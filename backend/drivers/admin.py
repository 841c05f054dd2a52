from django.contrib import admin, messages

from drivers.models import DriverProfile
from drivers.services import set_driver_verification
from services.matching import MatchingError


@admin.register(DriverProfile)
class DriverProfileAdmin(admin.ModelAdmin):
    """Driver profiles; verification changes go through the live registry"""

    list_display = [
        "user",
        "vehicle_number",
        "status",
        "verification_status",
        "is_location_active",
        "last_location_update",
    ]
    list_filter = ["status", "verification_status", "is_location_active"]
    search_fields = ["user__username", "vehicle_number"]
    readonly_fields = [
        "status",
        "is_location_active",
        "current_latitude",
        "current_longitude",
        "last_location_update",
        "state_changed_at",
    ]
    ordering = ("user__username",)
    actions = ["approve_drivers", "reject_drivers", "mark_under_review"]

    def _set_verification(self, request, queryset, verification_status):
        updated = 0
        for profile in queryset:
            try:
                set_driver_verification(profile.user_id, verification_status)
                updated += 1
            except MatchingError as exc:
                self.message_user(request, f"{profile}: {exc}", level=messages.ERROR)
        self.message_user(request, f"{updated} driver(s) marked {verification_status}")

    @admin.action(description="Approve selected drivers")
    def approve_drivers(self, request, queryset):
        self._set_verification(request, queryset, "approved")

    @admin.action(description="Reject selected drivers")
    def reject_drivers(self, request, queryset):
        self._set_verification(request, queryset, "rejected")

    @admin.action(description="Mark selected drivers under review")
    def mark_under_review(self, request, queryset):
        self._set_verification(request, queryset, "under_review")
