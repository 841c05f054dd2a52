from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from accounts.models import User
from drivers.models import DriverProfile


class DriverProfileInline(admin.StackedInline):
    model = DriverProfile
    can_delete = False
    extra = 0
    fields = ("vehicle_number", "vehicle_capabilities", "verification_status", "status")
    readonly_fields = ("status",)


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Users with their role; drivers show their profile inline"""

    list_display = ["username", "role", "phone_number", "completed_rides", "is_active"]
    list_filter = ["role", "is_active", "is_staff"]
    search_fields = ["username", "email", "phone_number"]
    ordering = ("username",)

    fieldsets = BaseUserAdmin.fieldsets + (
        ("Dispatch", {"fields": ("role", "phone_number", "profile_picture", "completed_rides")}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Dispatch", {"fields": ("role", "phone_number")}),
    )

    def get_inlines(self, request, obj):
        if obj is not None and obj.role == "driver":
            return [DriverProfileInline]
        return []
