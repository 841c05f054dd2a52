from django.db import models
from django.conf import settings

User = settings.AUTH_USER_MODEL


class DriverProfile(models.Model):
    """
    Durable copy of a driver's dispatch state.

    The matching engine's registry is authoritative while it runs; this row is
    written through from it and read back when the engine starts.
    """
    STATUS_CHOICES = [
        ('offline', 'Offline'),
        ('online', 'Online'),
        ('busy', 'Busy'),
    ]
    VERIFICATION_CHOICES = [
        ('pending', 'Pending'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
        ('under_review', 'Under review'),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='driver_profile')

    # Vehicle details
    vehicle_number = models.CharField(max_length=20, unique=True)
    # e.g. ["wheelchair", "xl"]; rides may require a subset
    vehicle_capabilities = models.JSONField(default=list, blank=True)

    # Availability & verification
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='offline')
    verification_status = models.CharField(max_length=20, choices=VERIFICATION_CHOICES, default='pending')
    is_location_active = models.BooleanField(default=False)
    # Engine stamp of the last status/verification/sharing change written here
    state_changed_at = models.DateTimeField(null=True, blank=True)

    # Last known position
    current_latitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    current_longitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    last_location_update = models.DateTimeField(null=True, blank=True)

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'driver_profiles'

    def __str__(self):
        return f"{self.user} - {self.vehicle_number}"

    @property
    def has_location(self):
        return self.current_latitude is not None and self.current_longitude is not None
