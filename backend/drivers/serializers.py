from rest_framework import serializers

from drivers.models import DriverProfile


class DriverBasicSerializer(serializers.ModelSerializer):
    """
    Lite version of driver info for ride details
    (sent to passengers once a ride is matched).
    """
    username = serializers.CharField(source="user.username", read_only=True)
    phone_number = serializers.CharField(source="user.phone_number", read_only=True)

    class Meta:
        model = DriverProfile
        fields = [
            "id",
            "username",
            "phone_number",
            "vehicle_number",
            "current_latitude",
            "current_longitude",
        ]


class LiveDriverSerializer(serializers.Serializer):
    """Registry snapshot of a driver (services.matching.Driver)."""
    id = serializers.IntegerField()
    status = serializers.SerializerMethodField()
    verification_status = serializers.SerializerMethodField()
    is_location_active = serializers.BooleanField()
    latitude = serializers.SerializerMethodField()
    longitude = serializers.SerializerMethodField()
    last_location_update = serializers.DateTimeField(allow_null=True)
    vehicle_capabilities = serializers.SerializerMethodField()

    def get_status(self, driver):
        return driver.status.value

    def get_verification_status(self, driver):
        return driver.verification_status.value

    def get_latitude(self, driver):
        return driver.location.latitude if driver.location else None

    def get_longitude(self, driver):
        return driver.location.longitude if driver.location else None

    def get_vehicle_capabilities(self, driver):
        return sorted(driver.vehicle_capabilities)


class DriverStatusSerializer(serializers.Serializer):
    """
    Serializer for updating driver availability (online/offline).
    Busy is set by the matching engine only.
    """
    status = serializers.ChoiceField(choices=["online", "offline"])


class LocationUpdateSerializer(serializers.Serializer):
    """
    Serializer for updating driver GPS location.
    """
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    timestamp = serializers.DateTimeField(required=False)
    is_location_active = serializers.BooleanField(required=False)
