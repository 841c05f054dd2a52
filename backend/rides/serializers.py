from rest_framework import serializers

from accounts.serializers import UserBasicSerializer
from drivers.serializers import DriverBasicSerializer
from .models import RideRequest, RideOffer


class RideRequestSerializer(serializers.ModelSerializer):
    """Serializer for Ride Requests"""
    passenger = UserBasicSerializer(read_only=True)
    driver = DriverBasicSerializer(read_only=True, source='driver.driver_profile')

    class Meta:
        model = RideRequest
        fields = ['id', 'passenger', 'driver', 'pickup_latitude', 'pickup_longitude',
                  'pickup_address', 'dropoff_latitude', 'dropoff_longitude', 'dropoff_address',
                  'number_of_passengers', 'search_radius', 'required_capabilities',
                  'status', 'requested_at', 'matched_at', 'completed_at', 'cancelled_at',
                  'failure_reason', 'cancellation_reason']
        read_only_fields = fields


class RideRequestCreateSerializer(serializers.Serializer):
    """Serializer for creating ride requests"""
    pickup_latitude = serializers.FloatField(min_value=-90, max_value=90)
    pickup_longitude = serializers.FloatField(min_value=-180, max_value=180)
    pickup_address = serializers.CharField(required=False, allow_blank=True, default="")
    dropoff_latitude = serializers.FloatField(min_value=-90, max_value=90, required=False)
    dropoff_longitude = serializers.FloatField(min_value=-180, max_value=180, required=False)
    dropoff_address = serializers.CharField(required=False, allow_blank=True, default="")
    number_of_passengers = serializers.IntegerField(min_value=1, default=1)
    # Search radius in meters, default 5km
    search_radius = serializers.IntegerField(min_value=1, default=5000)
    required_capabilities = serializers.ListField(
        child=serializers.CharField(max_length=50), required=False, default=list
    )

    def validate(self, data):
        has_lat = data.get("dropoff_latitude") is not None
        has_lon = data.get("dropoff_longitude") is not None
        if has_lat != has_lon:
            raise serializers.ValidationError("dropoff_latitude and dropoff_longitude go together")
        return data


class RideOfferSerializer(serializers.ModelSerializer):
    class Meta:
        model = RideOffer
        fields = ['id', 'driver', 'order', 'status', 'sent_at', 'expires_at', 'responded_at']


class RideCancelSerializer(serializers.Serializer):
    """Serializer for ride cancellation"""
    reason = serializers.CharField(required=False, allow_blank=True)
