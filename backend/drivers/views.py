from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from common.utils.responses import error_response, matching_error_response
from drivers.models import DriverProfile
from drivers.serializers import (
    DriverStatusSerializer,
    LiveDriverSerializer,
    LocationUpdateSerializer,
)
from drivers import services
from rides.serializers import RideRequestSerializer
from services.matching import MatchingError
from services.ride_management import get_pending_offers


# Utility: Ensure request.user is a driver
def require_driver(user):
    if user.role != "driver":
        return False, error_response("forbidden", "Only drivers allowed", 403)
    try:
        profile = user.driver_profile
        return True, profile
    except DriverProfile.DoesNotExist:
        return False, error_response("profile_not_found", "Driver profile not found", 404)


class DriverStatusView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        try:
            driver = services.get_registry().get(profile.user_id)
        except MatchingError as exc:
            return matching_error_response(exc)
        return Response(LiveDriverSerializer(driver).data)

    def put(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = DriverStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        new_status = serializer.validated_data["status"]

        try:
            driver = services.update_driver_status(profile.user_id, new_status)
        except MatchingError as exc:
            return matching_error_response(exc)

        return Response({
            "success": True,
            "message": f"Status updated to {driver.status.value}",
            "status": driver.status.value,
        })


#    HTTP fallback for the WebSocket location stream.
class DriverLocationUpdateView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            applied = services.ingest_location(
                profile.user_id,
                data["latitude"],
                data["longitude"],
                timestamp=data.get("timestamp"),
                is_location_active=data.get("is_location_active"),
            )
        except MatchingError as exc:
            return matching_error_response(exc)

        return Response({
            "success": True,
            "applied": applied,
            "message": "Location updated" if applied else "Older than the last known location; ignored",
            "latitude": data["latitude"],
            "longitude": data["longitude"],
        })


class DriverPendingRequestsView(APIView):
    """Rides currently offered to this driver, with the time left to answer."""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        pending = get_pending_offers(request.user)
        rides = []
        for ride, offer in pending:
            rides.append({
                **RideRequestSerializer(ride, context={"request": request}).data,
                "offer_id": offer.id,
                "offered_at": offer.offered_at,
                "expires_at": offer.expires_at,
            })

        return Response({"count": len(rides), "rides": rides})
