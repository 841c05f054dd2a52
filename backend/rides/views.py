from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from common.utils.responses import error_response, matching_error_response
from services.matching import MatchingError
from services.ride_management import (
    RideManagementError,
    ActiveRideExistsError,
    DriverProfileNotFoundError,
    RideNotAvailableError,
    RideNotFoundError,
    accept_ride as accept_ride_offer,
    cancel_ride_by_passenger,
    complete_ride as complete_matched_ride,
    create_ride_request,
    get_current_passenger_ride,
    matching_state,
    reject_ride_offer as decline_ride_offer,
)
from .serializers import (
    RideRequestSerializer,
    RideRequestCreateSerializer,
    RideCancelSerializer,
    RideOfferSerializer,
)

RIDE_ERROR_STATUS = {
    RideNotFoundError: status.HTTP_404_NOT_FOUND,
    DriverProfileNotFoundError: status.HTTP_404_NOT_FOUND,
    RideNotAvailableError: status.HTTP_400_BAD_REQUEST,
    ActiveRideExistsError: status.HTTP_400_BAD_REQUEST,
}

STATUS_MESSAGES = {
    'pending': 'Searching for nearby drivers...',
    'offering': 'Waiting for a driver to accept...',
    'matched': 'Driver is on the way!',
    'completed': 'Your last ride is complete.',
    'expired': 'No driver accepted your ride in time. Please try again.',
    'cancelled': 'Your last ride was cancelled.',
    'failed': 'No drivers available at the moment. Please try again later.',
}


def ride_error_response(exc: RideManagementError, **extra) -> Response:
    http_status = RIDE_ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return error_response(exc.code, str(exc), http_status, **extra)


def _require_role(request, role, message):
    if request.user.role != role:
        return error_response('forbidden', message, status.HTTP_403_FORBIDDEN)
    return None


# ==================== Passenger Ride APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def match_best_driver(request):
    """
    Create a ride request and start offering it to the best nearby driver.

    Drivers are tried one at a time, nearest first; the passenger hears the
    outcome on their WebSocket group or by polling passenger/current/.
    """
    denied = _require_role(request, 'user', 'Only passengers can create ride requests')
    if denied:
        return denied

    serializer = RideRequestCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = create_ride_request(request.user, **serializer.validated_data)
    except RideManagementError as exc:
        return ride_error_response(exc)
    except MatchingError as exc:
        return matching_error_response(exc)

    return Response({
        'success': True,
        'ride': RideRequestSerializer(result.ride).data,
        'matching': result.extra['matching'],
        'message': result.message,
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_current_ride(request):
    """
    Get passenger's latest ride (POLLING ENDPOINT)

    Returns full driver details once the ride is matched, plus the live
    matching session while the engine is still working on it.
    """
    denied = _require_role(request, 'user', 'Only passengers can access this endpoint')
    if denied:
        return denied

    ride = get_current_passenger_ride(request.user)
    if not ride:
        return Response({
            'has_active_ride': False,
            'message': 'No active ride found'
        })

    return Response({
        'has_active_ride': ride.is_active,
        'ride': RideRequestSerializer(ride, context={'request': request}).data,
        'status': ride.status,
        'driver_assigned': ride.status == 'matched',
        'offers': RideOfferSerializer(ride.offers.order_by('order'), many=True).data,
        'matching': matching_state(ride.id),
        'message': STATUS_MESSAGES.get(ride.status, ''),
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_ride(request, ride_id):
    """
    Cancel ride by passenger

    Before a match this stops the search and withdraws the open offer; after a
    match the assigned driver is released and told about it.
    """
    serializer = RideCancelSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    reason = serializer.validated_data.get('reason') or 'No reason provided'
    try:
        result = cancel_ride_by_passenger(request.user, ride_id, reason)
    except RideManagementError as exc:
        return ride_error_response(exc, ride_id=ride_id)
    except MatchingError as exc:
        return matching_error_response(exc, ride_id=ride_id)

    return Response({
        'success': True,
        'message': result.message,
        'ride_id': result.ride.id,
        'was_assigned': result.extra['was_assigned'],
        'cancelled_at': result.ride.cancelled_at,
    })


# ==================== Driver Ride Actions ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def accept_ride(request, ride_id):
    """Accept the ride offer currently held by this driver."""
    denied = _require_role(request, 'driver', 'Only drivers can accept rides')
    if denied:
        return denied

    try:
        result = accept_ride_offer(request.user, ride_id)
    except RideManagementError as exc:
        return ride_error_response(exc, ride_id=ride_id)
    except MatchingError as exc:
        return matching_error_response(exc, ride_id=ride_id)

    return Response({
        'success': True,
        'ride': RideRequestSerializer(result.ride).data,
        'message': result.message,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def reject_ride_offer(request, ride_id):
    """Decline the ride offer; the engine moves on to the next best driver."""
    denied = _require_role(request, 'driver', 'Only drivers can reject rides')
    if denied:
        return denied

    try:
        result = decline_ride_offer(request.user, ride_id)
    except RideManagementError as exc:
        return ride_error_response(exc, ride_id=ride_id)
    except MatchingError as exc:
        return matching_error_response(exc, ride_id=ride_id)

    matching = result.extra['matching']
    queued_next_driver = matching['status'] == 'offering'
    return Response({
        'success': True,
        'ride_id': ride_id,
        'queued_next_driver': queued_next_driver,
        'message': (
            'Offer declined. We will notify the next available driver.'
            if queued_next_driver
            else 'Offer declined. No more drivers available for this ride.'
        ),
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def complete_ride(request, ride_id):
    """Complete a matched ride and put the driver back online."""
    denied = _require_role(request, 'driver', 'Only drivers can complete rides')
    if denied:
        return denied

    try:
        result = complete_matched_ride(request.user, ride_id)
    except RideManagementError as exc:
        return ride_error_response(exc, ride_id=ride_id)
    except MatchingError as exc:
        return matching_error_response(exc, ride_id=ride_id)

    return Response({
        'success': True,
        'message': result.message,
        'ride': RideRequestSerializer(result.ride).data,
    })
