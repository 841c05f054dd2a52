"""Translate matching engine errors into API responses."""

from rest_framework import status
from rest_framework.response import Response

from services.matching import (
    DriverUnavailableError,
    InvalidLocationError,
    InvalidStatusTransitionError,
    MatchingCapacityExceededError,
    MatchingError,
    NoDriverAvailableError,
    RequestNotPendingError,
    SessionNotFoundError,
    StaleOfferError,
    UnknownDriverError,
)

MATCHING_ERROR_STATUS = {
    InvalidLocationError: status.HTTP_400_BAD_REQUEST,
    UnknownDriverError: status.HTTP_404_NOT_FOUND,
    DriverUnavailableError: status.HTTP_409_CONFLICT,
    InvalidStatusTransitionError: status.HTTP_409_CONFLICT,
    StaleOfferError: status.HTTP_410_GONE,
    SessionNotFoundError: status.HTTP_404_NOT_FOUND,
    RequestNotPendingError: status.HTTP_400_BAD_REQUEST,
    NoDriverAvailableError: status.HTTP_404_NOT_FOUND,
    MatchingCapacityExceededError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_response(code: str, message: str, http_status: int, **extra) -> Response:
    return Response(
        {'success': False, 'error': code, 'message': message, **extra},
        status=http_status,
    )


def matching_error_response(exc: MatchingError, **extra) -> Response:
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    for exc_type in type(exc).__mro__:
        if exc_type in MATCHING_ERROR_STATUS:
            http_status = MATCHING_ERROR_STATUS[exc_type]
            break
    return error_response(exc.code, str(exc), http_status, **extra)
