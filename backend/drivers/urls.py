from django.urls import path
from .views import (
    DriverStatusView,
    DriverLocationUpdateView,
    DriverPendingRequestsView,
)

urlpatterns = [
    path("status/", DriverStatusView.as_view(), name="driver-status"),
    path("location/", DriverLocationUpdateView.as_view(), name="driver-location"),
    path("pending-requests/", DriverPendingRequestsView.as_view(), name="driver-pending-requests"),
]
