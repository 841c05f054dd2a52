from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from django.conf.urls.static import static

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check),  # Health check endpoint

    # JWT token endpoints
    path('api/auth/', include('accounts.urls')),

    # Driver APIs (status, location, pending offers)
    path('api/driver/', include('drivers.urls')),

    # Ride APIs (match, cancel, accept/reject/complete)
    path('api/rides/', include('rides.urls')),
]

# Serve media files in development
if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
