"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin
from .models import RideRequest, RideOffer


class RideOfferInline(admin.TabularInline):
    model = RideOffer
    extra = 0
    can_delete = False
    readonly_fields = ("driver", "order", "status", "sent_at", "expires_at", "responded_at")


@admin.register(RideRequest)
class RideRequestAdmin(admin.ModelAdmin):
    """Ride Request admin; rows are written by the matching engine"""
    list_display = ['id', 'passenger', 'driver', 'status', 'failure_reason', 'requested_at', 'matched_at']
    list_filter = ['status', 'failure_reason', 'requested_at']
    search_fields = ['passenger__username', 'driver__username', 'pickup_address']
    readonly_fields = ['requested_at', 'matched_at', 'completed_at', 'cancelled_at', 'finished_at']
    date_hierarchy = 'requested_at'
    inlines = [RideOfferInline]


@admin.register(RideOffer)
class RideOfferAdmin(admin.ModelAdmin):
    list_display = ("ride", "driver", "order", "status", "sent_at", "expires_at", "responded_at")
    list_filter = ("status",)
    search_fields = ("ride__id", "driver__username")
