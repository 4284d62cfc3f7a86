"""
Admin configuration for the events app.

Seat counts are shown but not editable; they move only through bookings.
"""
from django.contrib import admin

from .models import Event


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ("title", "venue", "starts_at", "price", "tickets_remaining", "total_seats", "organizer")
    list_filter = ("starts_at",)
    search_fields = ("title", "venue", "location")
    ordering = ("-created_at",)

    def get_readonly_fields(self, request, obj=None):
        if obj is not None:
            return ("tickets_remaining",)
        return ()
