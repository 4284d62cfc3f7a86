"""
URL configuration for the bookings app.

Include this module under ``/api/bookings/`` in the project-level URL config.
"""
from django.urls import path

from .views import BookingCreateView, BookingStatusView, MyBookingsView

urlpatterns = [
    path("", BookingCreateView.as_view(), name="booking-create"),
    path("mine/", MyBookingsView.as_view(), name="booking-mine"),
    path("<int:pk>/status/", BookingStatusView.as_view(), name="booking-status"),
]
