"""
Views for the bookings app.

Checkout is open to guests; a signed-in buyer's bookings are also linked
to their account and listed under `mine/`.  Status reads come from the
database, with an optional single provider poll via ``?refresh=1``.
"""
from __future__ import annotations

import logging

from rest_framework import generics, permissions, status, views
from rest_framework.response import Response

from events.inventory import EventNotFound, InsufficientInventory

from .exceptions import BookingValidationError
from .models import Booking
from .reports import commission_summary
from .serializers import BookingSerializer, CommissionSummarySerializer, CreateBookingSerializer
from .services import BuyerDetails, get_coordinator

logger = logging.getLogger(__name__)

TRUTHY = ("1", "true", "t", "yes", "y")


class BookingCreateView(views.APIView):
    """Reserve tickets and start payment with the chosen provider."""

    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = CreateBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = get_coordinator().create_booking(
                event_id=data["event_id"],
                buyer=BuyerDetails(name=data["name"], email=data["email"], phone=data.get("phone", "")),
                quantity=data["ticket_quantity"],
                payment_method=data["payment_method"],
                user=request.user,
            )
        except BookingValidationError as e:
            return Response({"detail": e.message, "field": e.field}, status=status.HTTP_400_BAD_REQUEST)
        except EventNotFound:
            return Response({"detail": "Event not found."}, status=status.HTTP_404_NOT_FOUND)
        except InsufficientInventory as e:
            return Response(
                {"detail": "Not enough tickets available.", "available": e.available},
                status=status.HTTP_409_CONFLICT,
            )

        body = {
            "booking": BookingSerializer(result.booking).data,
            "customer_message": result.customer_message,
        }
        if not result.ok:
            body["detail"] = "Payment could not be started."
            code = status.HTTP_502_BAD_GATEWAY if result.error.retryable else status.HTTP_402_PAYMENT_REQUIRED
            return Response(body, status=code)
        return Response(body, status=status.HTTP_201_CREATED)


class BookingStatusView(views.APIView):
    permission_classes = [permissions.AllowAny]

    def get(self, request, pk):
        coordinator = get_coordinator()
        try:
            booking = coordinator.get_booking_status(pk)
        except Booking.DoesNotExist:
            return Response({"detail": "Booking not found."}, status=status.HTTP_404_NOT_FOUND)

        # Bookings tied to an account are only visible to that account and staff.
        user = request.user
        if booking.user_id and not (user.is_authenticated and (user.pk == booking.user_id or user.is_staff)):
            return Response({"detail": "Booking not found."}, status=status.HTTP_404_NOT_FOUND)

        if request.query_params.get("refresh", "").lower() in TRUTHY:
            booking = coordinator.get_booking_status(pk, refresh=True)
        return Response(BookingSerializer(booking).data)


class MyBookingsView(generics.ListAPIView):
    """Bookings made while signed in as the current user."""

    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return (
            Booking.objects.filter(user=self.request.user)
            .select_related("event")
            .prefetch_related("tickets")
            .order_by("-created_at")
        )


class CommissionSummaryView(views.APIView):
    permission_classes = [permissions.IsAdminUser]

    def get(self, request):
        event_id = request.query_params.get("event")
        if event_id is not None and not event_id.isdigit():
            return Response({"detail": "event must be an id."}, status=status.HTTP_400_BAD_REQUEST)
        summary = commission_summary(int(event_id) if event_id else None)
        return Response(CommissionSummarySerializer(summary).data)
