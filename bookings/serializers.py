"""
Serializers for the bookings app.

Input serializers only check shapes; business rules (ticket limits,
phone numbers, availability) are enforced by the booking coordinator.
"""
from __future__ import annotations

from rest_framework import serializers

from .models import Booking, Ticket
from .services import status_message


class CreateBookingSerializer(serializers.Serializer):
    event_id = serializers.IntegerField()
    ticket_quantity = serializers.IntegerField(min_value=1)
    payment_method = serializers.ChoiceField(choices=Booking.METHOD_CHOICES)
    name = serializers.CharField(max_length=255)
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")


class TicketSerializer(serializers.ModelSerializer):
    class Meta:
        model = Ticket
        fields = ["id", "sequence", "scan_code", "is_scanned", "scanned_at"]
        read_only_fields = fields


class BookingSerializer(serializers.ModelSerializer):
    """Buyer-facing view of a booking (read-only)."""

    reference = serializers.CharField(read_only=True)
    event_id = serializers.IntegerField(source="event.id", read_only=True)
    event_title = serializers.CharField(source="event.title", read_only=True)
    message = serializers.SerializerMethodField()
    tickets = serializers.SerializerMethodField()

    class Meta:
        model = Booking
        fields = [
            "id",
            "reference",
            "event_id",
            "event_title",
            "buyer_name",
            "buyer_email",
            "buyer_phone",
            "ticket_quantity",
            "total_price",
            "payment_method",
            "payment_status",
            "payment_reference",
            "checkout_url",
            "provider_transaction_id",
            "failure_reason",
            "message",
            "tickets",
            "created_at",
            "completed_at",
        ]
        read_only_fields = fields

    def get_message(self, obj) -> str:
        return status_message(obj)

    def get_tickets(self, obj) -> list:
        if obj.payment_status != Booking.STATUS_COMPLETED:
            return []
        return TicketSerializer(obj.tickets.order_by("sequence"), many=True).data


class CommissionSummarySerializer(serializers.Serializer):
    total_revenue = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_commission = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_organizer_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    average_commission = serializers.DecimalField(max_digits=14, decimal_places=2)
    tickets_sold = serializers.IntegerField()
    completed_bookings = serializers.IntegerField()
    bookings_by_status = serializers.DictField(child=serializers.IntegerField())
