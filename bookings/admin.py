"""
Django admin registration for the bookings app.

Financial fields on bookings are read-only and bookings cannot be
deleted; payment state only changes through reconciliation.
"""
from django.contrib import admin

from .models import Booking, CommissionSettings, PaymentAttempt, Ticket


class TicketInline(admin.TabularInline):
    model = Ticket
    extra = 0
    can_delete = False
    fields = ("sequence", "scan_code", "is_scanned", "scanned_at")
    readonly_fields = fields


class PaymentAttemptInline(admin.TabularInline):
    model = PaymentAttempt
    extra = 0
    can_delete = False
    fields = ("provider", "correlation_id", "poll_attempts", "last_polled_at", "poll_exhausted", "is_active")
    readonly_fields = fields


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "event",
        "buyer_name",
        "ticket_quantity",
        "total_price",
        "payment_method",
        "payment_status",
        "payout_status",
        "created_at",
    )
    list_filter = ("payment_status", "payment_method", "payout_status")
    search_fields = ("buyer_name", "buyer_email", "buyer_phone", "payment_reference", "provider_transaction_id")
    ordering = ("-created_at",)
    inlines = [TicketInline, PaymentAttemptInline]
    readonly_fields = (
        "event",
        "ticket_quantity",
        "total_price",
        "payment_status",
        "payment_method",
        "payment_reference",
        "checkout_url",
        "provider_transaction_id",
        "commission_amount",
        "organizer_amount",
        "platform_fee_percentage",
        "payout_status",
        "payout_reference",
        "failure_reason",
        "created_at",
        "completed_at",
        "updated_at",
    )

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Ticket)
class TicketAdmin(admin.ModelAdmin):
    list_display = ("scan_code", "event", "booking", "sequence", "is_scanned", "scanned_at")
    list_filter = ("is_scanned", "event")
    search_fields = ("scan_code",)
    readonly_fields = ("booking", "event", "sequence", "scan_code")

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(CommissionSettings)
class CommissionSettingsAdmin(admin.ModelAdmin):
    list_display = ("platform_fee_percentage", "minimum_fee", "maximum_fee", "is_active", "updated_at")

    def has_add_permission(self, request):
        return not CommissionSettings.objects.exists()

    def has_delete_permission(self, request, obj=None):
        return False
