"""
Database models for the bookings app.

A `Booking` is one buyer's order for a number of seats at an event.  Its
`payment_status` moves one way only::

    pending -> processing -> completed | failed

with `pending -> failed` when the provider refuses to start a payment.
All transitions after `processing` go through a conditional UPDATE in
`bookings.services`, so a webhook and a status poll arriving together
cannot both apply.  Tickets exist only for completed bookings.
"""
from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q

from events.models import Event

from .commission import CommissionPolicy


class Booking(models.Model):
    """A buyer's order for tickets, tracked through payment."""

    STATUS_PENDING = "pending"
    STATUS_PROCESSING = "processing"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]

    METHOD_MPESA = "mpesa"
    METHOD_PESAPAL = "pesapal"
    METHOD_CHOICES = [
        (METHOD_MPESA, "M-Pesa"),
        (METHOD_PESAPAL, "Pesapal"),
    ]

    PAYOUT_NONE = "none"
    PAYOUT_PENDING = "payout_pending"
    PAYOUT_COMPLETED = "payout_completed"
    PAYOUT_FAILED = "payout_failed"
    PAYOUT_CHOICES = [
        (PAYOUT_NONE, "No payout"),
        (PAYOUT_PENDING, "Payout pending"),
        (PAYOUT_COMPLETED, "Payout completed"),
        (PAYOUT_FAILED, "Payout failed"),
    ]

    event = models.ForeignKey(Event, on_delete=models.PROTECT, related_name="bookings")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="bookings",
    )
    buyer_name = models.CharField(max_length=255)
    buyer_email = models.EmailField()
    buyer_phone = models.CharField(max_length=20, blank=True)
    ticket_quantity = models.PositiveIntegerField()
    total_price = models.DecimalField(max_digits=12, decimal_places=2)

    payment_status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)
    payment_method = models.CharField(max_length=16, choices=METHOD_CHOICES)
    payment_reference = models.CharField(
        max_length=255,
        blank=True,
        help_text="Provider correlation id (CheckoutRequestID / order tracking id)",
    )
    checkout_url = models.URLField(max_length=1000, blank=True)
    provider_transaction_id = models.CharField(max_length=255, blank=True, help_text="Provider receipt number")
    failure_reason = models.CharField(max_length=255, blank=True)

    commission_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    organizer_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    platform_fee_percentage = models.DecimalField(max_digits=5, decimal_places=4, default=Decimal("0"))

    payout_status = models.CharField(max_length=20, choices=PAYOUT_CHOICES, default=PAYOUT_NONE)
    payout_reference = models.CharField(max_length=255, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["payment_status", "created_at"], name="bookings_bo_payment_3c1f0e_idx"),
            models.Index(fields=["payment_reference"], name="bookings_bo_payment_8a7d21_idx"),
            models.Index(fields=["payout_reference"], name="bookings_bo_payout__5b9e43_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(ticket_quantity__gte=1), name="booking_quantity_positive"),
        ]

    @property
    def reference(self) -> str:
        """Merchant reference sent to providers."""
        return f"BOOKING-{self.pk}"

    @property
    def is_terminal(self) -> bool:
        return self.payment_status in (self.STATUS_COMPLETED, self.STATUS_FAILED)

    def __str__(self) -> str:
        return f"{self.reference} {self.ticket_quantity}x {self.event_id} ({self.payment_status})"


class Ticket(models.Model):
    """One admission issued for a completed booking."""

    booking = models.ForeignKey(Booking, on_delete=models.PROTECT, related_name="tickets")
    event = models.ForeignKey(Event, on_delete=models.PROTECT, related_name="tickets")
    sequence = models.PositiveIntegerField()
    scan_code = models.CharField(max_length=32, unique=True)
    is_scanned = models.BooleanField(default=False)
    scanned_at = models.DateTimeField(null=True, blank=True)
    scanned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="scanned_tickets",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["booking_id", "sequence"]
        constraints = [
            models.UniqueConstraint(fields=["booking", "sequence"], name="ticket_booking_sequence_unique"),
        ]

    def __str__(self) -> str:
        return f"{self.scan_code} ({self.sequence}/{self.booking.ticket_quantity})"


class CommissionSettings(models.Model):
    """Single row holding the platform's commission policy."""

    platform_fee_percentage = models.DecimalField(
        max_digits=5, decimal_places=4, help_text="Fraction of the total, e.g. 0.1000 for 10%"
    )
    minimum_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    maximum_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("1000.00"))
    is_active = models.BooleanField(default=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "commission settings"
        verbose_name_plural = "commission settings"
        constraints = [
            models.CheckConstraint(
                condition=Q(platform_fee_percentage__gte=0) & Q(platform_fee_percentage__lte=1),
                name="commission_percentage_fraction",
            ),
        ]

    def save(self, *args, **kwargs):
        self.pk = 1
        super().save(*args, **kwargs)

    @classmethod
    def load(cls) -> "CommissionSettings":
        defaults = getattr(settings, "COMMISSION_DEFAULTS", {})
        obj, _ = cls.objects.get_or_create(
            pk=1,
            defaults={
                "platform_fee_percentage": Decimal(str(defaults.get("PLATFORM_FEE_PERCENTAGE", "0.10"))),
                "minimum_fee": Decimal(str(defaults.get("MINIMUM_FEE", "0"))),
                "maximum_fee": Decimal(str(defaults.get("MAXIMUM_FEE", "1000"))),
                "is_active": bool(defaults.get("IS_ACTIVE", True)),
            },
        )
        return obj

    def as_policy(self) -> CommissionPolicy:
        return CommissionPolicy(
            platform_fee_percentage=self.platform_fee_percentage,
            minimum_fee=self.minimum_fee,
            maximum_fee=self.maximum_fee,
            is_active=self.is_active,
        )

    def __str__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"{self.platform_fee_percentage:%} platform fee ({state})"


class PaymentAttempt(models.Model):
    """Bookkeeping for one provider-side payment and its status polling."""

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="payment_attempts")
    provider = models.CharField(max_length=16, choices=Booking.METHOD_CHOICES)
    correlation_id = models.CharField(max_length=255, unique=True)
    started_at = models.DateTimeField(auto_now_add=True)
    poll_attempts = models.PositiveIntegerField(default=0)
    last_polled_at = models.DateTimeField(null=True, blank=True)
    poll_exhausted = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["-started_at"]
        indexes = [
            models.Index(fields=["provider", "is_active"], name="bookings_pa_provide_71c2d9_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.provider}:{self.correlation_id} ({self.poll_attempts} polls)"
