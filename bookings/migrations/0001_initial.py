"""
Initial migration for the bookings app.

Creates bookings, their tickets and payment attempts, and the singleton
commission settings row.
"""
from decimal import Decimal

from django.db import migrations, models
import django.db.models.deletion
from django.conf import settings


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("events", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("buyer_name", models.CharField(max_length=255)),
                ("buyer_email", models.EmailField(max_length=254)),
                ("buyer_phone", models.CharField(blank=True, max_length=20)),
                ("ticket_quantity", models.PositiveIntegerField()),
                ("total_price", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(choices=[("mpesa", "M-Pesa"), ("pesapal", "Pesapal")], max_length=16),
                ),
                (
                    "payment_reference",
                    models.CharField(
                        blank=True,
                        help_text="Provider correlation id (CheckoutRequestID / order tracking id)",
                        max_length=255,
                    ),
                ),
                ("checkout_url", models.URLField(blank=True, max_length=1000)),
                (
                    "provider_transaction_id",
                    models.CharField(blank=True, help_text="Provider receipt number", max_length=255),
                ),
                ("failure_reason", models.CharField(blank=True, max_length=255)),
                ("commission_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("organizer_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("platform_fee_percentage", models.DecimalField(decimal_places=4, default=Decimal("0"), max_digits=5)),
                (
                    "payout_status",
                    models.CharField(
                        choices=[
                            ("none", "No payout"),
                            ("payout_pending", "Payout pending"),
                            ("payout_completed", "Payout completed"),
                            ("payout_failed", "Payout failed"),
                        ],
                        default="none",
                        max_length=20,
                    ),
                ),
                ("payout_reference", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "event",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="events.event",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["payment_status", "created_at"], name="bookings_bo_payment_3c1f0e_idx"),
                    models.Index(fields=["payment_reference"], name="bookings_bo_payment_8a7d21_idx"),
                    models.Index(fields=["payout_reference"], name="bookings_bo_payout__5b9e43_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(ticket_quantity__gte=1), name="booking_quantity_positive"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CommissionSettings",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "platform_fee_percentage",
                    models.DecimalField(
                        decimal_places=4, help_text="Fraction of the total, e.g. 0.1000 for 10%", max_digits=5
                    ),
                ),
                ("minimum_fee", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("maximum_fee", models.DecimalField(decimal_places=2, default=Decimal("1000.00"), max_digits=12)),
                ("is_active", models.BooleanField(default=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "commission settings",
                "verbose_name_plural": "commission settings",
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(platform_fee_percentage__gte=0) & models.Q(platform_fee_percentage__lte=1),
                        name="commission_percentage_fraction",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Ticket",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("sequence", models.PositiveIntegerField()),
                ("scan_code", models.CharField(max_length=32, unique=True)),
                ("is_scanned", models.BooleanField(default=False)),
                ("scanned_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="tickets",
                        to="bookings.booking",
                    ),
                ),
                (
                    "event",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="tickets",
                        to="events.event",
                    ),
                ),
                (
                    "scanned_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="scanned_tickets",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["booking_id", "sequence"],
                "constraints": [
                    models.UniqueConstraint(fields=("booking", "sequence"), name="ticket_booking_sequence_unique"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentAttempt",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "provider",
                    models.CharField(choices=[("mpesa", "M-Pesa"), ("pesapal", "Pesapal")], max_length=16),
                ),
                ("correlation_id", models.CharField(max_length=255, unique=True)),
                ("started_at", models.DateTimeField(auto_now_add=True)),
                ("poll_attempts", models.PositiveIntegerField(default=0)),
                ("last_polled_at", models.DateTimeField(blank=True, null=True)),
                ("poll_exhausted", models.BooleanField(default=False)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payment_attempts",
                        to="bookings.booking",
                    ),
                ),
            ],
            options={
                "ordering": ["-started_at"],
                "indexes": [
                    models.Index(fields=["provider", "is_active"], name="bookings_pa_provide_71c2d9_idx"),
                ],
            },
        ),
    ]
