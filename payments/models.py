"""
Database models for the payments app.

Organizers receive their share of completed bookings over M-Pesa B2C.
A `PayoutAccount` records the number to pay out to; payouts are only
attempted once an administrator has verified it.
"""
from __future__ import annotations

from django.conf import settings
from django.db import models


class PayoutAccount(models.Model):
    """An organizer's M-Pesa number for receiving payouts."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payout_account",
    )
    mpesa_phone = models.CharField(max_length=20, help_text="Number in 2547XXXXXXXX form")
    is_verified = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        state = "verified" if self.is_verified else "unverified"
        return f"{self.user} -> {self.mpesa_phone} ({state})"
