"""
Django admin registration for the payments app.
"""
from django.contrib import admin

from .models import PayoutAccount


@admin.register(PayoutAccount)
class PayoutAccountAdmin(admin.ModelAdmin):
    list_display = ("user", "mpesa_phone", "is_verified", "created_at")
    list_filter = ("is_verified",)
    search_fields = ("user__username", "user__email", "mpesa_phone")
    ordering = ("-created_at",)
