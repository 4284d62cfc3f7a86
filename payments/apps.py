from django.apps import AppConfig
from django.conf import settings


class PaymentsConfig(AppConfig):
    """Configuration for the payments app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"

    def ready(self):
        from .gateways import build_gateways

        # One adapter per provider for the whole process; see bookings.services.get_coordinator.
        self.gateways = build_gateways(
            getattr(settings, "PAYMENT_GATEWAYS", {}),
            webhook_token=getattr(settings, "PAYMENTS_WEBHOOK_TOKEN", ""),
        )
