"""
URL configuration for the payments app.

Exposes the provider callback endpoints.  Include this module under
``/api/payments/`` in the project-level URL config.
"""
from django.urls import path

from .views import MpesaCallbackView, MpesaPayoutCallbackView, PesapalIPNView

urlpatterns = [
    path("mpesa/callback/", MpesaCallbackView.as_view(), name="mpesa-callback"),
    path("mpesa/payout-callback/", MpesaPayoutCallbackView.as_view(), name="mpesa-payout-callback"),
    path("pesapal/ipn/", PesapalIPNView.as_view(), name="pesapal-ipn"),
]
