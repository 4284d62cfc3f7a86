"""
Provider callback endpoints.

Each endpoint parses the notification, hands it to a Celery task and
answers immediately in the shape the provider expects.  The answer does
not depend on whether the notification matched a booking: providers
retry on anything but success, and a retry cannot change our outcome.
"""
from __future__ import annotations

import hmac
import json
import logging

from django.conf import settings
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework import views
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from bookings.tasks import process_payment_webhook, process_payout_result

logger = logging.getLogger(__name__)

MPESA_ACCEPTED = {"ResultCode": 0, "ResultDesc": "Accepted"}


def _token_ok(request) -> bool:
    expected = getattr(settings, "PAYMENTS_WEBHOOK_TOKEN", "")
    if not expected:
        return True
    supplied = request.query_params.get("token", "")
    return hmac.compare_digest(supplied.encode(), expected.encode())


def _json_body(request):
    try:
        payload = json.loads(request.body.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


@method_decorator(csrf_exempt, name="dispatch")
class WebhookView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []  # providers do not authenticate
    throttle_classes = []

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        self.token_ok = _token_ok(request)

    def rejected(self):
        logger.warning("[WEBHOOK] %s called with a bad token", self.__class__.__name__)
        return Response({"detail": "Invalid token"}, status=403)


class MpesaCallbackView(WebhookView):
    """STK push result from Safaricom."""

    def post(self, request):
        if not self.token_ok:
            return self.rejected()
        payload = _json_body(request)
        if payload is None:
            return Response({"detail": "Invalid JSON"}, status=400)

        callback = (payload.get("Body") or {}).get("stkCallback") or {}
        logger.info(
            "[MPESA] callback checkout_request_id=%s result_code=%s",
            callback.get("CheckoutRequestID"), callback.get("ResultCode"),
        )
        process_payment_webhook.delay("mpesa", payload)
        return Response(MPESA_ACCEPTED)


class MpesaPayoutCallbackView(WebhookView):
    """B2C payout result from Safaricom."""

    def post(self, request):
        if not self.token_ok:
            return self.rejected()
        payload = _json_body(request)
        if payload is None:
            return Response({"detail": "Invalid JSON"}, status=400)

        result = payload.get("Result") or {}
        logger.info(
            "[MPESA] payout result conversation_id=%s result_code=%s",
            result.get("ConversationID"), result.get("ResultCode"),
        )
        process_payout_result.delay(payload)
        return Response(MPESA_ACCEPTED)


class PesapalIPNView(WebhookView):
    """Pesapal instant payment notification, delivered as GET or POST."""

    def get(self, request):
        if not self.token_ok:
            return self.rejected()
        payload = {
            "OrderTrackingId": request.query_params.get("OrderTrackingId", ""),
            "OrderMerchantReference": request.query_params.get("OrderMerchantReference", ""),
            "OrderNotificationType": request.query_params.get("OrderNotificationType", ""),
        }
        return self._accept(payload)

    def post(self, request):
        if not self.token_ok:
            return self.rejected()
        payload = _json_body(request)
        if payload is None:
            return Response({"detail": "Invalid JSON"}, status=400)
        return self._accept(payload)

    def _accept(self, payload):
        tracking_id = payload.get("OrderTrackingId") or ""
        logger.info("[PESAPAL] IPN order_tracking_id=%s", tracking_id)
        if tracking_id:
            process_payment_webhook.delay("pesapal", payload)
        return Response({
            "orderNotificationType": payload.get("OrderNotificationType") or "IPNCHANGE",
            "orderTrackingId": tracking_id,
            "orderMerchantReference": payload.get("OrderMerchantReference") or "",
            "status": 200,
        })
