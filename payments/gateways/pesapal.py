"""
Pesapal v3 adapter.

Card and wallet payments go through Pesapal's hosted checkout: we submit
an order, hand the returned `redirect_url` to the buyer, and learn the
outcome from GetTransactionStatus.  Pesapal's IPN only tells us that
something changed for an order; it never carries the status itself.
"""
import logging
import threading
from datetime import timezone as dt_timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .base import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    HttpPaymentGateway,
    InitiationResult,
    PaymentRequest,
    PaymentResult,
)
from .exceptions import (
    PaymentProviderError,
    ProviderAuthError,
    ProviderDeclined,
    ProviderTransientError,
)

logger = logging.getLogger(__name__)

BASE_URLS = {
    "sandbox": "https://cybqa.pesapal.com/pesapalv3",
    "production": "https://pay.pesapal.com/v3",
}

# Tokens are documented to last five minutes.
DEFAULT_TOKEN_LIFETIME = 300

STATUS_CODES = {
    1: STATUS_COMPLETED,
    2: STATUS_FAILED,
    3: STATUS_FAILED,  # reversed
}
STATUS_DESCRIPTIONS = {
    "completed": STATUS_COMPLETED,
    "failed": STATUS_FAILED,
    "reversed": STATUS_FAILED,
}


def transaction_status(data: dict) -> str:
    code = data.get("status_code")
    try:
        code = int(code)
    except (TypeError, ValueError):
        code = None
    if code in STATUS_CODES:
        return STATUS_CODES[code]
    description = str(data.get("payment_status_description") or "").lower()
    return STATUS_DESCRIPTIONS.get(description, STATUS_PENDING)


class PesapalGateway(HttpPaymentGateway):
    method = "pesapal"
    log_prefix = "[PESAPAL]"

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        ipn_url: str,
        return_url: str,
        environment: str = "production",
        ipn_id: str = "",
        currency: str = "KES",
        session=None,
        timeout: int = 30,
    ):
        super().__init__(BASE_URLS.get(environment, BASE_URLS["production"]), session=session, timeout=timeout)
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.ipn_url = ipn_url
        self.return_url = return_url
        self.currency = currency
        self._ipn_id = ipn_id or None
        self._ipn_lock = threading.Lock()

    def _fetch_token(self):
        resp = self._send(
            "POST",
            "/api/Auth/RequestToken",
            json={"consumer_key": self.consumer_key, "consumer_secret": self.consumer_secret},
            headers={"Accept": "application/json"},
        )
        if resp.status_code != 200:
            raise ProviderAuthError("Could not obtain access token", code=resp.status_code, provider=self.method)
        data = self._json(resp)
        token = data.get("token")
        if not token:
            error = data.get("error") or {}
            if not isinstance(error, dict):
                error = {"message": str(error)}
            raise ProviderAuthError(
                error.get("message") or "Token response had no token",
                code=error.get("code") or "",
                provider=self.method,
            )
        lifetime = DEFAULT_TOKEN_LIFETIME
        expires = parse_datetime(data.get("expiryDate") or "")
        if expires is not None:
            if timezone.is_naive(expires):
                expires = timezone.make_aware(expires, dt_timezone.utc)
            lifetime = max((expires - timezone.now()).total_seconds(), 0)
        return token, lifetime

    def _call_checked(self, method: str, path: str, **kwargs) -> dict:
        """Like `_call`, but an `error` object in a 200 body is raised."""
        data = self._call(method, path, **kwargs)
        error = data.get("error") or {}
        if isinstance(error, dict) and (error.get("code") or error.get("message")):
            code = str(error.get("code") or "")
            message = error.get("message") or "Request rejected"
            logger.warning("[PESAPAL] %s returned error code=%s message=%s", path, code, message)
            if "consumer" in code or "token" in code:
                raise ProviderAuthError(message, code=code, provider=self.method)
            if str(data.get("status", "")).startswith("5") and not code:
                raise ProviderTransientError(message, provider=self.method)
            raise ProviderDeclined(message, code=code, provider=self.method)
        return data

    def ipn_id(self) -> str:
        """Register the IPN URL once per gateway instance, unless configured."""
        with self._ipn_lock:
            if self._ipn_id is None:
                data = self._call_checked(
                    "POST",
                    "/api/URLSetup/RegisterIPN",
                    json={"url": self.ipn_url, "ipn_notification_type": "POST"},
                )
                ipn_id = data.get("ipn_id")
                if not ipn_id:
                    raise ProviderTransientError("IPN registration returned no ipn_id", provider=self.method)
                logger.info("[PESAPAL] registered IPN url=%s id=%s", self.ipn_url, ipn_id)
                self._ipn_id = ipn_id
            return self._ipn_id

    def initiate(self, request: PaymentRequest) -> InitiationResult:
        first_name, _, last_name = (request.name or "").strip().partition(" ")
        payload = {
            "id": request.reference,
            "currency": self.currency,
            "amount": float(request.amount),
            "description": (request.description or "Event tickets")[:100],
            "callback_url": self.return_url,
            "notification_id": self.ipn_id(),
            "billing_address": {
                "email_address": request.email,
                "phone_number": request.phone,
                "first_name": first_name,
                "last_name": last_name,
            },
        }
        logger.info("[PESAPAL] submitting order ref=%s amount=%s", request.reference, payload["amount"])
        data = self._call_checked("POST", "/api/Transactions/SubmitOrderRequest", json=payload)

        tracking_id = data.get("order_tracking_id")
        redirect_url = data.get("redirect_url")
        if not tracking_id or not redirect_url:
            raise ProviderTransientError("Order response missing tracking id or redirect url", provider=self.method)
        return InitiationResult(
            correlation_id=tracking_id,
            checkout_url=redirect_url,
            customer_message="Continue to Pesapal to complete the payment",
        )

    def poll_status(self, correlation_id: str) -> PaymentResult:
        try:
            data = self._call(
                "GET",
                "/api/Transactions/GetTransactionStatus",
                params={"orderTrackingId": correlation_id},
            )
        except PaymentProviderError as e:
            logger.info("[PESAPAL] status query for %s inconclusive: %s", correlation_id, e)
            return PaymentResult.pending(correlation_id, error=str(e))

        status = transaction_status(data)
        amount = data.get("amount")
        return PaymentResult(
            status=status,
            correlation_id=correlation_id,
            amount=None if amount in (None, "") else _decimal(amount),
            transaction_id=str(data.get("confirmation_code") or ""),
            error="" if status == STATUS_COMPLETED else str(data.get("description") or ""),
            merchant_reference=str(data.get("merchant_reference") or ""),
        )

    def parse_webhook(self, payload: dict) -> PaymentResult:
        """
        Read an IPN.  The notification only names the order, so the result
        is pending and the caller is expected to poll for the real status.
        """
        correlation_id = (payload or {}).get("OrderTrackingId")
        if not correlation_id:
            raise ValueError("IPN payload has no OrderTrackingId")
        return PaymentResult(
            status=STATUS_PENDING,
            correlation_id=correlation_id,
            merchant_reference=payload.get("OrderMerchantReference") or "",
        )


def _decimal(value):
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def from_settings(conf: dict, session: Optional[object] = None) -> PesapalGateway:
    return PesapalGateway(
        consumer_key=conf.get("CONSUMER_KEY", ""),
        consumer_secret=conf.get("CONSUMER_SECRET", ""),
        ipn_url=conf.get("IPN_URL", ""),
        return_url=conf.get("RETURN_URL", ""),
        environment=conf.get("ENVIRONMENT", "production"),
        ipn_id=conf.get("IPN_ID", ""),
        currency=conf.get("CURRENCY", "KES"),
        session=session,
    )
