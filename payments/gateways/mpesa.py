"""
M-Pesa (Safaricom Daraja) adapter.

Buyers pay through an STK push: we ask Safaricom to prompt the buyer's
phone, Safaricom answers with a `CheckoutRequestID`, and the outcome
arrives later on our callback URL or through the STK query endpoint.
Organizer payouts use the B2C payment request.
"""
import base64
import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from .base import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    HttpPaymentGateway,
    InitiationResult,
    PaymentRequest,
    PaymentResult,
    PayoutResult,
)
from .exceptions import (
    PaymentProviderError,
    ProviderAuthError,
    ProviderDeclined,
    ProviderTransientError,
)
from .phone import normalize_msisdn

logger = logging.getLogger(__name__)

BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}

NAIROBI = ZoneInfo("Africa/Nairobi")

# Returned by the STK query while the buyer has not answered the prompt yet.
TRANSACTION_IN_PROGRESS = "500.001.1001"
# Result codes that do not settle the payment either way.
PENDING_RESULT_CODES = {"4999", "1001"}

ACCOUNT_REFERENCE_MAX = 12
TRANSACTION_DESC_MAX = 13


def result_status(code) -> str:
    """Map an STK result code to a payment status."""
    if code is None or code == "":
        return STATUS_PENDING
    code = str(code)
    if code == "0":
        return STATUS_COMPLETED
    if code in PENDING_RESULT_CODES:
        return STATUS_PENDING
    return STATUS_FAILED


def whole_shillings(amount) -> int:
    return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class MpesaGateway(HttpPaymentGateway):
    method = "mpesa"
    log_prefix = "[MPESA]"

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        callback_url: str,
        environment: str = "sandbox",
        b2c_shortcode: str = "",
        b2c_initiator_name: str = "",
        b2c_security_credential: str = "",
        payout_result_url: str = "",
        session=None,
        timeout: int = 30,
    ):
        super().__init__(BASE_URLS.get(environment, BASE_URLS["sandbox"]), session=session, timeout=timeout)
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = str(shortcode)
        self.passkey = passkey
        self.callback_url = callback_url
        self.b2c_shortcode = str(b2c_shortcode or "")
        self.b2c_initiator_name = b2c_initiator_name
        self.b2c_security_credential = b2c_security_credential
        self.payout_result_url = payout_result_url

    def _fetch_token(self):
        resp = self._send(
            "GET",
            "/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(self.consumer_key, self.consumer_secret),
        )
        if resp.status_code != 200:
            logger.warning("[MPESA] token request failed status=%s", resp.status_code)
            raise ProviderAuthError("Could not obtain access token", code=resp.status_code, provider=self.method)
        data = self._json(resp)
        token = data.get("access_token")
        if not token:
            raise ProviderAuthError("Token response had no access_token", provider=self.method)
        try:
            lifetime = float(data.get("expires_in") or 3599)
        except (TypeError, ValueError):
            lifetime = 3599.0
        return token, lifetime

    def _raise_for_response(self, resp) -> None:
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            code = str(body.get("errorCode") or "") if isinstance(body, dict) else ""
            if code == TRANSACTION_IN_PROGRESS:
                raise ProviderTransientError(
                    body.get("errorMessage") or "The transaction is being processed",
                    code=code,
                    provider=self.method,
                )
            if code and 400 <= resp.status_code < 500 and resp.status_code not in (401, 403, 429):
                raise ProviderDeclined(body.get("errorMessage") or "Request rejected", code=code, provider=self.method)
        super()._raise_for_response(resp)

    def _password(self, shortcode: str, timestamp: str) -> str:
        raw = f"{shortcode}{self.passkey}{timestamp}".encode()
        return base64.b64encode(raw).decode()

    @staticmethod
    def _timestamp() -> str:
        return datetime.now(NAIROBI).strftime("%Y%m%d%H%M%S")

    def initiate(self, request: PaymentRequest) -> InitiationResult:
        try:
            phone = normalize_msisdn(request.phone)
        except ValueError as e:
            raise ProviderDeclined(str(e), code="invalid_phone", provider=self.method) from e

        timestamp = self._timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(self.shortcode, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": whole_shillings(request.amount),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": request.reference[:ACCOUNT_REFERENCE_MAX],
            "TransactionDesc": (request.description or "Tickets")[:TRANSACTION_DESC_MAX],
        }
        logger.info("[MPESA] STK push ref=%s amount=%s", request.reference, payload["Amount"])
        data = self._call("POST", "/mpesa/stkpush/v1/processrequest", json=payload)

        if str(data.get("ResponseCode")) != "0":
            raise ProviderDeclined(
                data.get("ResponseDescription") or data.get("errorMessage") or "STK push rejected",
                code=data.get("ResponseCode") or data.get("errorCode") or "",
                provider=self.method,
            )

        checkout_request_id = data.get("CheckoutRequestID")
        if not checkout_request_id:
            raise ProviderTransientError("STK push response had no CheckoutRequestID", provider=self.method)
        return InitiationResult(
            correlation_id=checkout_request_id,
            customer_message=data.get("CustomerMessage") or "Check your phone to complete the payment",
        )

    def poll_status(self, correlation_id: str) -> PaymentResult:
        timestamp = self._timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(self.shortcode, timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": correlation_id,
        }
        try:
            data = self._call("POST", "/mpesa/stkpushquery/v1/query", json=payload)
        except PaymentProviderError as e:
            # An unanswered query tells us nothing about the payment itself.
            logger.info("[MPESA] status query for %s inconclusive: %s", correlation_id, e)
            return PaymentResult.pending(correlation_id, error=str(e))

        code = data.get("ResultCode")
        return PaymentResult(
            status=result_status(code),
            correlation_id=correlation_id,
            error="" if str(code) == "0" else (data.get("ResultDesc") or ""),
        )

    def parse_webhook(self, payload: dict) -> PaymentResult:
        """Read an STK callback. Raises ValueError if the body is not one."""
        try:
            callback = payload["Body"]["stkCallback"]
            correlation_id = callback["CheckoutRequestID"]
        except (KeyError, TypeError) as e:
            raise ValueError("Not an STK callback payload") from e

        code = callback.get("ResultCode")
        status = result_status(code)
        items = {}
        for item in (callback.get("CallbackMetadata") or {}).get("Item") or []:
            if isinstance(item, dict) and "Name" in item:
                items[item["Name"]] = item.get("Value")

        amount = items.get("Amount")
        return PaymentResult(
            status=status,
            correlation_id=correlation_id,
            amount=Decimal(str(amount)) if amount is not None else None,
            transaction_id=str(items.get("MpesaReceiptNumber") or ""),
            error="" if status == STATUS_COMPLETED else (callback.get("ResultDesc") or ""),
        )

    def request_payout(self, phone: str, amount, reference: str, remarks: str = "") -> str:
        """
        Send `amount` to `phone` from the B2C shortcode.  Returns the
        ConversationID that the result callback will carry.
        """
        if not (self.b2c_shortcode and self.b2c_initiator_name and self.b2c_security_credential):
            raise ProviderDeclined("B2C payouts are not configured", provider=self.method)

        payload = {
            "InitiatorName": self.b2c_initiator_name,
            "SecurityCredential": self.b2c_security_credential,
            "CommandID": "BusinessPayment",
            "Amount": whole_shillings(amount),
            "PartyA": self.b2c_shortcode,
            "PartyB": normalize_msisdn(phone),
            "Remarks": (remarks or f"Payout {reference}")[:100],
            "QueueTimeOutURL": self.payout_result_url,
            "ResultURL": self.payout_result_url,
            "Occasion": reference[:100],
        }
        logger.info("[MPESA] B2C payout ref=%s amount=%s", reference, payload["Amount"])
        data = self._call("POST", "/mpesa/b2c/v1/paymentrequest", json=payload)
        if str(data.get("ResponseCode")) != "0":
            raise ProviderDeclined(
                data.get("ResponseDescription") or "Payout rejected",
                code=data.get("ResponseCode") or "",
                provider=self.method,
            )
        return data.get("ConversationID") or data.get("OriginatorConversationID") or ""

    def parse_payout_result(self, payload: dict) -> PayoutResult:
        try:
            result = payload["Result"]
        except (KeyError, TypeError) as e:
            raise ValueError("Not a B2C result payload") from e
        return PayoutResult(
            succeeded=str(result.get("ResultCode")) == "0",
            conversation_id=result.get("ConversationID") or "",
            transaction_id=result.get("TransactionID") or "",
            description=result.get("ResultDesc") or "",
        )


def from_settings(conf: dict, session: Optional[object] = None) -> MpesaGateway:
    return MpesaGateway(
        consumer_key=conf.get("CONSUMER_KEY", ""),
        consumer_secret=conf.get("CONSUMER_SECRET", ""),
        shortcode=conf.get("SHORTCODE", ""),
        passkey=conf.get("PASSKEY", ""),
        callback_url=conf.get("CALLBACK_URL", ""),
        environment=conf.get("ENVIRONMENT", "sandbox"),
        b2c_shortcode=conf.get("B2C_SHORTCODE", ""),
        b2c_initiator_name=conf.get("B2C_INITIATOR_NAME", ""),
        b2c_security_credential=conf.get("B2C_SECURITY_CREDENTIAL", ""),
        payout_result_url=conf.get("PAYOUT_RESULT_URL", ""),
        session=session,
    )
