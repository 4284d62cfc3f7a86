"""
Tests for the Pesapal adapter.
"""
from datetime import timedelta
from decimal import Decimal
from unittest import mock

import pytest
from django.utils import timezone

from payments.gateways.base import PaymentRequest
from payments.gateways.exceptions import ProviderAuthError, ProviderDeclined
from payments.gateways.pesapal import PesapalGateway


def response(status_code=200, body=None):
    resp = mock.Mock()
    resp.status_code = status_code
    resp.json.return_value = body if body is not None else {}
    resp.text = str(body)
    return resp


def token_response():
    expiry = (timezone.now() + timedelta(minutes=5)).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return response(200, {"token": "psp-token", "expiryDate": expiry, "error": None, "status": "200"})


IPN_REGISTERED = response(200, {
    "url": "https://api.example.com/api/payments/pesapal/ipn/",
    "ipn_id": "e32182ca-0983-4fa0-91bc-c3bb813ba750",
    "error": None,
    "status": "200",
})

ORDER_ACCEPTED = response(200, {
    "order_tracking_id": "b945e4af-80a5-4ec1-8706-e03f8332fb04",
    "merchant_reference": "BOOKING-5",
    "redirect_url": "https://cybqa.pesapal.com/pesapaliframe/PesapalIframe3/Index/?OrderTrackingId=b945e4af",
    "error": None,
    "status": "200",
})


def gateway(*responses, ipn_id=""):
    session = mock.Mock()
    session.request.side_effect = list(responses)
    gw = PesapalGateway(
        consumer_key="ck",
        consumer_secret="cs",
        ipn_url="https://api.example.com/api/payments/pesapal/ipn/",
        return_url="https://app.example.com/checkout/complete",
        environment="sandbox",
        ipn_id=ipn_id,
        session=session,
    )
    return gw, session


def payment_request():
    return PaymentRequest(
        reference="BOOKING-5",
        amount=Decimal("1500.00"),
        description="Nairobi Jazz Night x3",
        phone="0712345678",
        email="wanjiku@example.com",
        name="Wanjiku Kamau",
    )


def test_first_order_registers_ipn_then_submits():
    gw, session = gateway(token_response(), IPN_REGISTERED, ORDER_ACCEPTED)
    result = gw.initiate(payment_request())

    assert result.correlation_id == "b945e4af-80a5-4ec1-8706-e03f8332fb04"
    assert result.checkout_url.startswith("https://cybqa.pesapal.com/")

    token_call, ipn_call, order_call = session.request.call_args_list
    assert token_call.args == ("POST", "https://cybqa.pesapal.com/pesapalv3/api/Auth/RequestToken")
    assert token_call.kwargs["json"] == {"consumer_key": "ck", "consumer_secret": "cs"}
    assert ipn_call.args[1].endswith("/api/URLSetup/RegisterIPN")
    assert order_call.args[1].endswith("/api/Transactions/SubmitOrderRequest")

    body = order_call.kwargs["json"]
    assert body["id"] == "BOOKING-5"
    assert body["amount"] == 1500.0
    assert body["currency"] == "KES"
    assert body["notification_id"] == "e32182ca-0983-4fa0-91bc-c3bb813ba750"
    assert body["callback_url"] == "https://app.example.com/checkout/complete"
    assert body["billing_address"]["first_name"] == "Wanjiku"
    assert body["billing_address"]["last_name"] == "Kamau"


def test_ipn_registered_once_per_gateway():
    gw, session = gateway(token_response(), IPN_REGISTERED, ORDER_ACCEPTED, ORDER_ACCEPTED)
    gw.initiate(payment_request())
    gw.initiate(payment_request())
    urls = [c.args[1] for c in session.request.call_args_list]
    assert sum(u.endswith("/RegisterIPN") for u in urls) == 1
    assert sum(u.endswith("/RequestToken") for u in urls) == 1


def test_configured_ipn_id_skips_registration():
    gw, session = gateway(token_response(), ORDER_ACCEPTED, ipn_id="preset-ipn")
    gw.initiate(payment_request())
    assert session.request.call_args.kwargs["json"]["notification_id"] == "preset-ipn"
    assert session.request.call_count == 2


def test_bad_credentials():
    gw, _ = gateway(response(200, {
        "token": None,
        "error": {"code": "invalid_consumer_key_or_secret_provided", "message": "Invalid consumer key"},
        "status": "500",
    }))
    with pytest.raises(ProviderAuthError):
        gw.initiate(payment_request())


def test_order_rejected_in_body():
    gw, _ = gateway(token_response(), response(200, {
        "error": {"error_type": "api_error", "code": "invalid_amount", "message": "Amount is invalid"},
        "status": "500",
    }), ipn_id="preset-ipn")
    with pytest.raises(ProviderDeclined) as exc:
        gw.initiate(payment_request())
    assert exc.value.code == "invalid_amount"


@pytest.mark.parametrize(
    "body,status",
    [
        ({"status_code": 1, "payment_status_description": "Completed", "confirmation_code": "AA11BB22"}, "completed"),
        ({"status_code": 2, "payment_status_description": "Failed", "description": "Declined by issuer"}, "failed"),
        ({"status_code": 3, "payment_status_description": "Reversed"}, "failed"),
        ({"status_code": 0, "payment_status_description": "INVALID"}, "pending"),
        ({"payment_status_description": "", "error": {"code": "payment_details_not_found", "message": "Pending Payment"}}, "pending"),
    ],
)
def test_transaction_status_mapping(body, status):
    gw, session = gateway(token_response(), response(200, {**body, "amount": 1500, "merchant_reference": "BOOKING-5"}))
    result = gw.poll_status("b945e4af")

    assert result.status == status
    assert session.request.call_args.kwargs["params"] == {"orderTrackingId": "b945e4af"}
    if status == "completed":
        assert result.transaction_id == "AA11BB22"
        assert result.amount == Decimal("1500")


def test_status_server_error_is_pending():
    gw, _ = gateway(token_response(), response(502, None))
    assert gw.poll_status("b945e4af").status == "pending"


def test_ipn_is_never_terminal():
    gw, _ = gateway()
    result = gw.parse_webhook({
        "OrderTrackingId": "b945e4af",
        "OrderMerchantReference": "BOOKING-5",
        "OrderNotificationType": "IPNCHANGE",
    })
    assert result.status == "pending"
    assert result.correlation_id == "b945e4af"
    assert result.merchant_reference == "BOOKING-5"

    with pytest.raises(ValueError):
        gw.parse_webhook({"OrderMerchantReference": "BOOKING-5"})


def test_token_error_given_as_text_is_auth_error():
    gw, _ = gateway(response(200, {"token": None, "error": "invalid_consumer_key_or_secret_provided"}))
    with pytest.raises(ProviderAuthError) as exc:
        gw.initiate(payment_request())
    assert "invalid_consumer_key" in exc.value.message
