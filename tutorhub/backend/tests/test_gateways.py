from decimal import Decimal
import json

import httpx
import pytest
from app.config import Settings
from app.db.models import PaymentProvider
from app.services.payments import (
    GatewayError,
    InvalidPhoneNumber,
    MalformedCallback,
    MpesaGateway,
    PayPalGateway,
    normalize_phone_number,
    parse_stk_callback,
)


def kcb_settings():
    return Settings(
        kcb_api_key="key",
        kcb_api_secret="secret",
        kcb_account_number="7654321",
        kcb_route_code="207",
        kcb_transaction_desc="Language class payment",
        kcb_base_url="https://kcb.test/mm/api/request/1.0.0",
        kcb_token_url="https://kcb.test/token?grant_type=client_credentials",
        webhook_base_url="https://tutorhub.test",
    )


class KcbStub:
    def __init__(self, response_code="0"):
        self.requests = []
        self.response_code = response_code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/token":
            return httpx.Response(200, json={"access_token": "kcb-token", "expires_in": 3600})
        return httpx.Response(
            200,
            json={
                "header": {"statusCode": "0", "statusDescription": "Success"},
                "response": {
                    "MerchantRequestID": "29115-34620561-1",
                    "CheckoutRequestID": "ws_CO_191220191020363925",
                    "CustomerMessage": "Success. Request accepted for processing",
                    "ResponseCode": self.response_code,
                    "ResponseDescription": "Success. Request accepted for processing",
                },
            },
        )


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0712345678", "254712345678"),
        ("0112345678", "254112345678"),
        ("712345678", "254712345678"),
        ("+254 712 345 678", "254712345678"),
        ("254112345678", "254112345678"),
    ],
)
def test_normalize_phone_number(raw, expected):
    assert normalize_phone_number(raw) == expected


@pytest.mark.parametrize("raw", ["", "12345", "0812345678", "25471234567", "07123456789"])
def test_normalize_phone_number_rejects(raw):
    with pytest.raises(InvalidPhoneNumber):
        normalize_phone_number(raw)


def test_stk_push_request_shape():
    stub = KcbStub()
    gateway = MpesaGateway(kcb_settings(), transport=httpx.MockTransport(stub))

    handle = gateway.initiate(amount=Decimal("1942"), currency="KES", payer_ref="0712345678", correlation_id=42)

    assert handle.provider == PaymentProvider.mpesa
    assert handle.reference == "29115-34620561-1"
    assert handle.customer_message == "Success. Request accepted for processing"

    token_request, push_request = stub.requests
    assert token_request.headers["Authorization"].startswith("Basic ")
    assert token_request.content == b"grant_type=client_credentials"

    assert str(push_request.url) == "https://kcb.test/mm/api/request/1.0.0/stkpush"
    assert push_request.headers["Authorization"] == "Bearer kcb-token"
    assert push_request.headers["operation"] == "STKPush"
    assert push_request.headers["routeCode"] == "207"
    assert push_request.headers["messageId"].startswith("42_")
    assert json.loads(push_request.content) == {
        "phoneNumber": "254712345678",
        "amount": "1942",
        "invoiceNumber": "7654321-42",
        "sharedShortCode": True,
        "orgShortCode": "",
        "orgPassKey": "",
        "callbackUrl": "https://tutorhub.test/api/v1/payments/webhook",
        "transactionDescription": "Language class payment",
    }


def test_token_is_reused_between_pushes():
    stub = KcbStub()
    gateway = MpesaGateway(kcb_settings(), transport=httpx.MockTransport(stub))

    gateway.initiate(amount=Decimal("100"), currency="KES", payer_ref="0712345678", correlation_id=1)
    gateway.initiate(amount=Decimal("100"), currency="KES", payer_ref="0712345678", correlation_id=2)

    token_calls = [r for r in stub.requests if r.url.path == "/token"]
    assert len(token_calls) == 1
    assert len(stub.requests) == 3


def test_malformed_phone_never_reaches_provider():
    stub = KcbStub()
    gateway = MpesaGateway(kcb_settings(), transport=httpx.MockTransport(stub))

    with pytest.raises(InvalidPhoneNumber):
        gateway.initiate(amount=Decimal("100"), currency="KES", payer_ref="12345", correlation_id=1)
    assert stub.requests == []


def test_provider_rejection_is_gateway_error():
    gateway = MpesaGateway(kcb_settings(), transport=httpx.MockTransport(KcbStub(response_code="1")))

    with pytest.raises(GatewayError) as excinfo:
        gateway.initiate(amount=Decimal("100"), currency="KES", payer_ref="0712345678", correlation_id=1)
    assert not isinstance(excinfo.value, InvalidPhoneNumber)


def test_transport_failure_is_gateway_error():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    gateway = MpesaGateway(kcb_settings(), transport=httpx.MockTransport(handler))

    with pytest.raises(GatewayError):
        gateway.initiate(amount=Decimal("100"), currency="KES", payer_ref="0712345678", correlation_id=1)


def stk_callback(result_code=0, reference="7654321-42", with_receipt=True):
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": "ws_CO_191220191020363925",
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully.",
        "Reference": reference,
    }
    if with_receipt:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": 1942},
                {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": callback}}


def test_parse_successful_callback():
    event = parse_stk_callback(stk_callback())

    assert event.succeeded is True
    assert event.payment_id == 42
    assert event.provider_txn_id == "NLJ7RT61SV"
    assert event.merchant_request_id == "29115-34620561-1"


def test_parse_failed_callback():
    event = parse_stk_callback(stk_callback(result_code=1032, with_receipt=False))

    assert event.succeeded is False
    assert event.payment_id == 42
    assert event.provider_txn_id is None


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"Body": {}},
        {"Body": {"stkCallback": {"ResultCode": 0}}},
        stk_callback(reference="7654321-abc"),
        stk_callback(reference="ACC-99999999999999999999"),
        stk_callback(reference="ACC-0"),
    ],
)
def test_parse_malformed_callback(payload):
    with pytest.raises(MalformedCallback):
        parse_stk_callback(payload)


def paypal_settings():
    return Settings(
        paypal_api_base_url="https://paypal.test",
        paypal_client_id="client",
        paypal_client_secret="secret",
    )


def test_paypal_create_order():
    seen = []

    def handler(request):
        seen.append(request)
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "pp-token", "expires_in": 32400})
        return httpx.Response(201, json={"id": "5O190127TN364715T", "status": "CREATED"})

    gateway = PayPalGateway(paypal_settings(), transport=httpx.MockTransport(handler))

    handle = gateway.initiate(amount=Decimal("12.5"), currency="EUR", payer_ref=None, correlation_id=7)

    assert handle.reference == "5O190127TN364715T"
    order_request = seen[1]
    assert order_request.url.path == "/v2/checkout/orders"
    assert order_request.headers["Authorization"] == "Bearer pp-token"
    assert json.loads(order_request.content) == {
        "intent": "CAPTURE",
        "purchase_units": [{"amount": {"currency_code": "EUR", "value": "12.50"}}],
    }


def test_paypal_capture_reads_capture_id():
    def handler(request):
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "pp-token", "expires_in": 32400})
        assert request.url.path == "/v2/checkout/orders/5O190127TN364715T/capture"
        return httpx.Response(
            201,
            json={
                "id": "5O190127TN364715T",
                "status": "COMPLETED",
                "purchase_units": [{"payments": {"captures": [{"id": "3C679366HH908993F"}]}}],
            },
        )

    gateway = PayPalGateway(paypal_settings(), transport=httpx.MockTransport(handler))

    result = gateway.capture("5O190127TN364715T")

    assert result.completed
    assert result.transaction_id == "3C679366HH908993F"


def test_paypal_order_failure():
    def handler(request):
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "pp-token", "expires_in": 32400})
        return httpx.Response(422, json={"name": "UNPROCESSABLE_ENTITY"})

    gateway = PayPalGateway(paypal_settings(), transport=httpx.MockTransport(handler))

    with pytest.raises(GatewayError):
        gateway.initiate(amount=Decimal("10"), currency="USD", payer_ref=None, correlation_id=1)
