"""Unit tests for the payment gateway client"""

import httpx
import pytest
from unittest.mock import patch
from credit_ledger.domain.exceptions import GatewayError
from credit_ledger.domain.models import CardDetails
from credit_ledger.infrastructure.clients.gateway import PaymentGatewayClient

BASE_URL = "http://gateway.test"


def _response(status_code: int, payload, path: str = "/process-payment") -> httpx.Response:
    return httpx.Response(status_code, json=payload, request=httpx.Request("POST", f"{BASE_URL}{path}"))


@patch("httpx.Client.post")
def test_charge_raw_card(mock_post):
    mock_post.return_value = _response(200, {"success": True, "transactionId": "60123"})
    card = CardDetails(card_number="4111111111111111", expiration_date="12/28", cvv="123", cardholder_name="A Pharmacy")

    result = PaymentGatewayClient(base_url=BASE_URL).charge_card(9300, card, order_reference="ord-1")

    assert result.transaction_id == "60123"
    url = mock_post.call_args.args[0]
    body = mock_post.call_args.kwargs["json"]
    assert url == f"{BASE_URL}/process-payment"
    assert body["amount"] == "93.00"
    assert body["orderId"] == "ord-1"
    assert body["payment"]["cardNumber"] == "4111111111111111"


@patch("httpx.Client.post")
def test_charge_saved_card(mock_post):
    mock_post.return_value = _response(200, {"success": True, "transactionId": "60124"})
    card = CardDetails(customer_profile_id="cp_9", payment_profile_id="pp_9")

    PaymentGatewayClient(base_url=BASE_URL).charge_card(1050, card)

    body = mock_post.call_args.kwargs["json"]
    assert body["action"] == "chargeSavedCard"
    assert body["customerProfileId"] == "cp_9"
    assert "payment" not in body


@patch("httpx.Client.post")
def test_charge_declined(mock_post):
    mock_post.return_value = _response(200, {"success": False, "error": "This transaction has been declined"})

    with pytest.raises(GatewayError, match="declined"):
        PaymentGatewayClient(base_url=BASE_URL).charge_card(1000, CardDetails(card_number="4000000000000002"))


@patch("httpx.Client.post")
def test_charge_http_error(mock_post):
    mock_post.return_value = _response(503, {"error": "unavailable"})

    with pytest.raises(GatewayError, match="503"):
        PaymentGatewayClient(base_url=BASE_URL).charge_card(1000, CardDetails(card_number="4111111111111111"))


@patch("httpx.Client.post")
def test_charge_timeout(mock_post):
    mock_post.side_effect = httpx.ReadTimeout("timed out")

    with pytest.raises(GatewayError, match="timeout"):
        PaymentGatewayClient(base_url=BASE_URL, timeout=2.0).charge_card(1000, CardDetails(card_number="4111111111111111"))


@patch("httpx.Client.post")
def test_charge_missing_transaction_id(mock_post):
    mock_post.return_value = _response(200, {"success": True})

    with pytest.raises(GatewayError, match="transactionId"):
        PaymentGatewayClient(base_url=BASE_URL).charge_card(1000, CardDetails(card_number="4111111111111111"))


@patch("httpx.Client.post")
def test_refund(mock_post):
    mock_post.return_value = _response(200, {"success": True, "refundTransactionId": "rf_77"}, "/refund-payment")

    result = PaymentGatewayClient(base_url=BASE_URL).refund("60123", 3000, reason="Damaged")

    assert result.refund_transaction_id == "rf_77"
    body = mock_post.call_args.kwargs["json"]
    assert body == {"transactionId": "60123", "amount": "30.00", "reason": "Damaged"}
