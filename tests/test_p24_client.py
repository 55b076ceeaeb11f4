"""
Unit tests for the Przelewy24 REST client. HTTP is mocked at requests.request.
"""
import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from payflow.services.p24_client import GatewayError, P24Client, P24Config
from payflow.services.signature import SignedOperation, sign


def _response(status: int, body) -> MagicMock:
    r = MagicMock()
    r.status_code = status
    if isinstance(body, (dict, list)):
        r.text = json.dumps(body)
        r.json.return_value = body
    else:
        r.text = body
        r.json.side_effect = ValueError("not json")
    return r


@pytest.fixture
def client(p24_cfg) -> P24Client:
    return P24Client(p24_cfg)


@pytest.fixture
def http():
    with patch("payflow.services.p24_client.requests.request") as mock_request:
        yield mock_request


def _sent(http) -> dict:
    return json.loads(http.call_args.kwargs["data"].decode("utf-8"))


REGISTER_ARGS = dict(
    session_id="ord-1_1", amount=12999, currency="PLN", description="Order #ord-1",
    email="jan@example.com", url_return="https://shop.example.com/payment/return?orderId=ord-1",
    url_status="https://shop.example.com/api/v1/payments/callback",
)


class TestConfig:

    def test_sandbox_and_production_hosts(self, p24_cfg) -> None:
        prod = P24Config(merchant_id=1, pos_id=1, api_key="k", crc="c", sandbox=False)

        assert p24_cfg.api_url == "https://sandbox.przelewy24.pl/api/v1"
        assert prod.api_url == "https://secure.przelewy24.pl/api/v1"

    def test_repr_hides_credentials(self, p24_cfg) -> None:
        text = repr(p24_cfg)

        assert "test-api-key" not in text
        assert "test-crc-key" not in text

    def test_payment_url(self, client) -> None:
        assert client.payment_url("TOK") == "https://sandbox.przelewy24.pl/trnRequest/TOK"


class TestRegister:

    def test_returns_token_and_signs_request(self, client, http, p24_cfg) -> None:
        http.return_value = _response(200, {"data": {"token": "ABC-123"}, "responseCode": 0})

        result = client.register(**REGISTER_ARGS)

        assert result.token == "ABC-123"
        kwargs = http.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["url"] == "https://sandbox.przelewy24.pl/api/v1/transaction/register"
        assert kwargs["auth"].username == "11111"
        assert kwargs["auth"].password == "test-api-key"
        assert kwargs["timeout"] == p24_cfg.timeout
        body = _sent(http)
        assert body["merchantId"] == 11111
        assert body["posId"] == 11111
        assert body["amount"] == 12999
        assert body["urlStatus"] == REGISTER_ARGS["url_status"]
        assert body["sign"] == sign(SignedOperation.REGISTER, body, p24_cfg.crc)

    def test_http_error_keeps_status_and_body(self, client, http) -> None:
        http.return_value = _response(400, {"error": "Incorrect CRC", "code": 400})

        with pytest.raises(GatewayError) as exc:
            client.register(**REGISTER_ARGS)

        assert exc.value.status_code == 400
        assert exc.value.raw_body == {"error": "Incorrect CRC", "code": 400}

    def test_non_json_error_body_is_kept_as_text(self, client, http) -> None:
        http.return_value = _response(502, "<html>Bad Gateway</html>")

        with pytest.raises(GatewayError) as exc:
            client.register(**REGISTER_ARGS)

        assert exc.value.status_code == 502
        assert exc.value.raw_body == "<html>Bad Gateway</html>"

    def test_transport_failure_has_no_status(self, client, http) -> None:
        http.side_effect = requests.ConnectTimeout("timed out")

        with pytest.raises(GatewayError) as exc:
            client.register(**REGISTER_ARGS)

        assert exc.value.status_code is None
        assert http.call_count == 1

    def test_missing_token_is_an_error(self, client, http) -> None:
        http.return_value = _response(200, {"data": {}, "responseCode": 0})

        with pytest.raises(GatewayError, match="no token"):
            client.register(**REGISTER_ARGS)


class TestVerify:

    def test_success_status(self, client, http, p24_cfg) -> None:
        http.return_value = _response(200, {"data": {"status": "success"}, "responseCode": 0})

        result = client.verify(session_id="ord-1_1", order_id=316123456, amount=12999, currency="PLN")

        assert result.verified
        assert http.call_args.kwargs["method"] == "PUT"
        assert http.call_args.kwargs["url"].endswith("/transaction/verify")
        body = _sent(http)
        assert body["sign"] == sign(SignedOperation.VERIFY, body, p24_cfg.crc)

    def test_other_status_is_not_verified(self, client, http) -> None:
        http.return_value = _response(200, {"data": {"status": "error"}, "responseCode": 0})

        result = client.verify(session_id="s", order_id=1, amount=1, currency="PLN")

        assert not result.verified

    def test_body_without_status_is_an_error(self, client, http) -> None:
        http.return_value = _response(200, {"responseCode": 0})

        with pytest.raises(GatewayError):
            client.verify(session_id="s", order_id=1, amount=1, currency="PLN")


class TestRefund:

    def test_accepted_when_every_entry_succeeds(self, client, http, p24_cfg) -> None:
        http.return_value = _response(201, {"data": [{"orderId": 7, "status": True}], "responseCode": 0})

        result = client.refund(request_id="r-1", session_id="s-1", order_id=7, amount=100, description="Refund")

        assert result.accepted
        body = _sent(http)
        assert body["requestId"] == "r-1"
        assert body["refundsUuid"] == "r-1"
        assert body["refunds"] == [{"orderId": 7, "sessionId": "s-1", "amount": 100, "description": "Refund"}]
        assert body["sign"] == sign(
            SignedOperation.REFUND,
            {"requestId": "r-1", "sessionId": "s-1", "orderId": 7, "amount": 100},
            p24_cfg.crc,
        )

    def test_rejected_entry_means_not_accepted(self, client, http) -> None:
        http.return_value = _response(200, {"data": [{"orderId": 7, "status": False, "message": "Refund error"}]})

        result = client.refund(request_id="r-1", session_id="s-1", order_id=7, amount=100, description="Refund")

        assert not result.accepted


class TestNotification:

    def test_verify_notification(self, client, p24_cfg) -> None:
        fields = {"sessionId": "s", "orderId": 1, "amount": 10, "originAmount": 10, "currency": "PLN"}
        fields["sign"] = sign(SignedOperation.NOTIFICATION, fields, p24_cfg.crc)

        assert client.verify_notification(fields)
        assert not client.verify_notification({**fields, "currency": "EUR"})
        assert not client.verify_notification({**fields, "sign": ""})
