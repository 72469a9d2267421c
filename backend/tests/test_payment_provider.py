"""Payment provider client tests (httpx.MockTransport, no network)."""

import httpx
import pytest

from shopledger.errors import ConflictError, PaymentProviderUnavailable, PaymentRequestRejected
from shopledger.services.payment_provider import PaymentProviderClient


def _client(handler, **kwargs):
    return PaymentProviderClient(
        "http://provider.test/v1/",
        "sk_live_x",
        verify_backoff=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestCreatePayment:

    def test_sends_order_and_auth(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            seen["path"] = request.url.path
            seen["body"] = request.read()
            return httpx.Response(201, json={"reference": "R-1", "status": "pending", "amount_cents": 2500})

        result = _client(handler).create_payment(
            order_number="MLA-20261018-0001", amount_cents=2500, method="MOBILE_MONEY", provider="MPESA",
            phone="+243810000000",
        )

        assert result.reference == "R-1"
        assert result.status == "PENDING"
        assert result.amount_cents == 2500
        assert seen["auth"] == "Bearer sk_live_x"
        assert seen["path"] == "/v1/payments"
        assert b"MLA-20261018-0001" in seen["body"]

    def test_unparseable_body_is_an_outage(self):
        client = _client(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(PaymentProviderUnavailable):
            client.create_payment(order_number="X", amount_cents=1, method="CARD")

    def test_unknown_status_treated_as_pending(self):
        client = _client(lambda request: httpx.Response(201, json={"reference": "R-2", "status": "WEIRD"}))
        assert client.create_payment(order_number="X", amount_cents=1, method="CARD").status == "PENDING"


class TestGetPaymentStatus:

    def test_not_found_is_pending(self):
        client = _client(lambda request: httpx.Response(404, json={}))
        assert client.get_payment_status("R-404").status == "PENDING"

    def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(401, json={"error": "bad key"})

        with pytest.raises(PaymentRequestRejected) as exc:
            _client(handler).get_payment_status("R-1")
        assert len(calls) == 1
        assert isinstance(exc.value, ConflictError)
        assert exc.value.status_code == 409
        assert exc.value.details["status_code"] == 401

    def test_server_errors_retried_up_to_limit(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(500, json={})

        with pytest.raises(PaymentProviderUnavailable):
            _client(handler, verify_attempts=4).get_payment_status("R-1")
        assert len(calls) == 4
