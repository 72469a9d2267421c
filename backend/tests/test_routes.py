"""
HTTP surface tests.

Verifies:
- Actor context is required (401) and staff-only endpoints are enforced (403)
- Domain errors map to status codes with {error, code, details}
- Customers only see their own orders and returns
- The payment webhook verifies signatures and is idempotent
"""

import hashlib
import hmac
import json

import pytest

from shopledger.extensions import db
from shopledger.models import Transaction


# =============================================================================
# ACTOR CONTEXT (401 / 403)
# =============================================================================


class TestActorContext:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/products"),
            ("POST", "/api/sales"),
            ("POST", "/api/orders"),
            ("GET", "/api/orders"),
            ("POST", "/api/inventory/adjust"),
            ("POST", "/api/returns"),
            ("POST", "/api/payments/initiate"),
        ],
    )
    def test_requires_actor(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_role_rejected(self, client, db_session):
        resp = client.get("/api/products", headers={"X-Actor-Id": "x", "X-Actor-Role": "ROOT"})
        assert resp.status_code == 401

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/products"),
            ("POST", "/api/sales"),
            ("GET", "/api/sales"),
            ("GET", "/api/sales/reports/daily"),
            ("GET", "/api/inventory"),
            ("POST", "/api/inventory/adjust"),
            ("GET", "/api/inventory/audit"),
            ("POST", "/api/orders/1/transition"),
            ("POST", "/api/shipments"),
            ("POST", "/api/returns/1/transition"),
            ("POST", "/api/payments/verify"),
            ("GET", "/api/payments/transactions"),
        ],
    )
    def test_customer_denied_staff_operations(self, client, db_session, customer_headers, method, path):
        resp = getattr(client, method.lower())(path, json={}, headers=customer_headers)
        assert resp.status_code == 403, f"{method} {path} returned {resp.status_code}"


# =============================================================================
# CATALOG AND INVENTORY
# =============================================================================


class TestCatalogAndInventoryRoutes:

    def test_create_product_and_adjust(self, client, db_session, staff_headers):
        resp = client.post("/api/products", json={
            "name": "Canvas Tote",
            "base_price_cents": 1500,
            "variants": [{"sku": "tote-nat", "color": "Natural", "initial_stock": 4}],
        }, headers=staff_headers)
        assert resp.status_code == 201
        variant = resp.get_json()["product"]["variants"][0]
        assert variant["sku"] == "TOTE-NAT"
        assert variant["stock_quantity"] == 4

        resp = client.post("/api/inventory/adjust", json={
            "variant_id": variant["id"], "quantity_change": -1, "change_type": "adjustment", "reason": "Damaged",
        }, headers=staff_headers)
        assert resp.status_code == 201
        assert resp.get_json()["new_quantity"] == 3

        resp = client.get(f"/api/inventory/{variant['id']}/history", headers=staff_headers)
        assert [e["quantity_change"] for e in resp.get_json()["entries"]] == [-1, 4]

    def test_sale_type_cannot_be_posted_manually(self, client, shirt, staff_headers):
        resp = client.post("/api/inventory/adjust", json={
            "variant_id": shirt.id, "quantity_change": -1, "change_type": "SALE", "reason": "Sneaky",
        }, headers=staff_headers)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_oversell_is_409_with_details(self, client, shirt, staff_headers):
        resp = client.post("/api/inventory/adjust", json={
            "variant_id": shirt.id, "quantity_change": -11, "change_type": "ADJUSTMENT", "reason": "Count",
        }, headers=staff_headers)
        body = resp.get_json()
        assert resp.status_code == 409
        assert body["code"] == "INSUFFICIENT_STOCK"
        assert body["details"]["available"] == 10

    def test_duplicate_sku_is_409(self, client, shirt, staff_headers):
        resp = client.post("/api/products", json={
            "name": "Copy", "base_price_cents": 100, "variants": [{"sku": "shirt-m"}],
        }, headers=staff_headers)
        assert resp.status_code == 409

    def test_ledger_health(self, client, shirt):
        resp = client.get("/api/health/ledger")
        assert resp.status_code == 200
        assert resp.get_json()["consistent"] is True

    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["checks"]["database"]["status"] == "healthy"


# =============================================================================
# SALES
# =============================================================================


class TestSaleRoute:

    def test_cash_sale(self, client, shirt, hat, staff_headers):
        resp = client.post("/api/sales", json={
            "payment_method": "CASH",
            "payment_details": {"amount_received_cents": 5000},
            "items": [{"variant_id": shirt.id, "quantity": 1}, {"variant_id": hat.id, "quantity": 1}],
        }, headers=staff_headers)
        body = resp.get_json()
        assert resp.status_code == 201
        assert body["order"]["total_cents"] == 3250
        assert body["change_due_cents"] == 1750
        assert body["transaction"]["status"] == "COMPLETED"

    def test_short_tender(self, client, shirt, staff_headers):
        resp = client.post("/api/sales", json={
            "payment_method": "CASH",
            "payment_details": {"amount_received_cents": 100},
            "items": [{"variant_id": shirt.id, "quantity": 1}],
        }, headers=staff_headers)
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "INSUFFICIENT_PAYMENT"

    def test_decimal_quantity_rejected(self, client, shirt, staff_headers):
        resp = client.post("/api/sales", json={
            "payment_method": "CASH",
            "payment_details": {"amount_received_cents": 5000},
            "items": [{"variant_id": shirt.id, "quantity": 1.5}],
        }, headers=staff_headers)
        assert resp.status_code == 400

    def test_list_sales(self, client, shirt, hat, cash_sale, staff_headers):
        cash_sale(shirt, 2)
        cash_sale(hat, 1)

        resp = client.get("/api/sales?limit=1", headers=staff_headers)
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["total"] == 2
        assert len(body["sales"]) == 1
        assert body["sales"][0]["item_count"] == 1
        assert body["sales"][0]["transaction"]["method"] == "CASH"
        assert body["summary"]["total_sales_cents"] == 5250

    def test_daily_report(self, client, shirt, cash_sale, staff_headers):
        order = cash_sale(shirt, 2).order
        day = order.created_at.date().isoformat()

        resp = client.get(f"/api/sales/reports/daily?date={day}", headers=staff_headers)
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["date"] == day
        assert body["summary"]["transaction_count"] == 1
        assert body["summary"]["items_sold"] == 2
        assert body["top_products"][0]["sku"] == "SHIRT-M"

    def test_daily_report_bad_date(self, client, db_session, staff_headers):
        resp = client.get("/api/sales/reports/daily?date=03-02-2026", headers=staff_headers)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"


# =============================================================================
# ORDERS
# =============================================================================


class TestOrderRoutes:

    def _checkout(self, client, variant, headers, **extra):
        payload = {
            "payment_method": "MOBILE_MONEY",
            "delivery_method": "HOME_DELIVERY",
            "items": [{"variant_id": variant.id, "quantity": 1}],
            "delivery_address": {
                "recipient_name": "Amani K.", "phone": "+243810000000",
                "street": "12 Avenue du Commerce", "commune": "Limete", "city": "Kinshasa",
            },
        }
        payload.update(extra)
        return client.post("/api/orders", json=payload, headers=headers)

    def test_customer_checkout(self, client, shirt, customer_headers):
        resp = self._checkout(client, shirt, customer_headers, customer_id="someone-else")
        order = resp.get_json()["order"]

        assert resp.status_code == 201
        assert order["customer_id"] == "cust-1"
        assert order["delivery_fee_cents"] == 600
        assert order["status"] == "PENDING"

    def test_orders_are_private(self, client, shirt, customer_headers, other_customer_headers, staff_headers):
        order_id = self._checkout(client, shirt, customer_headers).get_json()["order"]["id"]

        assert client.get(f"/api/orders/{order_id}", headers=customer_headers).status_code == 200
        assert client.get(f"/api/orders/{order_id}", headers=other_customer_headers).status_code == 404
        assert client.get(f"/api/orders/{order_id}", headers=staff_headers).status_code == 200

        listed = client.get("/api/orders", headers=other_customer_headers).get_json()
        assert listed["total"] == 0

    def test_invalid_transition_is_409(self, client, shirt, customer_headers, staff_headers):
        order_id = self._checkout(client, shirt, customer_headers).get_json()["order"]["id"]

        resp = client.post(f"/api/orders/{order_id}/transition", json={"status": "DELIVERED"}, headers=staff_headers)

        assert resp.status_code == 409
        assert resp.get_json()["code"] == "INVALID_STATE_TRANSITION"

    def test_customer_cancels_pending_order(self, client, shirt, customer_headers):
        order_id = self._checkout(client, shirt, customer_headers).get_json()["order"]["id"]

        resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "Ordered twice"},
                           headers=customer_headers)

        assert resp.status_code == 200
        assert resp.get_json()["order"]["status"] == "CANCELLED"

    def test_customer_cannot_cancel_processing_order(self, client, shirt, customer_headers, staff_headers):
        order_id = self._checkout(client, shirt, customer_headers, payment_method="CASH_ON_DELIVERY").get_json()["order"]["id"]
        for status in ("CONFIRMED", "PROCESSING"):
            client.post(f"/api/orders/{order_id}/transition", json={"status": status}, headers=staff_headers)

        resp = client.post(f"/api/orders/{order_id}/cancel", headers=customer_headers)
        assert resp.status_code == 409

    def test_unpaid_prepaid_order_cannot_be_processed(self, client, shirt, customer_headers, staff_headers):
        order_id = self._checkout(client, shirt, customer_headers).get_json()["order"]["id"]
        client.post(f"/api/orders/{order_id}/transition", json={"status": "CONFIRMED"}, headers=staff_headers)

        resp = client.post(f"/api/orders/{order_id}/transition", json={"status": "PROCESSING"}, headers=staff_headers)

        assert resp.status_code == 409
        assert resp.get_json()["code"] == "INVALID_STATE_TRANSITION"
        assert resp.get_json()["details"]["from"] == "CONFIRMED"

    def test_history(self, client, shirt, customer_headers, staff_headers):
        order_id = self._checkout(client, shirt, customer_headers).get_json()["order"]["id"]
        client.post(f"/api/orders/{order_id}/transition", json={"status": "CONFIRMED"}, headers=staff_headers)

        history = client.get(f"/api/orders/{order_id}/history", headers=customer_headers).get_json()["history"]
        assert [h["to_status"] for h in history] == ["PENDING", "CONFIRMED"]

    def test_delivery_quote(self, client, db_session, customer_headers):
        resp = client.get(
            "/api/orders/delivery-quote?delivery_method=HOME_DELIVERY&zone=Matete&subtotal_cents=4000",
            headers=customer_headers,
        )
        assert resp.get_json()["quote"]["fee_cents"] == 800

    def test_ship_and_track(self, client, shirt, customer_headers, other_customer_headers, staff_headers):
        order_id = self._checkout(client, shirt, customer_headers, payment_method="CASH_ON_DELIVERY").get_json()["order"]["id"]
        for status in ("CONFIRMED", "PROCESSING"):
            client.post(f"/api/orders/{order_id}/transition", json={"status": status}, headers=staff_headers)

        resp = client.post("/api/shipments", json={"order_id": order_id, "carrier": "LOCAL"}, headers=staff_headers)
        assert resp.status_code == 201
        tracking = resp.get_json()["shipment"]["tracking_number"]

        track = client.get(f"/api/shipments/track/{tracking}", headers=customer_headers)
        assert track.get_json()["order_status"] == "SHIPPED"
        assert client.get(f"/api/shipments/track/{tracking}", headers=other_customer_headers).status_code == 404


# =============================================================================
# RETURNS
# =============================================================================


class TestReturnRoutes:

    def test_request_and_receive(self, client, shirt, cash_sale, customer_headers, staff_headers):
        order = cash_sale(shirt, 1).order
        resp = client.post("/api/returns", json={
            "order_id": order.id,
            "reason": "Too small",
            "items": [{"order_item_id": order.items[0].id, "quantity": 1, "condition": "UNOPENED"}],
        }, headers=customer_headers)
        assert resp.status_code == 201
        rma = resp.get_json()["return"]
        assert rma["status"] == "REQUESTED"
        assert rma["refund_amount_cents"] == 2000

        for status in ("APPROVED", "RECEIVED"):
            resp = client.post(f"/api/returns/{rma['id']}/transition", json={"status": status}, headers=staff_headers)
            assert resp.status_code == 200

        variant = client.get("/api/inventory?include_inactive=true", headers=staff_headers).get_json()["variants"][0]
        assert variant["stock_quantity"] == 10

    def test_not_eligible_is_409(self, client, shirt, cash_sale, other_customer_headers):
        order = cash_sale(shirt, 1).order
        resp = client.post("/api/returns", json={
            "order_id": order.id,
            "reason": "Not mine",
            "items": [{"order_item_id": order.items[0].id, "quantity": 1, "condition": "UNOPENED"}],
        }, headers=other_customer_headers)
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "ORDER_NOT_ELIGIBLE"

    def test_returns_are_private(self, client, shirt, cash_sale, customer_headers, other_customer_headers):
        order = cash_sale(shirt, 1).order
        rma_id = client.post("/api/returns", json={
            "order_id": order.id,
            "reason": "Too small",
            "items": [{"order_item_id": order.items[0].id, "quantity": 1, "condition": "UNOPENED"}],
        }, headers=customer_headers).get_json()["return"]["id"]

        assert client.get(f"/api/returns/{rma_id}", headers=other_customer_headers).status_code == 404
        assert client.get("/api/returns", headers=other_customer_headers).get_json()["returns"] == []
        assert len(client.get("/api/returns", headers=customer_headers).get_json()["returns"]) == 1


# =============================================================================
# PAYMENT WEBHOOK
# =============================================================================


class TestPaymentWebhook:

    def _post(self, client, payload, secret=None, signature=None):
        body = json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if secret is not None:
            headers["X-Signature"] = signature or hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        return client.post("/api/payments/webhook", data=body, headers=headers)

    def test_duplicate_delivery(self, client, shirt, place_order):
        order = place_order(shirt, 1)
        payload = {"reference": "WH-1", "status": "SUCCEEDED", "order_number": order.order_number}

        first = self._post(client, payload)
        second = self._post(client, payload)

        assert first.status_code == 200
        assert second.status_code == 200
        assert db.session.query(Transaction).filter_by(reference="WH-1").count() == 1
        db.session.expire_all()
        assert db.session.get(type(order), order.id).payment_status == "PAID"

    def test_unknown_reference_acknowledged(self, client, db_session):
        resp = self._post(client, {"reference": "STRANGER", "status": "SUCCEEDED"})
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "applied": False}

    def test_signature_required_when_configured(self, app, client, shirt, place_order):
        app.config["PAYMENT_WEBHOOK_SECRET"] = "whsec_test"
        order = place_order(shirt, 1)
        payload = {"reference": "WH-2", "status": "SUCCEEDED", "order_number": order.order_number}

        assert self._post(client, payload).status_code == 401
        assert self._post(client, payload, secret="whsec_test", signature="00" * 32).status_code == 401
        assert self._post(client, payload, secret="whsec_test").status_code == 200

    def test_malformed_body(self, client, db_session):
        resp = client.post("/api/payments/webhook", data=b"not json", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400

    def test_transactions_listing(self, client, shirt, place_order, staff_headers):
        order = place_order(shirt, 1)
        self._post(client, {"reference": "WH-3", "status": "FAILED", "order_number": order.order_number})

        resp = client.get(f"/api/payments/transactions?order_id={order.id}", headers=staff_headers)
        assert [t["status"] for t in resp.get_json()["transactions"]] == ["FAILED"]
