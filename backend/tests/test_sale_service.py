"""
Point-of-sale tests.

Verifies:
- A sale is all-or-nothing across its lines
- CASH change is computed in cents; short tender is rejected
- MOBILE_MONEY sales wait for provider confirmation
- Prices come from the catalog, never the client
"""

import pytest

from shopledger.errors import DuplicateReference, InsufficientPayment, InsufficientStock, ValidationError
from shopledger.extensions import db
from shopledger.models import LedgerEntry, Order, OrderStatusChange
from shopledger.services import sale_service, stock_service

from conftest import ledger_sum, row_counts


def _sell(lines, method="CASH", details=None, customer_id=None):
    return sale_service.execute_sale(
        customer_id=customer_id,
        payment_method=method,
        payment_details=details,
        line_items=[{"variant_id": v.id, "quantity": q} for v, q in lines],
        performed_by="staff-1",
    )


# =============================================================================
# CASH
# =============================================================================


class TestCashSale:

    def test_change_due(self, make_product):
        # 1 x $20.00 + 1 x $22.50 = $42.50
        shirt = make_product(price_cents=2000, variants=(("SHIRT-M", 3),)).variants[0]
        scarf = make_product(name="Silk Scarf", price_cents=2250, variants=(("SCARF", 3),)).variants[0]

        result = _sell([(shirt, 1), (scarf, 1)], details={"amount_received_cents": 5000})

        assert result.order.total_cents == 4250
        assert result.change_due_cents == 750
        assert result.to_dict()["change_due_cents"] == 750
        assert result.transaction.tendered_cents == 5000
        assert result.transaction.change_cents == 750
        assert result.transaction.status == "COMPLETED"

    def test_order_is_delivered_in_store_and_paid(self, shirt):
        result = _sell([(shirt, 2)], details={"amount_received_cents": 4000}, customer_id="cust-1")
        order = result.order

        assert order.status == "DELIVERED"
        assert order.source == "IN_STORE"
        assert order.delivery_method == "STORE_PICKUP"
        assert order.delivery_fee_cents == 0
        assert order.payment_status == "PAID"
        assert order.completed_at is not None
        assert order.stock_committed_at is not None
        assert order.customer_id == "cust-1"
        assert order.transactions[0].reference == order.order_number

        history = db.session.query(OrderStatusChange).filter_by(order_id=order.id).all()
        assert [(h.from_status, h.to_status) for h in history] == [(None, "DELIVERED")]

    def test_exact_tender_has_zero_change(self, shirt):
        assert _sell([(shirt, 1)], details={"amount_received_cents": 2000}).change_due_cents == 0

    def test_one_sale_entry_per_line(self, shirt, hat):
        result = _sell([(shirt, 2), (hat, 1)], details={"amount_received_cents": 10000})

        entries = db.session.query(LedgerEntry).filter_by(order_id=result.order.id).all()
        assert sorted((e.variant_id, e.quantity_change, e.change_type) for e in entries) == sorted([
            (shirt.id, -2, "SALE"),
            (hat.id, -1, "SALE"),
        ])
        assert all(e.reason == f"POS sale {result.order.order_number}" for e in entries)
        assert stock_service.get_variant(shirt.id).stock_quantity == 8
        assert ledger_sum(shirt.id) == 8

    def test_short_tender_rejected_without_writes(self, shirt):
        before = row_counts()

        with pytest.raises(InsufficientPayment) as exc:
            _sell([(shirt, 1)], details={"amount_received_cents": 1999})

        assert exc.value.details["shortfall_cents"] == 1
        assert row_counts() == before
        assert stock_service.get_variant(shirt.id).stock_quantity == 10

    def test_amount_received_required(self, shirt):
        with pytest.raises(ValidationError):
            _sell([(shirt, 1)], details={})

    def test_client_price_is_ignored(self, shirt):
        result = sale_service.execute_sale(
            customer_id=None,
            payment_method="CASH",
            payment_details={"amount_received_cents": 2000},
            line_items=[{"variant_id": shirt.id, "quantity": 1, "price_cents": 1}],
        )
        assert result.order.items[0].price_at_purchase_cents == 2000


# =============================================================================
# ATOMICITY
# =============================================================================


class TestSaleAtomicity:

    def test_insufficient_second_line_rejects_whole_sale(self, shirt, hat):
        before = row_counts()

        with pytest.raises(InsufficientStock) as exc:
            _sell([(shirt, 1), (hat, 6)], details={"amount_received_cents": 100000})

        assert exc.value.details["line"] == 1
        assert exc.value.details["sku"] == "HAT-OS"
        assert row_counts() == before
        assert stock_service.get_variant(shirt.id).stock_quantity == 10
        assert stock_service.get_variant(hat.id).stock_quantity == 5

    def test_failure_after_first_deduction_rolls_everything_back(self, shirt, hat, monkeypatch):
        before = row_counts()
        real = sale_service.apply_stock_change
        calls = {"n": 0}

        def flaky(**kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise InsufficientStock("Only 0 units of SKU HAT-OS remain", {"sku": "HAT-OS"})
            return real(**kwargs)

        monkeypatch.setattr(sale_service, "apply_stock_change", flaky)

        with pytest.raises(InsufficientStock) as exc:
            _sell([(shirt, 1), (hat, 1)], details={"amount_received_cents": 5000})

        assert exc.value.details["line"] == 1
        assert calls["n"] == 2
        assert row_counts() == before
        assert stock_service.get_variant(shirt.id).stock_quantity == 10
        assert ledger_sum(shirt.id) == 10

    def test_inactive_variant_rejected(self, shirt):
        from shopledger.services import catalog_service

        catalog_service.set_variant_active(shirt.id, False)
        with pytest.raises(ValidationError) as exc:
            _sell([(shirt, 1)], details={"amount_received_cents": 2000})
        assert exc.value.details["line"] == 0


# =============================================================================
# MOBILE MONEY
# =============================================================================


class TestMobileMoneySale:

    DETAILS = {"provider": "mpesa", "phone": "+243810000001", "reference": "MM-REF-1"}

    def test_awaits_confirmation(self, shirt):
        result = _sell([(shirt, 1)], method="MOBILE_MONEY", details=dict(self.DETAILS))

        assert result.change_due_cents is None
        assert "change_due_cents" not in result.to_dict()
        assert result.order.payment_status == "PENDING"
        assert result.order.status == "DELIVERED"
        assert result.transaction.status == "PENDING"
        assert result.transaction.provider == "MPESA"
        assert result.transaction.reference == "MM-REF-1"
        assert stock_service.get_variant(shirt.id).stock_quantity == 9

    def test_reference_cannot_be_reused(self, shirt):
        _sell([(shirt, 1)], method="MOBILE_MONEY", details=dict(self.DETAILS))

        with pytest.raises(DuplicateReference):
            _sell([(shirt, 1)], method="MOBILE_MONEY", details=dict(self.DETAILS))

        assert db.session.query(Order).count() == 1

    def test_phone_required(self, shirt):
        with pytest.raises(ValidationError):
            _sell([(shirt, 1)], method="MOBILE_MONEY", details={"provider": "mpesa", "reference": "X"})

    def test_card_not_accepted_at_till(self, shirt):
        with pytest.raises(ValidationError):
            _sell([(shirt, 1)], method="CARD", details={})


class TestOrderNumbers:

    def test_sequential_per_day(self, shirt):
        first = _sell([(shirt, 1)], details={"amount_received_cents": 2000}).order.order_number
        second = _sell([(shirt, 1)], details={"amount_received_cents": 2000}).order.order_number

        prefix, day, seq = first.split("-")
        assert prefix == "MLA"
        assert len(day) == 8
        assert seq == "0001"
        assert second == f"MLA-{day}-0002"
