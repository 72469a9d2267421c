"""
Return (RMA) tests.

Verifies:
- Only delivered orders owned by the requester can be returned
- Returned quantities never exceed what was bought
- RECEIVED restocks restockable items exactly once
- Non-restockable items never touch the ledger
"""

import pytest

from shopledger.errors import InvalidItems, InvalidStateTransition, OrderNotEligible, ValidationError
from shopledger.extensions import db
from shopledger.models import LedgerEntry
from shopledger.services import return_service, stock_service

from conftest import ledger_sum


def _request(order, quantity=1, condition="UNOPENED", *, requested_by="cust-1", is_staff=False, **item):
    return return_service.create_return(
        order.id,
        requested_by=requested_by,
        is_staff=is_staff,
        reason="Does not fit",
        items=[{"order_item_id": order.items[0].id, "quantity": quantity, "condition": condition, **item}],
    )


def _receive(rma):
    return_service.transition_return(rma.id, "APPROVED", actor_id="staff-1")
    return return_service.transition_return(rma.id, "RECEIVED", actor_id="staff-1")


@pytest.fixture
def delivered_order(shirt, cash_sale):
    return cash_sale(shirt, 2).order


# =============================================================================
# RESTOCKING
# =============================================================================


class TestReturnRestocking:

    def test_damaged_item_is_not_restocked(self, shirt, delivered_order):
        rma = _request(delivered_order, 1, "DAMAGED")
        assert rma.items[0].restockable is False

        _receive(rma)

        assert stock_service.get_variant(shirt.id).stock_quantity == 8
        assert db.session.query(LedgerEntry).filter_by(change_type="RETURN").count() == 0

    def test_unopened_item_is_restocked(self, shirt, delivered_order):
        rma = _request(delivered_order, 1, "UNOPENED")

        rma = _receive(rma)

        assert stock_service.get_variant(shirt.id).stock_quantity == 9
        entry = db.session.query(LedgerEntry).filter_by(change_type="RETURN").one()
        assert entry.quantity_change == 1
        assert entry.order_id == delivered_order.id
        assert entry.reason == f"RMA return received: {rma.rma_number}"
        assert rma.items[0].restocked_entry_id == entry.id
        assert ledger_sum(shirt.id) == 9

    def test_mixed_items_restock_only_restockable(self, shirt, hat):
        from shopledger.services import sale_service

        order = sale_service.execute_sale(
            customer_id="cust-1",
            payment_method="CASH",
            payment_details={"amount_received_cents": 10000},
            line_items=[{"variant_id": shirt.id, "quantity": 2}, {"variant_id": hat.id, "quantity": 2}],
        ).order
        shirt_item, hat_item = order.items

        rma = return_service.create_return(
            order.id,
            requested_by="cust-1",
            is_staff=False,
            reason="Changed mind",
            items=[
                {"order_item_id": shirt_item.id, "quantity": 2, "condition": "OPENED_UNUSED"},
                {"order_item_id": hat_item.id, "quantity": 1, "condition": "DEFECTIVE"},
            ],
        )
        assert rma.refund_amount_cents == 2 * 2000 + 1250

        _receive(rma)

        assert stock_service.get_variant(shirt.id).stock_quantity == 10
        assert stock_service.get_variant(hat.id).stock_quantity == 3

    def test_staff_can_override_restockable(self, shirt, delivered_order):
        rma = _request(delivered_order, 1, "DEFECTIVE", requested_by="staff-1", is_staff=True, restockable=True)
        _receive(rma)
        assert stock_service.get_variant(shirt.id).stock_quantity == 9

    def test_customer_cannot_override_restockable(self, delivered_order):
        with pytest.raises(ValidationError):
            _request(delivered_order, 1, "DAMAGED", restockable=True)


# =============================================================================
# STATE MACHINE
# =============================================================================


class TestReturnTransitions:

    def test_received_only_once(self, shirt, delivered_order):
        rma = _receive(_request(delivered_order, 1))

        with pytest.raises(InvalidStateTransition):
            return_service.transition_return(rma.id, "RECEIVED")

        assert stock_service.get_variant(shirt.id).stock_quantity == 9

    def test_full_path(self, delivered_order):
        rma = _receive(_request(delivered_order, 1))
        rma = return_service.transition_return(rma.id, "REFUNDED", actor_id="staff-1")
        rma = return_service.transition_return(rma.id, "COMPLETED", actor_id="staff-1")

        assert rma.status == "COMPLETED"
        assert rma.received_by == "staff-1"
        assert rma.refunded_at is not None
        assert rma.completed_at is not None

    def test_reject_from_requested(self, shirt, delivered_order):
        rma = _request(delivered_order, 1)
        rma = return_service.transition_return(rma.id, "REJECTED", actor_id="staff-1", note="Worn")

        assert rma.status == "REJECTED"
        assert rma.rejection_note == "Worn"
        with pytest.raises(InvalidStateTransition):
            return_service.transition_return(rma.id, "APPROVED")
        assert stock_service.get_variant(shirt.id).stock_quantity == 8

    def test_rejected_is_terminal(self, delivered_order):
        rma = _request(delivered_order, 1)
        return_service.transition_return(rma.id, "REJECTED", actor_id="staff-1")

        with pytest.raises(InvalidStateTransition) as exc:
            return_service.transition_return(rma.id, "COMPLETED")
        assert exc.value.details["allowed"] == []

    def test_received_can_complete_without_refund_step(self, delivered_order):
        rma = _receive(_request(delivered_order, 1))
        assert return_service.transition_return(rma.id, "COMPLETED").status == "COMPLETED"

    def test_cannot_receive_before_approval(self, delivered_order):
        rma = _request(delivered_order, 1)
        with pytest.raises(InvalidStateTransition) as exc:
            return_service.transition_return(rma.id, "RECEIVED")
        assert exc.value.details["allowed"] == ["APPROVED", "REJECTED"]


# =============================================================================
# ELIGIBILITY
# =============================================================================


class TestReturnEligibility:

    def test_order_must_be_delivered(self, shirt, place_order):
        order = place_order(shirt, 1)
        with pytest.raises(OrderNotEligible):
            _request(order, 1)

    def test_other_customer_cannot_return(self, delivered_order):
        with pytest.raises(OrderNotEligible):
            _request(delivered_order, 1, requested_by="cust-2")

    def test_anonymous_sale_needs_staff(self, shirt, cash_sale):
        order = cash_sale(shirt, 1, customer_id=None).order
        with pytest.raises(OrderNotEligible):
            _request(order, 1)
        assert _request(order, 1, requested_by="staff-1", is_staff=True).status == "REQUESTED"

    def test_quantity_cannot_exceed_purchase(self, delivered_order):
        with pytest.raises(InvalidItems) as exc:
            _request(delivered_order, 3)
        assert exc.value.details["remaining"] == 2

    def test_open_returns_count_against_remaining(self, delivered_order):
        _request(delivered_order, 2)
        with pytest.raises(InvalidItems):
            _request(delivered_order, 1)

    def test_rejected_returns_release_quantity(self, delivered_order):
        rma = _request(delivered_order, 2)
        return_service.transition_return(rma.id, "REJECTED")
        assert _request(delivered_order, 2).status == "REQUESTED"

    def test_item_from_another_order(self, shirt, cash_sale, delivered_order):
        other = cash_sale(shirt, 1).order
        with pytest.raises(InvalidItems):
            return_service.create_return(
                delivered_order.id,
                requested_by="cust-1",
                is_staff=False,
                reason="Wrong",
                items=[{"order_item_id": other.items[0].id, "quantity": 1, "condition": "UNOPENED"}],
            )

    def test_unknown_condition(self, delivered_order):
        with pytest.raises(ValidationError):
            _request(delivered_order, 1, "STAINED")

    def test_rma_number_format(self, delivered_order):
        rma = _request(delivered_order, 1)
        assert rma.rma_number.startswith("RMA-")
        assert rma.rma_number.endswith("-0001")
        assert return_service.get_return_by_rma(rma.rma_number).id == rma.id
