"""
Stock ledger tests.

The cached products.stock_quantity must always equal the signed sum of the
product's movements; every test ends by checking that.
"""

from datetime import datetime

import pytest
from sqlalchemy import update

from superpos.errors import (
    InsufficientStockError,
    InvalidStateError,
    LedgerConsistencyError,
    NotFoundError,
)
from superpos.models import MovementType, Product, StockMovement
from superpos.services import stock_ledger
from superpos.validation import ValidationError


pytestmark = pytest.mark.ledger


def assert_consistent(product_id):
    assert stock_ledger.current_balance(product_id) == stock_ledger.ledger_balance(product_id)


class TestRecordMovement:
    def test_in_then_oversized_out(self, db_session, tea):
        """stock 5, in 10 -> 15; out 20 is rejected and the balance stays 15."""
        stock_ledger.record_movement(tea.id, "in", 10, reason="delivery")
        assert stock_ledger.current_balance(tea.id) == 15

        with pytest.raises(InsufficientStockError) as exc:
            stock_ledger.record_movement(tea.id, "out", 20)
        assert exc.value.details == {"product_id": tea.id, "requested": 20, "available": 15}

        assert stock_ledger.current_balance(tea.id) == 15
        assert db_session.query(StockMovement).filter_by(product_id=tea.id).count() == 2
        assert_consistent(tea.id)

    def test_out_rejected_whenever_above_balance(self, db_session, tea):
        for qty in (6, 7, 100):
            with pytest.raises(InsufficientStockError):
                stock_ledger.record_movement(tea.id, MovementType.OUT, qty)
        stock_ledger.record_movement(tea.id, MovementType.OUT, 5)
        assert stock_ledger.current_balance(tea.id) == 0
        assert_consistent(tea.id)

    def test_adjust_needs_direction(self, db_session, tea):
        with pytest.raises(ValidationError):
            stock_ledger.record_movement(tea.id, "adjust", 2)
        stock_ledger.record_movement(tea.id, "adjust", 2, direction=-1, reason="breakage")
        stock_ledger.record_movement(tea.id, "adjust", 4, direction=1, reason="count")
        assert stock_ledger.current_balance(tea.id) == 7
        assert_consistent(tea.id)

    @pytest.mark.parametrize("qty", [0, -3, True, 1.5])
    def test_quantity_must_be_positive_integer(self, db_session, tea, qty):
        with pytest.raises(ValidationError):
            stock_ledger.record_movement(tea.id, "in", qty)
        assert stock_ledger.current_balance(tea.id) == 5

    def test_unknown_type_and_product(self, db_session, tea):
        with pytest.raises(ValidationError):
            stock_ledger.record_movement(tea.id, "transfer", 1)
        with pytest.raises(NotFoundError):
            stock_ledger.record_movement("missing", "in", 1)

    def test_balance_check_rereads_locked_row(self, db_session, tea):
        """The cached product in the session is not trusted for the stock check."""
        assert tea.stock_quantity == 5
        products = Product.__table__
        db_session.execute(
            update(products)
            .where(products.c.id == tea.id)
            .values(stock_quantity=1, version_id=products.c.version_id + 1)
        )

        with pytest.raises(InsufficientStockError) as exc:
            stock_ledger.record_movement(tea.id, "out", 3)
        assert exc.value.details["available"] == 1

    def test_write_after_outside_change_uses_fresh_version(self, db_session, tea):
        assert tea.stock_quantity == 5
        products = Product.__table__
        db_session.execute(
            update(products)
            .where(products.c.id == tea.id)
            .values(stock_quantity=4, version_id=products.c.version_id + 1)
        )

        stock_ledger.record_movement(tea.id, "out", 1)
        assert stock_ledger.current_balance(tea.id) == 3

    def test_cost_defaults_total(self, db_session, tea):
        movement = stock_ledger.record_movement(tea.id, "in", 4, cost="2.5")
        assert str(movement.total_cost) == "10.00"
        totals = stock_ledger.movement_totals(tea.id)
        assert totals["units_in"] == 9
        assert str(totals["cost_in"]) == "10.00"


class TestHistory:
    def test_newest_first_with_backdated_movement(self, db_session, tea):
        stock_ledger.record_movement(tea.id, "in", 1, reason="late")
        old = datetime(2020, 1, 1)
        stock_ledger.record_movement(tea.id, "in", 2, reason="backdated", date=old)

        movements = stock_ledger.history(tea.id)
        assert movements[-1].reason == "backdated"
        # Balances do not depend on dates
        assert stock_ledger.current_balance(tea.id) == 8
        assert_consistent(tea.id)

    def test_limit_and_type_filter(self, db_session, tea):
        for _ in range(3):
            stock_ledger.record_movement(tea.id, "out", 1)
        assert len(stock_ledger.history(tea.id, limit=2)) == 2
        outs = stock_ledger.history(tea.id, movement_type="out")
        assert [m.type for m in outs] == ["out", "out", "out"]

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            stock_ledger.history("missing")


class TestReverse:
    def test_reverse_out_restores_balance(self, db_session, tea):
        out = stock_ledger.record_movement(tea.id, "out", 3)
        reversal = stock_ledger.reverse_movement(out.id, created_by="mgr")

        assert reversal.type == "in"
        assert reversal.reverses_movement_id == out.id
        assert stock_ledger.current_balance(tea.id) == 5
        assert_consistent(tea.id)

    def test_reverse_once_only(self, db_session, tea):
        out = stock_ledger.record_movement(tea.id, "out", 1)
        reversal = stock_ledger.reverse_movement(out.id)
        with pytest.raises(InvalidStateError):
            stock_ledger.reverse_movement(out.id)
        with pytest.raises(InvalidStateError):
            stock_ledger.reverse_movement(reversal.id)

    def test_reversing_receipt_cannot_go_negative(self, db_session, tea):
        receipt = stock_ledger.record_movement(tea.id, "in", 2)
        stock_ledger.record_movement(tea.id, "out", 7)
        with pytest.raises(InsufficientStockError):
            stock_ledger.reverse_movement(receipt.id)
        assert stock_ledger.current_balance(tea.id) == 0

    def test_reverse_adjust_flips_direction(self, db_session, tea):
        adj = stock_ledger.record_movement(tea.id, "adjust", 2, direction=-1)
        reversal = stock_ledger.reverse_movement(adj.id)
        assert reversal.direction == 1
        assert stock_ledger.current_balance(tea.id) == 5


class TestDelete:
    def test_delete_backs_out_effect(self, db_session, tea):
        receipt = stock_ledger.record_movement(tea.id, "in", 4)
        stock_ledger.delete_movement(receipt.id)
        assert stock_ledger.current_balance(tea.id) == 5
        assert_consistent(tea.id)

    def test_delete_refused_when_balance_would_go_negative(self, db_session, tea):
        receipt = stock_ledger.record_movement(tea.id, "in", 4)
        stock_ledger.record_movement(tea.id, "out", 8)
        with pytest.raises(InsufficientStockError):
            stock_ledger.delete_movement(receipt.id)
        assert stock_ledger.current_balance(tea.id) == 1
        assert db_session.get(StockMovement, receipt.id) is not None

    def test_delete_refused_for_reversed_movement(self, db_session, tea):
        out = stock_ledger.record_movement(tea.id, "out", 1)
        stock_ledger.reverse_movement(out.id)
        with pytest.raises(ValidationError):
            stock_ledger.delete_movement(out.id)

    def test_delete_missing(self, db_session):
        with pytest.raises(NotFoundError):
            stock_ledger.delete_movement(9999)


class TestAudit:
    def test_clean_ledger(self, db_session, tea, sugar):
        assert stock_ledger.audit_ledger() == []
        assert stock_ledger.reconcile(tea.id) == 5

    def test_detects_cache_written_outside_ledger(self, db_session, tea, sugar):
        db_session.execute(update(Product).where(Product.id == tea.id).values(stock_quantity=99))
        db_session.commit()

        mismatches = stock_ledger.audit_ledger()
        assert mismatches == [{
            "product_id": tea.id,
            "name": "Green Tea",
            "cached": 99,
            "ledger": 5,
            "difference": 94,
        }]
        with pytest.raises(LedgerConsistencyError):
            stock_ledger.reconcile(tea.id)
        # Reported, not repaired
        assert stock_ledger.current_balance(tea.id) == 99

    def test_product_without_movements(self, db_session, make_product):
        empty = make_product(name="Empty", stock=0)
        assert stock_ledger.ledger_balance(empty.id) == 0
        assert stock_ledger.audit_ledger() == []
