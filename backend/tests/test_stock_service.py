"""
Stock ledger tests.

Verifies:
- Every on-hand change leaves exactly one adjustment with before/after
- Deductions never drive stock negative
- Manual adjustments and restocks are administrator-only
- Piece counts reject zero, negative, boolean and non-integer input
"""

import pytest

from inventory_flow.extensions import db
from inventory_flow.models import InventoryAdjustment, Product
from inventory_flow.services import stock_service
from inventory_flow.services.errors import (
    ForbiddenError,
    InsufficientStockError,
    InvalidArgumentError,
    NotFoundError,
)


def _on_hand(product_id: int) -> int:
    return db.session.get(Product, product_id).on_hand_pieces


def _adjustment_count(product_id: int) -> int:
    return db.session.query(InventoryAdjustment).filter_by(product_id=product_id).count()


# =============================================================================
# INITIAL STOCK
# =============================================================================


class TestInitialStock:

    def test_initial_pieces_booked_as_restock(self, soda):
        adjustments = stock_service.list_adjustments(product_id=soda.id)
        assert len(adjustments) == 1
        assert adjustments[0].adjustment_type == "restock"
        assert adjustments[0].quantity_before == 0
        assert adjustments[0].quantity_after == 10
        assert adjustments[0].reason == "Initial stock"

    def test_stock_level_splits_cases_and_loose_pieces(self, chips, admin):
        stock_service.manual_adjust(chips.id, -5, "damaged", admin.id)
        level = stock_service.get_stock_level(chips.id)
        assert level["on_hand_pieces"] == 43
        assert level["available_pieces"] == 43
        assert level["full_cases"] == 3
        assert level["loose_pieces"] == 7

    def test_stock_level_unknown_product(self, app):
        with pytest.raises(NotFoundError):
            stock_service.get_stock_level(999)


# =============================================================================
# DEDUCT / RESTORE
# =============================================================================


class TestDeductRestore:

    def test_deduct_records_before_and_after(self, soda, staff):
        adjustment = stock_service.deduct(soda.id, 4, staff.id, reason="counter sale")
        assert adjustment.quantity_change == -4
        assert adjustment.quantity_before == 10
        assert adjustment.quantity_after == 6
        assert adjustment.actor_user_id == staff.id
        assert _on_hand(soda.id) == 6

    def test_deduct_to_exactly_zero_is_allowed(self, soda, staff):
        stock_service.deduct(soda.id, 10, staff.id)
        assert _on_hand(soda.id) == 0

    def test_deduct_beyond_on_hand_fails_without_side_effects(self, soda, staff):
        before_count = _adjustment_count(soda.id)
        with pytest.raises(InsufficientStockError) as exc_info:
            stock_service.deduct(soda.id, 11, staff.id)

        details = exc_info.value.details
        assert details["product_id"] == soda.id
        assert details["requested_pieces"] == 11
        assert details["on_hand_pieces"] == 10
        assert _on_hand(soda.id) == 10
        assert _adjustment_count(soda.id) == before_count

    def test_restore_adds_pieces(self, soda, staff):
        stock_service.restore(soda.id, 3, staff.id)
        assert _on_hand(soda.id) == 13

    @pytest.mark.parametrize("pieces", [0, -1, 1.5, "2", True, None])
    def test_rejects_non_positive_or_non_integer_pieces(self, soda, staff, pieces):
        with pytest.raises(InvalidArgumentError):
            stock_service.deduct(soda.id, pieces, staff.id)
        assert _on_hand(soda.id) == 10

    def test_unapproved_user_cannot_move_stock(self, soda, pending_user):
        with pytest.raises(ForbiddenError):
            stock_service.deduct(soda.id, 1, pending_user.id)

    def test_unknown_product(self, staff):
        with pytest.raises(NotFoundError):
            stock_service.deduct(12345, 1, staff.id)


# =============================================================================
# ADMINISTRATOR OPERATIONS
# =============================================================================


class TestManualAdjust:

    def test_admin_can_adjust_down_with_reason_code(self, soda, admin):
        adjustment = stock_service.manual_adjust(soda.id, -2, "expired", admin.id, note="shelf check")
        assert adjustment.adjustment_type == "expired"
        assert adjustment.reason == "shelf check"
        assert _on_hand(soda.id) == 8

    def test_staff_cannot_adjust(self, soda, staff):
        with pytest.raises(ForbiddenError):
            stock_service.manual_adjust(soda.id, 5, "correction", staff.id)
        assert _on_hand(soda.id) == 10

    def test_zero_delta_rejected(self, soda, admin):
        with pytest.raises(InvalidArgumentError):
            stock_service.manual_adjust(soda.id, 0, "correction", admin.id)

    def test_unknown_reason_code_rejected(self, soda, admin):
        with pytest.raises(InvalidArgumentError):
            stock_service.manual_adjust(soda.id, 1, "found-on-floor", admin.id)

    def test_adjust_cannot_go_negative(self, soda, admin):
        with pytest.raises(InsufficientStockError):
            stock_service.manual_adjust(soda.id, -11, "theft", admin.id)
        assert _on_hand(soda.id) == 10


class TestRestock:

    def test_admin_restock(self, soda, admin):
        adjustment = stock_service.restock(soda.id, 25, admin.id, note="PO 118")
        assert adjustment.adjustment_type == "restock"
        assert _on_hand(soda.id) == 35

    def test_staff_cannot_restock(self, soda, staff):
        with pytest.raises(ForbiddenError):
            stock_service.restock(soda.id, 25, staff.id)

    def test_restock_rejects_negative(self, soda, admin):
        with pytest.raises(InvalidArgumentError):
            stock_service.restock(soda.id, -5, admin.id)


# =============================================================================
# LEDGER CONSISTENCY
# =============================================================================


class TestLedgerConsistency:

    def test_on_hand_equals_sum_of_adjustments(self, soda, admin, staff):
        stock_service.deduct(soda.id, 3, staff.id)
        stock_service.restore(soda.id, 1, staff.id)
        stock_service.restock(soda.id, 7, admin.id)
        stock_service.manual_adjust(soda.id, -2, "damaged", admin.id)

        adjustments = sorted(stock_service.list_adjustments(product_id=soda.id), key=lambda a: a.id)
        assert sum(a.quantity_change for a in adjustments) == _on_hand(soda.id) == 13
        for previous, current in zip(adjustments, adjustments[1:]):
            assert current.quantity_before == previous.quantity_after

    def test_low_stock_listing(self, soda, chips, admin):
        stock_service.manual_adjust(chips.id, -40, "correction", admin.id)
        low = stock_service.list_low_stock_products()
        assert [p.sku for p in low] == ["CHIPS-12"]
