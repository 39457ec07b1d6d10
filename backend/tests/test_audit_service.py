"""
Audit ledger tests.

Verifies:
- Every write to a monitored entity leaves exactly one entry, same transaction
- Entries carry before/after snapshots and the acting user
- A rolled back change leaves no entry behind
- Audit entries and inventory adjustments cannot be modified or deleted
- Bulk statements that would skip the capture are refused
"""

import pytest
from sqlalchemy import delete, update

from inventory_flow.extensions import db
from inventory_flow.models import AuditEntry, InventoryAdjustment, Product
from inventory_flow.services import audit_service, order_service, stock_service
from inventory_flow.services.errors import AuditLogImmutableError, InsufficientStockError, InvalidArgumentError


def _entries(entity_type: str, entity_id) -> list[AuditEntry]:
    return audit_service.get_entity_history(entity_type, entity_id)


# =============================================================================
# CAPTURE
# =============================================================================


class TestCapture:

    def test_product_insert_captured(self, soda, admin):
        history = _entries("products", soda.id)
        assert history[0].action == "INSERT"
        assert history[0].before_snapshot is None
        assert history[0].after_snapshot["sku"] == "SODA-5"
        assert history[0].actor_user_id == admin.id

    def test_stock_change_captured_with_before_and_after(self, soda, staff):
        stock_service.deduct(soda.id, 4, staff.id)

        update_entry = _entries("products", soda.id)[-1]
        assert update_entry.action == "UPDATE"
        assert update_entry.before_snapshot["on_hand_pieces"] == 10
        assert update_entry.after_snapshot["on_hand_pieces"] == 6
        assert update_entry.actor_user_id == staff.id

    def test_confirm_writes_one_entry_per_product_and_order(self, soda, chips, staff):
        order = order_service.create_draft(staff.id, [
            {"product_id": soda.id, "quantity": 1, "unit": "case"},
            {"product_id": chips.id, "quantity": 1, "unit": "case"},
        ])
        last_id = db.session.query(db.func.max(AuditEntry.id)).scalar()

        order_service.confirm_order(order.id, staff.id)

        new_entries = db.session.query(AuditEntry).filter(AuditEntry.id > last_id).all()
        touched = sorted((e.entity_type, e.entity_id, e.action) for e in new_entries)
        assert touched == sorted([
            ("orders", str(order.id), "UPDATE"),
            ("products", str(soda.id), "UPDATE"),
            ("products", str(chips.id), "UPDATE"),
        ])
        order_entry = next(e for e in new_entries if e.entity_type == "orders")
        assert order_entry.before_snapshot["status"] == "draft"
        assert order_entry.after_snapshot["status"] == "confirmed"

    def test_failed_transaction_leaves_no_entry(self, soda, staff):
        before = db.session.query(AuditEntry).count()
        with pytest.raises(InsufficientStockError):
            stock_service.deduct(soda.id, 50, staff.id)
        assert db.session.query(AuditEntry).count() == before

    def test_unchanged_dirty_object_not_recorded(self, soda):
        before = db.session.query(AuditEntry).count()
        product = db.session.get(Product, soda.id)
        product.name = product.name
        db.session.commit()
        assert db.session.query(AuditEntry).count() == before

    def test_delete_captured(self, soda, staff):
        order = order_service.create_draft(staff.id, [{"product_id": soda.id, "quantity": 1, "unit": "case"}])
        order_id, line_id = order.id, order.lines[0].id
        order_service.delete_draft(order_id, staff.id)

        assert _entries("orders", order_id)[-1].action == "DELETE"
        line_entry = _entries("order_lines", line_id)[-1]
        assert line_entry.action == "DELETE"
        assert line_entry.before_snapshot["cases_ordered"] == 1

    def test_removed_draft_line_captured(self, soda, chips, staff):
        order = order_service.create_draft(staff.id, [
            {"product_id": soda.id, "quantity": 1, "unit": "case"},
            {"product_id": chips.id, "quantity": 2, "unit": "case"},
        ])
        removed_id, kept_id = order.lines[0].id, order.lines[1].id

        order_service.remove_line(order.id, removed_id, staff.id)

        history = _entries("order_lines", removed_id)
        assert [e.action for e in history] == ["INSERT", "DELETE"]
        assert history[-1].before_snapshot["product_id"] == soda.id
        assert history[-1].after_snapshot is None
        assert history[-1].actor_user_id == staff.id
        assert [e.action for e in _entries("order_lines", kept_id)] == ["INSERT"]

    def test_each_delete_recorded_once(self, soda, staff):
        order = order_service.create_draft(staff.id, [{"product_id": soda.id, "quantity": 1, "unit": "case"}])
        order_id, line_id = order.id, order.lines[0].id
        order_service.delete_draft(order_id, staff.id)

        assert [e.action for e in _entries("orders", order_id)].count("DELETE") == 1
        assert [e.action for e in _entries("order_lines", line_id)].count("DELETE") == 1


# =============================================================================
# IMMUTABILITY
# =============================================================================


class TestImmutability:

    def test_audit_entry_cannot_be_modified(self, soda):
        entry = _entries("products", soda.id)[0]
        entry.action = "DELETE"
        with pytest.raises(AuditLogImmutableError):
            db.session.flush()
        db.session.rollback()

    def test_audit_entry_cannot_be_deleted(self, soda):
        entry = _entries("products", soda.id)[0]
        db.session.delete(entry)
        with pytest.raises(AuditLogImmutableError):
            db.session.flush()
        db.session.rollback()

    def test_inventory_adjustment_cannot_be_modified(self, soda):
        adjustment = db.session.query(InventoryAdjustment).filter_by(product_id=soda.id).first()
        adjustment.quantity_change = 9999
        with pytest.raises(AuditLogImmutableError):
            db.session.flush()
        db.session.rollback()

    def test_bulk_update_on_monitored_model_refused(self, soda):
        with pytest.raises(AuditLogImmutableError):
            db.session.execute(update(Product).where(Product.id == soda.id).values(on_hand_pieces=500))
        db.session.rollback()
        assert db.session.get(Product, soda.id).on_hand_pieces == 10

    def test_bulk_delete_on_audit_table_refused(self, soda):
        with pytest.raises(AuditLogImmutableError):
            db.session.execute(delete(AuditEntry))
        db.session.rollback()
        assert db.session.query(AuditEntry).count() > 0


# =============================================================================
# READS
# =============================================================================


class TestReads:

    def test_list_filters_and_order(self, soda, chips, staff):
        stock_service.deduct(soda.id, 1, staff.id)
        entries = audit_service.list_audit_entries(entity_type="products", action="UPDATE")
        assert entries
        assert all(e.entity_type == "products" and e.action == "UPDATE" for e in entries)
        assert [e.id for e in entries] == sorted((e.id for e in entries), reverse=True)

    def test_filter_by_actor(self, soda, staff):
        stock_service.deduct(soda.id, 1, staff.id)
        entries = audit_service.list_audit_entries(actor_user_id=staff.id)
        assert [(e.entity_type, e.action) for e in entries] == [("products", "UPDATE")]

    def test_unknown_action_rejected(self, app):
        with pytest.raises(InvalidArgumentError):
            audit_service.list_audit_entries(action="TRUNCATE")
