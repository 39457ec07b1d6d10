"""
Draft reaper tests.

Verifies:
- Only drafts older than the cutoff are deleted (lines included)
- Confirmed, cancelled and fresh drafts are left alone
- A draft confirmed after the scan is re-checked under lock and skipped
- Re-running is harmless
- Stock is never touched
"""

from datetime import timedelta

from inventory_flow.extensions import db
from inventory_flow.models import AuditEntry, Order, OrderLine, Product
from inventory_flow.services import order_service, reaper_service
from inventory_flow.time_utils import utcnow


def _age(order_id: int, hours: float) -> None:
    order = db.session.get(Order, order_id)
    order.created_at = utcnow() - timedelta(hours=hours)
    db.session.commit()


def _draft(user_id, product_id):
    return order_service.create_draft(user_id, [{"product_id": product_id, "quantity": 1, "unit": "piece"}])


class TestSweepExpiredDrafts:

    def test_deletes_only_expired_drafts(self, soda, staff):
        stale = _draft(staff.id, soda.id)
        fresh = _draft(staff.id, soda.id)
        confirmed = _draft(staff.id, soda.id)
        order_service.confirm_order(confirmed.id, staff.id)
        stale_id, fresh_id, confirmed_id = stale.id, fresh.id, confirmed.id
        _age(stale_id, 30)
        _age(confirmed_id, 30)

        result = reaper_service.sweep_expired_drafts(max_age_hours=24)

        assert result.scanned == 1
        assert result.deleted == 1
        assert result.failed == 0
        assert db.session.get(Order, stale_id) is None
        assert db.session.query(OrderLine).filter_by(order_id=stale_id).count() == 0
        assert db.session.get(Order, fresh_id) is not None
        assert db.session.get(Order, confirmed_id).status == "confirmed"

    def test_reports_deleted_order_numbers(self, soda, staff):
        draft = _draft(staff.id, soda.id)
        order_number = draft.order_number

        result = reaper_service.sweep_expired_drafts(now=utcnow() + timedelta(days=3))

        assert result.to_dict()["order_numbers"] == [order_number]

    def test_rerun_is_idempotent(self, soda, staff):
        _draft(staff.id, soda.id)
        later = utcnow() + timedelta(days=2)

        first = reaper_service.sweep_expired_drafts(now=later)
        second = reaper_service.sweep_expired_drafts(now=later)

        assert first.deleted == 1
        assert second.scanned == 0
        assert second.deleted == 0

    def test_never_touches_stock(self, soda, staff):
        _draft(staff.id, soda.id)
        reaper_service.sweep_expired_drafts(now=utcnow() + timedelta(days=2))
        assert db.session.get(Product, soda.id).on_hand_pieces == 10

    def test_deletion_is_audited(self, soda, staff):
        draft = _draft(staff.id, soda.id)
        order_id = draft.id
        reaper_service.sweep_expired_drafts(now=utcnow() + timedelta(days=2))

        entry = (
            db.session.query(AuditEntry)
            .filter_by(entity_type="orders", entity_id=str(order_id), action="DELETE")
            .one()
        )
        assert entry.before_snapshot["status"] == "draft"
        assert entry.after_snapshot is None

    def test_skips_draft_confirmed_after_scan(self, soda, staff, monkeypatch):
        draft = _draft(staff.id, soda.id)
        order_id = draft.id
        _age(order_id, 30)
        find = reaper_service.find_expired_draft_ids

        def find_then_confirm(cutoff):
            ids = find(cutoff)
            order_service.confirm_order(order_id, staff.id)
            return ids

        monkeypatch.setattr(reaper_service, "find_expired_draft_ids", find_then_confirm)

        result = reaper_service.sweep_expired_drafts(max_age_hours=24)

        assert result.scanned == 1
        assert result.deleted == 0
        assert result.skipped == 1
        order = db.session.get(Order, order_id)
        assert order.status == "confirmed"
        assert len(order.lines) == 1
        assert db.session.get(Product, soda.id).on_hand_pieces == 9

    def test_recheck_skips_non_draft(self, soda, staff):
        draft = _draft(staff.id, soda.id)
        order_id = draft.id
        order_service.confirm_order(order_id, staff.id)

        assert reaper_service._delete_if_still_expired(order_id, utcnow() + timedelta(days=1)) is None
        assert db.session.get(Order, order_id) is not None

    def test_nothing_to_do(self, app):
        result = reaper_service.sweep_expired_drafts()
        assert result.to_dict() == {
            "scanned": 0, "deleted": 0, "skipped": 0, "failed": 0, "order_numbers": [],
        }
