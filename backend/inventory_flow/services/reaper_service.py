# Overview: Service-layer operations for the draft reaper; deletes abandoned drafts, one short transaction per row.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Order
from ..time_utils import hours_ago, utcnow
from .concurrency import lock_for_update, run_in_transaction
from .errors import DomainError


@dataclass
class SweepResult:
    scanned: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    order_numbers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "failed": self.failed,
            "order_numbers": list(self.order_numbers),
        }


def find_expired_draft_ids(cutoff: datetime) -> list[int]:
    """Candidate drafts; every one is re-checked under lock before deletion."""
    rows = (
        db.session.query(Order.id)
        .filter(Order.status == "draft", Order.created_at < cutoff)
        .order_by(Order.id.asc())
        .all()
    )
    return [row.id for row in rows]


def _delete_if_still_expired(order_id: int, cutoff: datetime) -> str | None:
    """
    Delete one draft with its lines, or return None to skip it.

    A row another transaction holds locked (for example a confirmation in
    flight) is skipped rather than waited on; a row that is no longer a
    draft when read under lock is skipped as well.
    """
    def _op():
        order = (
            lock_for_update(db.session.query(Order).filter(Order.id == order_id), skip_locked=True)
            .populate_existing()
            .one_or_none()
        )
        if order is None or order.status != "draft" or order.created_at >= cutoff:
            return None
        order_number = order.order_number
        db.session.delete(order)
        return order_number

    return run_in_transaction(_op, privileged=True)


def sweep_expired_drafts(*, now: datetime | None = None, max_age_hours: int | float | None = None) -> SweepResult:
    """
    Delete every draft older than `max_age_hours` (DRAFT_MAX_AGE_HOURS by default).

    Idempotent: a re-run after a crash or timeout only finds what is left.
    A failure on one row is logged and counted; the sweep carries on.
    Never touches stock, since drafts never reserved any.
    """
    if max_age_hours is None:
        max_age_hours = current_app.config.get("DRAFT_MAX_AGE_HOURS", 24)
    cutoff = hours_ago(max_age_hours, now=now or utcnow())

    result = SweepResult()
    candidate_ids = find_expired_draft_ids(cutoff)
    result.scanned = len(candidate_ids)

    for order_id in candidate_ids:
        try:
            order_number = _delete_if_still_expired(order_id, cutoff)
        except (SQLAlchemyError, DomainError):
            current_app.logger.exception("Draft reaper failed to delete order %s", order_id)
            result.failed += 1
            continue

        if order_number is None:
            current_app.logger.info("Draft reaper skipped order %s (locked or no longer an expired draft)", order_id)
            result.skipped += 1
        else:
            result.deleted += 1
            result.order_numbers.append(order_number)

    current_app.logger.info(
        "Draft reaper: scanned=%s deleted=%s skipped=%s failed=%s cutoff=%s",
        result.scanned, result.deleted, result.skipped, result.failed, cutoff.isoformat(),
    )
    return result
