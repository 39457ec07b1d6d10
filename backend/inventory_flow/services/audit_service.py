# Overview: Service-layer operations for the audit ledger; captures every write to monitored entities at flush time.

"""
Audit Ledger

Every INSERT, UPDATE and DELETE of a monitored model (classes flagged with
``__audited__ = True``) produces exactly one AuditEntry row, written on the
same connection inside the same transaction as the change itself. If the
audit insert fails, the flush fails and the business change is rolled back
with it.

Inserts and updates are captured in a Session ``after_flush`` listener,
deletes in a mapper ``after_delete`` listener (which also sees orphans
removed through delete-orphan cascades). Services never call into this
module to get audited; forgetting is not possible.

IMMUTABILITY:
- Models flagged ``__append_only__ = True`` (AuditEntry, InventoryAdjustment)
  reject UPDATE and DELETE at the mapper level.
- Bulk ORM UPDATE/DELETE statements against monitored or append-only models
  are refused, since they would skip the flush and therefore the capture.
- PostgreSQL triggers installed by the migration reject the same writes
  for anything that reaches the database some other way.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal

from flask import g, has_app_context, has_request_context, request
from sqlalchemy import event, insert, inspect
from sqlalchemy.orm import Session, attributes, object_session

from ..extensions import db
from ..models import AuditEntry
from ..time_utils import utcnow, to_utc_z
from .errors import AuditLogImmutableError, InvalidArgumentError


_ACTOR_KEY = "audit_actor"
_DELETED_KEY = "audit_deleted_states"
_installed = False


# =============================================================================
# ACTOR CONTEXT
# =============================================================================


@contextmanager
def acting_as(actor_user_id: int | None, actor_ip: str | None = None):
    """
    Attribute changes flushed inside the block to `actor_user_id`.

    Nested blocks restore the outer actor on exit.
    """
    info = db.session.info
    previous = info.get(_ACTOR_KEY)
    info[_ACTOR_KEY] = (actor_user_id, actor_ip)
    try:
        yield
    finally:
        if previous is None:
            info.pop(_ACTOR_KEY, None)
        else:
            info[_ACTOR_KEY] = previous


def _current_actor(session: Session) -> tuple[int | None, str | None]:
    actor_user_id, actor_ip = session.info.get(_ACTOR_KEY) or (None, None)

    if actor_user_id is None and has_app_context():
        user = g.get("current_user")
        if user is not None:
            actor_user_id = user.id
    if actor_ip is None and has_request_context():
        actor_ip = request.remote_addr

    return actor_user_id, actor_ip


# =============================================================================
# SNAPSHOTS
# =============================================================================


def _json_value(value):
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _column_attrs(obj):
    return inspect(obj).mapper.column_attrs


def snapshot(obj) -> dict:
    """Current column values of `obj`, read from its state without lazy loads."""
    state = inspect(obj)
    return {
        prop.key: _json_value(state.dict.get(prop.key))
        for prop in state.mapper.column_attrs
    }


def _before_snapshot(obj) -> dict:
    """Column values as they were loaded, reconstructed from attribute history."""
    state = inspect(obj)
    before = {}
    for prop in state.mapper.column_attrs:
        hist = attributes.get_history(obj, prop.key, passive=attributes.PASSIVE_NO_INITIALIZE)
        if hist.deleted:
            before[prop.key] = _json_value(hist.deleted[0])
        else:
            before[prop.key] = _json_value(state.dict.get(prop.key))
    return before


def _has_column_changes(obj) -> bool:
    for prop in _column_attrs(obj):
        hist = attributes.get_history(obj, prop.key, passive=attributes.PASSIVE_NO_INITIALIZE)
        if hist.added or hist.deleted:
            return True
    return False


def _entity_id(obj) -> str:
    state = inspect(obj)
    values = []
    for column in state.mapper.primary_key:
        prop = state.mapper.get_property_by_column(column)
        values.append(state.dict.get(prop.key))
    return ",".join("" if v is None else str(v) for v in values)


def _is_audited(obj) -> bool:
    return bool(getattr(type(obj), "__audited__", False))


# =============================================================================
# FLUSH CAPTURE
# =============================================================================


def _audit_row(obj, action: str, before, after, actor: tuple[int | None, str | None], now) -> dict:
    actor_user_id, actor_ip = actor
    return {
        "actor_user_id": actor_user_id,
        "action": action,
        "entity_type": type(obj).__tablename__,
        "entity_id": _entity_id(obj),
        "before_snapshot": before,
        "after_snapshot": after,
        "actor_ip": actor_ip,
        "created_at": now,
    }


def _capture_delete(mapper, connection, target) -> None:
    """
    Record a DELETE as the row goes, on the flush's own connection.

    Runs for explicit deletes, cascades and orphans alike; orphans never
    show up in Session.deleted.
    """
    session = object_session(target)
    actor = _current_actor(session) if session is not None else (None, None)
    connection.execute(
        insert(AuditEntry.__table__),
        [_audit_row(target, "DELETE", _before_snapshot(target), None, actor, utcnow())],
    )
    if session is not None:
        session.info.setdefault(_DELETED_KEY, set()).add(inspect(target))


def _capture_changes(session: Session, flush_context) -> None:
    rows = []
    actor = _current_actor(session)
    now = utcnow()
    deleted_states = session.info.pop(_DELETED_KEY, set())

    for obj in session.new:
        if _is_audited(obj):
            rows.append(_audit_row(obj, "INSERT", None, snapshot(obj), actor, now))

    for obj in session.dirty:
        if not _is_audited(obj) or obj in session.deleted or inspect(obj) in deleted_states:
            continue
        if not _has_column_changes(obj):
            continue
        rows.append(_audit_row(obj, "UPDATE", _before_snapshot(obj), snapshot(obj), actor, now))

    if rows:
        session.connection().execute(insert(AuditEntry.__table__), rows)


def _forget_deletes(session: Session) -> None:
    session.info.pop(_DELETED_KEY, None)


def _reject_append_only_write(mapper, connection, target):
    raise AuditLogImmutableError(
        f"{type(target).__name__} rows are append-only and cannot be modified or deleted"
    )


def _protected_tables() -> set[str]:
    return {
        m.local_table.name
        for m in db.Model.registry.mappers
        if getattr(m.class_, "__audited__", False) or getattr(m.class_, "__append_only__", False)
    }


def _reject_bulk_writes(orm_execute_state) -> None:
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return

    for mapper in orm_execute_state.all_mappers:
        cls = mapper.class_
        if getattr(cls, "__audited__", False) or getattr(cls, "__append_only__", False):
            raise AuditLogImmutableError(
                f"Bulk UPDATE/DELETE on {cls.__name__} would bypass the audit ledger"
            )

    table = getattr(orm_execute_state.statement, "table", None)
    if table is not None and getattr(table, "name", None) in _protected_tables():
        raise AuditLogImmutableError(
            f"Direct UPDATE/DELETE on {table.name} would bypass the audit ledger"
        )


def install_audit_hooks() -> None:
    """Register the flush listener and immutability guards once per process."""
    global _installed
    if _installed:
        return

    event.listen(Session, "after_flush", _capture_changes)
    event.listen(Session, "do_orm_execute", _reject_bulk_writes)
    event.listen(Session, "after_rollback", _forget_deletes)

    for mapper in db.Model.registry.mappers:
        if getattr(mapper.class_, "__audited__", False):
            event.listen(mapper.class_, "after_delete", _capture_delete)
        if getattr(mapper.class_, "__append_only__", False):
            event.listen(mapper.class_, "before_update", _reject_append_only_write)
            event.listen(mapper.class_, "before_delete", _reject_append_only_write)

    _installed = True


# =============================================================================
# READS
# =============================================================================


def list_audit_entries(
    *,
    entity_type: str | None = None,
    entity_id=None,
    action: str | None = None,
    actor_user_id: int | None = None,
    limit: int = 200,
) -> list[AuditEntry]:
    """Newest first. Never locks."""
    if action is not None and action not in ("INSERT", "UPDATE", "DELETE"):
        raise InvalidArgumentError("action must be one of INSERT, UPDATE, DELETE")

    q = db.session.query(AuditEntry)
    if entity_type:
        q = q.filter(AuditEntry.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditEntry.entity_id == str(entity_id))
    if action:
        q = q.filter(AuditEntry.action == action)
    if actor_user_id is not None:
        q = q.filter(AuditEntry.actor_user_id == actor_user_id)

    limit = max(1, min(int(limit), 1000))
    return q.order_by(AuditEntry.id.desc()).limit(limit).all()


def get_entity_history(entity_type: str, entity_id) -> list[AuditEntry]:
    """Every entry for one entity, oldest first."""
    return (
        db.session.query(AuditEntry)
        .filter(AuditEntry.entity_type == entity_type, AuditEntry.entity_id == str(entity_id))
        .order_by(AuditEntry.id.asc())
        .all()
    )
