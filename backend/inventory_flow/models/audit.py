from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


AUDIT_ACTIONS = ("INSERT", "UPDATE", "DELETE")


class AuditEntry(db.Model):
    """
    Append-only change record for monitored entities.

    Rows are written by the flush listener in services.audit_service, never
    by application code directly. actor_user_id carries no foreign key so
    history survives whatever happens to the user row.
    """
    __tablename__ = "audit_entries"
    __append_only__ = True
    __table_args__ = (
        db.Index("ix_audit_entries_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_entries_actor_created", "actor_user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_user_id = db.Column(db.Integer, nullable=True)
    action = db.Column(db.String(8), nullable=False)

    # Table name of the monitored model, e.g. "products"
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)

    before_snapshot = db.Column(db.JSON, nullable=True)
    after_snapshot = db.Column(db.JSON, nullable=True)

    actor_ip = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<AuditEntry {self.action} {self.entity_type}:{self.entity_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "before": self.before_snapshot,
            "after": self.after_snapshot,
            "actor_ip": self.actor_ip,
            "created_at": to_utc_z(self.created_at),
        }
