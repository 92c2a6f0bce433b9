"""
University Notice Board
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for notice lifecycle
      transitions and role changes.
"""

import json
from datetime import UTC, datetime

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "create", "update", "delete",
    "approve", "reject",
    "assign_role", "remove_role",
}

AUDIT_ENTITY_TYPES = {"notice", "user_role"}


def _loads(raw):
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None


class AuditLog(db.Model):
    """
    One row per recorded action.  Never updated or deleted by the
    application.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_user", "user_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_created", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Who (NULL = system-initiated)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # What happened
    action = db.Column(
        db.String(30), nullable=False,
        comment="create | update | delete | approve | reject | assign_role | remove_role",
    )

    # Polymorphic entity reference (no FK; outlives the entity)
    entity_type = db.Column(db.String(30), nullable=False, comment="notice | user_role")
    entity_id = db.Column(db.String(36), nullable=True)

    # Change payload (JSON text; NULL when absent)
    old_values_json = db.Column(db.Text, nullable=True)
    new_values_json = db.Column(db.Text, nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    # Request context
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))

    # Timestamp (immutable)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    actor = db.relationship("User", foreign_keys=[user_id])

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def old_values(self) -> dict | None:
        return _loads(self.old_values_json)

    @property
    def new_values(self) -> dict | None:
        return _loads(self.new_values_json)

    @property
    def metadata_values(self) -> dict | None:
        return _loads(self.metadata_json)

    @property
    def actor_name(self) -> str | None:
        return self.actor.full_name if self.actor else None

    def to_dict(self) -> dict:
        created = self.created_at
        if created is not None and created.tzinfo is None:
            created = created.replace(tzinfo=UTC)
        return {
            "id": self.id,
            "user_id": self.user_id,
            "actor_name": self.actor_name,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "metadata": self.metadata_values,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": created.isoformat() if created else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"
