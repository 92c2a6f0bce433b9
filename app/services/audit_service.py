"""
Audit Recorder — append-only trail of lifecycle transitions and role changes.

Recording is best-effort: the triggering operation has already committed
when ``record_event`` runs, and a failed audit write is rolled back on its
own, logged, and reported to the caller by a ``None`` return. It never
raises on the caller's critical path.

Usage:
    from app.services.audit_service import record_event

    log = record_event(
        actor_id=admin.id,
        action="approve",
        entity_type="notice",
        entity_id=notice.id,
        old_values={"status": "pending"},
        new_values={"status": "approved"},
    )
    if log is None:
        ...  # surfaced as an audit warning to the caller
"""

from __future__ import annotations

import csv
import io
import json
import logging

from flask import current_app, has_request_context, request
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from app.models import db
from app.core.exceptions import ValidationError
from app.models.audit import AUDIT_ACTIONS, AUDIT_ENTITY_TYPES, AuditLog
from app.models.auth import User

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_LOG_LIMIT = 1000

CSV_HEADER = ["Timestamp", "User", "Action", "Entity Type", "Entity ID", "Details"]


def _dumps(value):
    if value is None:
        return None
    return json.dumps(value, default=str)


def _request_context() -> tuple[str | None, str | None]:
    if not has_request_context():
        return None, None
    return request.remote_addr, (request.headers.get("User-Agent") or "")[:500] or None


# ── Action classification ────────────────────────────────────────────────────

def action_for_change(old_values: dict | None, new_values: dict | None) -> str:
    """Pick the audit action name for an update of a notice row.

    A status change records the specialised verb (approve / reject);
    every other field-level update records "update".
    """
    old_status = (old_values or {}).get("status")
    new_status = (new_values or {}).get("status")
    if old_status != new_status:
        if new_status == "approved":
            return "approve"
        if new_status == "rejected":
            return "reject"
    return "update"


# ── Writer ───────────────────────────────────────────────────────────────────

def record_event(
    *,
    actor_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int | str | None,
    old_values: dict | None = None,
    new_values: dict | None = None,
    metadata: dict | None = None,
) -> AuditLog | None:
    """Append one audit row in its own commit.

    Args:
        actor_id: User who triggered the event; None for system actions.
        action: create | update | delete | approve | reject | assign_role | remove_role
        entity_type: "notice" | "user_role"
        entity_id: PK of the affected row.
        old_values / new_values: Before / after snapshots (None when absent).
        metadata: Extra context (moderation verdict, rejection reason, …).

    Returns:
        The committed AuditLog, or None when the write failed.
    """
    ip_address, user_agent = _request_context()
    log = AuditLog(
        user_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        old_values_json=_dumps(old_values),
        new_values_json=_dumps(new_values),
        metadata_json=_dumps(metadata),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    try:
        db.session.add(log)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception(
            "Audit write failed: action=%s entity=%s/%s actor=%s",
            action, entity_type, entity_id, actor_id,
        )
        return None
    logger.debug("Audit %s on %s/%s by %s", action, entity_type, entity_id, actor_id)
    return log


# ── Queries ──────────────────────────────────────────────────────────────────

def _limit() -> int:
    return int(current_app.config.get("AUDIT_LOG_LIMIT", DEFAULT_AUDIT_LOG_LIMIT))


def list_audit_logs(
    *,
    search: str | None = None,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    limit: int | None = None,
) -> list[AuditLog]:
    """Newest-first audit rows, capped at AUDIT_LOG_LIMIT.

    ``search`` matches the actor's name, the action or the entity type
    (case-insensitive substring). ``action`` and ``entity_type`` must be
    values the recorder writes.

    Raises:
        ValidationError: unknown action or entity type filter.
    """
    if action and action not in AUDIT_ACTIONS:
        raise ValidationError(
            f"action must be one of: {', '.join(sorted(AUDIT_ACTIONS))}",
            details={"action": "unknown"},
        )
    if entity_type and entity_type not in AUDIT_ENTITY_TYPES:
        raise ValidationError(
            f"entity_type must be one of: {', '.join(sorted(AUDIT_ENTITY_TYPES))}",
            details={"entity_type": "unknown"},
        )
    cap = _limit()
    limit = cap if limit is None else max(1, min(limit, cap))

    q = AuditLog.query.outerjoin(User, AuditLog.user_id == User.id)
    if action:
        q = q.filter(AuditLog.action == action)
    if entity_type:
        q = q.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        q = q.filter(AuditLog.entity_id == str(entity_id))
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(
            User.full_name.ilike(pattern),
            AuditLog.action.ilike(pattern),
            AuditLog.entity_type.ilike(pattern),
        ))

    return q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()


def export_audit_csv(logs: list[AuditLog]) -> str:
    """Render audit rows as CSV (every cell quoted).

    Columns: Timestamp, User, Action, Entity Type, Entity ID, Details.
    Details is a JSON object {"old", "new", "metadata"}.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for log in logs:
        writer.writerow([
            log.created_at.strftime("%Y-%m-%d %H:%M:%S") if log.created_at else "",
            log.actor_name or "Unknown",
            log.action,
            log.entity_type,
            log.entity_id or "",
            json.dumps({
                "old": log.old_values,
                "new": log.new_values,
                "metadata": log.metadata_values,
            }),
        ])
    return buf.getvalue()
