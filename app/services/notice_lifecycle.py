"""
Notice Lifecycle Service

Manages notices from submission to moderation decision:
  - Create  (staff / admin)  → status "pending", attachments in the same transaction
  - Approve (admin)          pending → approved, sets approved_by / approved_at
  - Reject  (admin)          pending → rejected
  - Update  (author / admin) field edits while still pending
  - Delete  (admin)          removes the notice; attachments and views cascade

Each stage runs sanitise → screen → persist → audit → publish. The
screening verdict is returned to the author but never blocks creation.
Persistence failures roll back the whole step and surface as
TransientIOError; audit failures are logged and reported through
``audit_recorded`` without undoing the committed change.

Usage:
    from app.services.notice_lifecycle import create_notice, approve_notice

    result = create_notice(staff.id, title="Library hours", content="...")
    approve_notice(result["notice"]["id"], admin.id)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    NotFoundError,
    StateError,
    TransientIOError,
    ValidationError,
)
from app.models import db
from app.models.auth import ROLE_ADMIN, ROLE_STAFF
from app.models.notice import (
    CONTENT_MAX_LENGTH,
    CONTENT_MIN_LENGTH,
    NOTICE_PRIORITIES,
    NOTICE_STATUSES,
    NOTICE_TRANSITIONS,
    TITLE_MAX_LENGTH,
    Category,
    Notice,
)
from app.services.attachment_service import register_attachments, validate_descriptors
from app.services.audit_service import action_for_change, record_event
from app.services.moderation import sanitize_content, screen_content
from app.services.realtime import publish_change
from app.services.role_service import get_user_role, require_role
from app.utils.helpers import parse_datetime_field

logger = logging.getLogger(__name__)

AUTHOR_ROLES = {ROLE_STAFF, ROLE_ADMIN}
MODERATOR_ROLES = {ROLE_ADMIN}

UPDATABLE_FIELDS = ("title", "content", "category_id", "priority", "publish_at", "expires_at")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Transaction scope ────────────────────────────────────────────────────────

@contextmanager
def notice_transaction(operation: str):
    """Commit everything added inside the block, or nothing.

    Driver errors roll back and become TransientIOError; any other
    exception rolls back and propagates unchanged.
    """
    try:
        yield db.session
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Persistence failed during %s", operation)
        raise TransientIOError(operation, "Could not save the notice, please try again") from exc
    except Exception:
        db.session.rollback()
        raise


# ── Validation ───────────────────────────────────────────────────────────────

STRING_FIELDS = ("title", "content", "priority", "publish_at", "expires_at")


def _check_types(fields: dict) -> None:
    """Text fields must arrive as strings (or null)."""
    bad = {
        key: "must be a string"
        for key in STRING_FIELDS
        if fields.get(key) is not None and not isinstance(fields[key], (str, datetime))
    }
    if bad:
        raise ValidationError(f"Invalid field type: {', '.join(sorted(bad))}", details=bad)


def _validate_fields(fields: dict) -> dict:
    """Normalise and check notice fields. Only keys present are validated."""
    _check_types(fields)
    errors: dict[str, str] = {}
    out = dict(fields)

    if "title" in out:
        title = (out["title"] or "").strip()
        if not title:
            errors["title"] = "Title is required"
        elif len(title) > TITLE_MAX_LENGTH:
            errors["title"] = f"Title must be at most {TITLE_MAX_LENGTH} characters"
        out["title"] = title

    if "content" in out:
        content = sanitize_content(out["content"])
        if not content:
            errors["content"] = "Content is required"
        elif len(content) < CONTENT_MIN_LENGTH:
            errors["content"] = f"Content must be at least {CONTENT_MIN_LENGTH} characters"
        elif len(content) > CONTENT_MAX_LENGTH:
            errors["content"] = f"Content must be at most {CONTENT_MAX_LENGTH} characters"
        out["content"] = content

    if "priority" in out:
        priority = out["priority"] or "normal"
        if priority not in NOTICE_PRIORITIES:
            errors["priority"] = f"priority must be one of: {', '.join(NOTICE_PRIORITIES)}"
        out["priority"] = priority

    if "category_id" in out and out["category_id"] not in (None, ""):
        try:
            category_id = int(out["category_id"])
        except (TypeError, ValueError):
            category_id = None
        if category_id is None or db.session.get(Category, category_id) is None:
            errors["category_id"] = "Unknown category"
        out["category_id"] = category_id
    elif "category_id" in out:
        out["category_id"] = None

    for key in ("publish_at", "expires_at"):
        if key in out:
            out[key] = parse_datetime_field(out, key)

    if out.get("publish_at") and out.get("expires_at") and out["expires_at"] <= out["publish_at"]:
        errors["expires_at"] = "expires_at must be after publish_at"

    if errors:
        raise ValidationError("; ".join(errors.values()), details=errors)
    return out


def _get_or_raise(notice_id: int) -> Notice:
    notice = db.session.get(Notice, notice_id)
    if notice is None:
        raise NotFoundError("Notice", notice_id)
    return notice


def _finish(action, actor_id, notice_id, old, new, metadata=None, event=None) -> bool:
    """Audit + realtime publish after a committed change. Returns audit success."""
    log = record_event(
        actor_id=actor_id,
        action=action,
        entity_type="notice",
        entity_id=notice_id,
        old_values=old,
        new_values=new,
        metadata=metadata,
    )
    if log is None:
        logger.warning("Notice %s %s committed without an audit record", notice_id, action)
    if event:
        publish_change("notices", event, new=new, old=old)
    return log is not None


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════

def preview_moderation(title: str, content: str) -> dict:
    """Sanitise and screen without persisting (live author feedback)."""
    _check_types({"title": title, "content": content})
    content = sanitize_content(content or "")
    return {"content": content, "moderation": screen_content(title or "", content).to_dict()}


def check_submission(actor_id: int | None, **fields) -> dict:
    """Role and field checks for a submission; nothing is persisted.

    Multipart submissions call this before their files reach storage.
    Returns the normalised fields.
    """
    require_role(actor_id, AUTHOR_ROLES, action="notice.create")
    return _validate_fields(fields)


def create_notice(
    actor_id: int | None,
    *,
    title: str,
    content: str,
    category_id: int | None = None,
    priority: str = "normal",
    publish_at=None,
    expires_at=None,
    attachments: list[dict] | None = None,
) -> dict:
    """
    Submit a notice for approval.

    Args:
        actor_id: Author (must hold staff or admin).
        attachments: Already-uploaded descriptors
            [{file_name, file_url, mime_type, file_size}].

    Returns:
        {"notice": dict, "moderation": verdict dict, "audit_recorded": bool}

    Raises:
        AuthorizationError, ValidationError, TransientIOError
    """
    fields = check_submission(
        actor_id,
        title=title,
        content=content,
        category_id=category_id,
        priority=priority,
        publish_at=publish_at,
        expires_at=expires_at,
    )
    descriptors = validate_descriptors(attachments)

    verdict = screen_content(fields["title"], fields["content"])
    if not verdict.approved:
        logger.info(
            "Notice by user %s flagged (%s): %s",
            actor_id, verdict.severity, "; ".join(verdict.issues),
        )

    with notice_transaction("notice.create"):
        notice = Notice(author_id=actor_id, status="pending", **fields)
        db.session.add(notice)
        db.session.flush()
        register_attachments(notice, descriptors)

    snapshot = notice.snapshot()
    logger.info("Notice %s created by user %s (%d attachment(s))", notice.id, actor_id, len(descriptors))
    recorded = _finish(
        "create", actor_id, notice.id, None, snapshot,
        metadata={"status": notice.status, "moderation": verdict.to_dict()},
        event="INSERT",
    )
    return {
        "notice": notice.to_dict(include_attachments=True),
        "moderation": verdict.to_dict(),
        "audit_recorded": recorded,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════

def validate_transition(notice: Notice, action: str) -> dict:
    """
    Check whether ``action`` is legal from the notice's current status.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = NOTICE_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": notice.status, "to": None,
                "reason": f"Unknown action: {action}"}
    if notice.status not in rule["from"]:
        return {"valid": False, "from": notice.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{notice.status}'"}
    return {"valid": True, "from": notice.status, "to": rule["to"], "reason": None}


def transition_notice(
    notice_id: int,
    action: str,
    actor_id: int | None,
    *,
    reason: str | None = None,
) -> dict:
    """
    Execute a moderation decision (approve / reject).

    Returns:
        {"notice", "previous_status", "new_status", "action", "audit_recorded"}

    Raises:
        AuthorizationError, NotFoundError, StateError, TransientIOError
    """
    require_role(actor_id, MODERATOR_ROLES, action=f"notice.{action}")

    notice = _get_or_raise(notice_id)
    validation = validate_transition(notice, action)
    if not validation["valid"]:
        raise StateError("notice", notice_id, notice.status, action, validation["reason"])

    old = notice.snapshot()
    values = {"status": validation["to"]}
    if action == "approve":
        values.update(approved_by=actor_id, approved_at=_utcnow())

    # Only a row still in a source status is updated
    with notice_transaction(f"notice.{action}"):
        changed = (
            Notice.query
            .filter(Notice.id == notice_id, Notice.status.in_(sorted(NOTICE_TRANSITIONS[action]["from"])))
            .update(values, synchronize_session=False)
        )
    db.session.refresh(notice)
    if changed != 1:
        logger.warning("Notice %s changed to %s before %s could apply", notice_id, notice.status, action)
        raise StateError("notice", notice_id, notice.status, action,
                         f"Cannot '{action}' from status '{notice.status}'")

    new = notice.snapshot()
    audit_action = action_for_change(old, new)
    metadata = {"approved_by": new["approved_by"], "approved_at": new["approved_at"]}
    if reason:
        metadata["reason"] = reason
    logger.info("Notice %s %s by user %s", notice_id, audit_action, actor_id)
    recorded = _finish(
        audit_action, actor_id, notice_id,
        {"status": old["status"]}, {"status": new["status"]},
        metadata=metadata,
        event=None,
    )
    publish_change("notices", "UPDATE", new=new, old=old)

    return {
        "notice": notice.to_dict(include_attachments=True),
        "previous_status": validation["from"],
        "new_status": validation["to"],
        "action": audit_action,
        "audit_recorded": recorded,
    }


def approve_notice(notice_id: int, actor_id: int | None) -> dict:
    return transition_notice(notice_id, "approve", actor_id)


def reject_notice(notice_id: int, actor_id: int | None, reason: str | None = None) -> dict:
    return transition_notice(notice_id, "reject", actor_id, reason=reason)


# ═════════════════════════════════════════════════════════════════════════════
# Update / Delete
# ═════════════════════════════════════════════════════════════════════════════

def update_notice(notice_id: int, actor_id: int | None, changes: dict) -> dict:
    """
    Edit a pending notice. Author or admin only; status is not editable.

    Args:
        changes: Field name → new value, as received from the client.

    Returns:
        {"notice", "moderation", "audit_recorded"}
    """
    role = require_role(actor_id, AUTHOR_ROLES, action="notice.update")
    if not isinstance(changes, dict):
        raise ValidationError("Request body must be a JSON object")
    notice = _get_or_raise(notice_id)
    if role != ROLE_ADMIN and notice.author_id != actor_id:
        raise NotFoundError("Notice", notice_id)
    if notice.status != "pending":
        raise StateError("notice", notice_id, notice.status, "update",
                         "only pending notices can be edited")

    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Fields not editable: {', '.join(sorted(unknown))}",
            details={k: "not editable" for k in sorted(unknown)},
        )
    fields = _validate_fields(changes)

    old = notice.snapshot()
    with notice_transaction("notice.update"):
        for key, value in fields.items():
            setattr(notice, key, value)

    new = notice.snapshot()
    verdict = screen_content(notice.title, notice.content)
    recorded = _finish(action_for_change(old, new), actor_id, notice_id, old, new, event="UPDATE")
    return {
        "notice": notice.to_dict(include_attachments=True),
        "moderation": verdict.to_dict(),
        "audit_recorded": recorded,
    }


def delete_notice(notice_id: int, actor_id: int | None) -> dict:
    """Permanently remove a notice (admin). Attachments and views cascade."""
    require_role(actor_id, MODERATOR_ROLES, action="notice.delete")
    notice = _get_or_raise(notice_id)
    old = notice.snapshot()
    attachment_count = len(notice.attachments)

    with notice_transaction("notice.delete"):
        db.session.delete(notice)

    logger.info("Notice %s deleted by user %s", notice_id, actor_id)
    recorded = _finish(
        "delete", actor_id, notice_id, old, None,
        metadata={"attachments_removed": attachment_count},
        event="DELETE",
    )
    return {"deleted": True, "id": notice_id, "audit_recorded": recorded}


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════

def published_clause(now: datetime):
    """SQL form of Notice.is_published."""
    return and_(
        Notice.status == "approved",
        or_(Notice.publish_at.is_(None), Notice.publish_at <= now),
    )


def _visible_query(viewer_id: int | None, role: str, now: datetime):
    q = Notice.query
    if role == ROLE_ADMIN:
        return q
    if role == ROLE_STAFF and viewer_id is not None:
        return q.filter(or_(published_clause(now), Notice.author_id == viewer_id))
    return q.filter(published_clause(now))


def list_notices(
    viewer_id: int | None,
    *,
    status: str | None = None,
    category_id: int | None = None,
    search: str | None = None,
    mine: bool = False,
    active_only: bool = False,
) -> list[Notice]:
    """Notices the viewer may read, newest first.

    Students and anonymous readers only get published notices. Staff also
    get their own notices in any status. Admin get everything.
    """
    now = _utcnow()
    role = get_user_role(viewer_id) if viewer_id is not None else None
    q = _visible_query(viewer_id, role, now)

    if status:
        if status not in NOTICE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(NOTICE_STATUSES)}")
        q = q.filter(Notice.status == status)
    if category_id is not None:
        q = q.filter(Notice.category_id == category_id)
    if mine:
        q = q.filter(Notice.author_id == viewer_id)
    if active_only:
        q = q.filter(or_(Notice.expires_at.is_(None), Notice.expires_at > now))
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(Notice.title.ilike(pattern), Notice.content.ilike(pattern)))

    return q.order_by(Notice.created_at.desc(), Notice.id.desc()).all()


def get_notice(notice_id: int, viewer_id: int | None) -> Notice:
    """A single notice under the same visibility rule as list_notices."""
    notice = _get_or_raise(notice_id)
    role = get_user_role(viewer_id) if viewer_id is not None else None
    if role == ROLE_ADMIN:
        return notice
    if notice.is_published():
        return notice
    if role == ROLE_STAFF and notice.author_id == viewer_id:
        return notice
    raise NotFoundError("Notice", notice_id)


def list_categories() -> list[Category]:
    return Category.query.order_by(Category.name).all()


def seed_default_categories() -> int:
    """Insert the default categories that do not exist yet. Caller commits."""
    from app.models.notice import DEFAULT_CATEGORIES

    existing = {c.name for c in Category.query.all()}
    added = 0
    for name, description, color in DEFAULT_CATEGORIES:
        if name not in existing:
            db.session.add(Category(name=name, description=description, color=color))
            added += 1
    return added
