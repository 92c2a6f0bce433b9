"""
Role Store — maps a user to exactly one of admin / staff / student.

Rules:
  - The first user ever created is assigned admin automatically.
  - Every later user starts as student unless an admin assigns otherwise.
  - A user with no role record is treated as student (least privilege),
    never as an error.
  - ``assign_role`` replaces the user's role (delete, then insert). The
    (user_id, role) unique constraint would allow several rows per user;
    this module never creates more than one.

Usage:
    from app.services.role_service import has_role, require_role

    if has_role(user_id, "admin"):
        ...
    role = require_role(user_id, {"staff", "admin"}, action="notice.create")
"""

import logging
import threading

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    TransientIOError,
    ValidationError,
)
from app.models import db
from app.models.auth import ROLE_ADMIN, ROLE_STUDENT, ROLES, User, UserRole
from app.services.audit_service import record_event

logger = logging.getLogger(__name__)

DEFAULT_ROLE = ROLE_STUDENT

_provision_lock = threading.Lock()


# ═══════════════════════════════════════════════════════════════
# Lookups
# ═══════════════════════════════════════════════════════════════

def get_user_role(user_id: int | None) -> str:
    """Effective role of a user; student when no role record resolves."""
    if user_id is None:
        return DEFAULT_ROLE
    record = (
        UserRole.query
        .filter_by(user_id=user_id)
        .order_by(UserRole.id)
        .first()
    )
    if record is None or record.role not in ROLES:
        return DEFAULT_ROLE
    return record.role


def has_role(user_id: int | None, role: str) -> bool:
    """True when the user's effective role is ``role``."""
    return get_user_role(user_id) == role


def is_admin(user_id: int | None) -> bool:
    return user_id is not None and has_role(user_id, ROLE_ADMIN)


def require_role(user_id: int | None, allowed: set[str] | tuple[str, ...], *, action: str) -> str:
    """Return the caller's role, or raise AuthorizationError if not allowed.

    Anonymous callers (user_id None) are always refused.
    """
    if user_id is None:
        raise AuthorizationError(action)
    role = get_user_role(user_id)
    if role not in allowed:
        logger.warning("User %s (role=%s) denied '%s'", user_id, role, action)
        raise AuthorizationError(action, user_id, role)
    return role


# ═══════════════════════════════════════════════════════════════
# Provisioning & assignment
# ═══════════════════════════════════════════════════════════════

def _audit_role_change(actor_id, action, record_id: int, user_id: int, role: str):
    payload = {"role": role, "user_id": user_id}
    if action == "assign_role":
        old, new = None, payload
    else:
        old, new = payload, None
    return record_event(
        actor_id=actor_id,
        action=action,
        entity_type="user_role",
        entity_id=record_id,
        old_values=old,
        new_values=new,
    )


def provision_initial_role(user: User) -> UserRole:
    """Give a newly created user their starting role.

    The caller has flushed ``user``; this commits. The first user in the
    system becomes admin, everyone else student. The check and the write
    run under ``_provision_lock`` so two sign-ups in one process cannot
    both see themselves as first.
    """
    with _provision_lock:
        others = User.query.filter(User.id != user.id).count()
        is_first = others == 0 and UserRole.query.filter_by(role=ROLE_ADMIN).count() == 0
        role = ROLE_ADMIN if is_first else DEFAULT_ROLE
        record = UserRole(user_id=user.id, role=role)
        db.session.add(record)
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Role provisioning failed for user %s", user.id)
            raise TransientIOError("role.provision", "Could not create the account") from exc

    logger.info("Provisioned role=%s for user %s%s", role, user.id, " (first user)" if is_first else "")
    _audit_role_change(None, "assign_role", record.id, user.id, role)
    return record


def assign_role(actor_id: int | None, user_id: int, role: str) -> dict:
    """Replace a user's role. Admin only.

    Returns:
        {"user_id", "previous_role", "role", "audit_recorded"}

    Raises:
        AuthorizationError, ValidationError, NotFoundError, TransientIOError
    """
    require_role(actor_id, {ROLE_ADMIN}, action="role.assign")

    if role not in ROLES:
        raise ValidationError(
            f"role must be one of: {', '.join(ROLES)}", details={"role": role},
        )
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)

    existing = UserRole.query.filter_by(user_id=user_id).order_by(UserRole.id).all()
    previous_role = existing[0].role if existing else DEFAULT_ROLE
    if [r.role for r in existing] == [role]:
        return {"user_id": user_id, "previous_role": previous_role, "role": role, "audit_recorded": True}

    removed = [(r.id, r.role) for r in existing]
    try:
        for r in existing:
            db.session.delete(r)
        db.session.flush()
        new_record = UserRole(user_id=user_id, role=role)
        db.session.add(new_record)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Role assignment failed for user %s", user_id)
        raise TransientIOError("role.assign", "Failed to update user role") from exc

    logger.info("User %s changed role of user %s: %s → %s", actor_id, user_id, previous_role, role)

    recorded = True
    for record_id, old_role in removed:
        log = _audit_role_change(actor_id, "remove_role", record_id, user_id, old_role)
        recorded = recorded and log is not None
    log = _audit_role_change(actor_id, "assign_role", new_record.id, user_id, role)
    recorded = recorded and log is not None

    return {
        "user_id": user_id,
        "previous_role": previous_role,
        "role": role,
        "audit_recorded": recorded,
    }


def list_users_with_roles() -> list[dict]:
    """All users with their effective role, newest first."""
    users = User.query.order_by(User.created_at.desc(), User.id.desc()).all()
    return [u.to_dict(include_roles=True) for u in users]
