"""
Notice Board — authentication context.

Provides:
    - current_user_id / get_current_user for the JWT-authenticated caller
    - require_auth / require_role decorators for route protection
    - sign_out, which revokes every refresh session of the caller
    - Content-Type enforcement for state-changing API requests

Security model:
    - The JWT middleware (app.middleware.jwt_auth) only identifies the caller.
    - Role checks always re-read the Role Store; the role claim inside the
      token is never trusted for authorization.
    - Reads of published notices work anonymously; everything else needs
      a valid access token.
"""

import functools
import logging

from flask import g, request

from app.models import db
from app.models.auth import User
from app.services import jwt_service
from app.services.realtime import publish_change
from app.services.role_service import get_user_role
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Body types accepted on POST/PUT/PATCH/DELETE
ALLOWED_BODY_TYPES = ("application/json", "multipart/form-data")


def current_user_id() -> int | None:
    """Id of the authenticated caller, or None for anonymous requests."""
    return getattr(g, "jwt_user_id", None)


def get_current_user() -> User | None:
    """The authenticated caller's User row (cached on ``g``)."""
    user_id = current_user_id()
    if user_id is None:
        return None
    user = getattr(g, "current_user", None)
    if user is None or user.id != user_id:
        user = db.session.get(User, user_id)
        g.current_user = user
    return user


def sign_out(user_id: int) -> int:
    """End every session of ``user_id``; returns how many were active."""
    count = jwt_service.revoke_all_user_sessions(user_id)
    logger.info("User %s signed out (%d session(s) revoked)", user_id, count)
    publish_change("auth", "SIGNED_OUT", old={"user_id": user_id})
    return count


# ── Decorators ───────────────────────────────────────────────────────────────

def require_auth(f):
    """
    Decorator: require a valid access token whose user still exists.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if get_current_user() is None:
            return api_error(E.UNAUTHORIZED, "Authentication required")
        return f(*args, **kwargs)

    return decorated


def require_role(*roles: str):
    """
    Decorator: require the caller's current role to be one of ``roles``.

    Usage:
        @bp.route("/admin/users")
        @require_role("admin")
        def list_users(): ...
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_id = current_user_id()
            if user_id is None or get_current_user() is None:
                return api_error(E.UNAUTHORIZED, "Authentication required")

            role = get_user_role(user_id)
            if role not in roles:
                logger.warning(
                    "Access denied: role '%s' tried to access %s (needs %s)",
                    role, request.path, "/".join(roles),
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")

            g.current_role = role
            return f(*args, **kwargs)
        return decorated
    return decorator


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests with a body, require JSON or multipart.
    HTML forms cannot send application/json, and multipart is only used for
    file uploads on routes that also require a bearer token.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if request.content_length and not any(t in ct for t in ALLOWED_BODY_TYPES):
            return api_error(
                E.VALIDATION_INVALID,
                "Content-Type must be application/json or multipart/form-data",
                status=415,
            )
    return None


def init_auth(app):
    """
    Install the Content-Type check on API routes.
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.method == "OPTIONS":
            return None
        return _check_content_type()

    logger.info("Auth middleware installed")
