"""
Auth Blueprint — account and JWT endpoints.

  POST /api/v1/auth/signup      — Email + password → account + JWT pair
  POST /api/v1/auth/login       — Email + password → JWT pair
  POST /api/v1/auth/refresh     — Refresh token → new pair (rotation)
  POST /api/v1/auth/logout      — Revoke every session of the caller
  GET  /api/v1/auth/me          — Current user profile + effective role
"""

from flask import Blueprint, jsonify, request

from app.auth import current_user_id, get_current_user, require_auth, sign_out
from app.services.jwt_service import (
    create_session,
    decode_refresh_token,
    generate_token_pair,
    get_active_session_by_token,
    hash_token,
    revoke_session,
    rotate_session,
)
from app.services.role_service import get_user_role
from app.services.user_service import (
    authenticate_user,
    get_user_by_id,
    register_user,
    user_profile,
)
from app.utils.errors import E, api_error, register_error_handlers
from app.utils.helpers import get_json_body

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp)


def _issue_tokens(user, status=200):
    """Create a session and return the token pair with the user profile."""
    tokens = generate_token_pair(user.id, get_user_role(user.id))
    create_session(
        user.id, tokens["token_hash"],
        request.remote_addr, request.headers.get("User-Agent", ""),
        tokens["expires_at"],
    )
    return jsonify({
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
        "user": user_profile(user),
    }), status


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/signup
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/signup", methods=["POST"])
def signup():
    """
    Create an account and sign in.

    Body: { "email": "...", "password": "...", "full_name": "..." }

    A "role" field, if sent, is ignored: the first account becomes admin
    and every other account starts as student.
    """
    data = get_json_body()
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""

    if not email or not password:
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")

    user = register_user(email, password, data.get("full_name"))
    return _issue_tokens(user, status=201)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with email + password, return JWT pair.

    Body: { "email": "...", "password": "..." }
    """
    data = get_json_body()
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""

    if not email or not password:
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")

    user = authenticate_user(email, password)
    return _issue_tokens(user)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """
    Exchange a refresh token for a new token pair (token rotation).

    Body: { "refresh_token": "..." }
    """
    refresh_token = get_json_body().get("refresh_token") or ""
    if not refresh_token:
        return api_error(E.VALIDATION_REQUIRED, "Refresh token is required")

    try:
        payload = decode_refresh_token(refresh_token)
    except Exception:
        return api_error(E.UNAUTHORIZED, "Invalid or expired refresh token")

    user_id = payload["sub"]
    session = get_active_session_by_token(user_id, hash_token(refresh_token))
    if not session:
        return api_error(E.UNAUTHORIZED, "Session not found or revoked")

    if session.is_expired:
        revoke_session(session)
        return api_error(E.UNAUTHORIZED, "Session expired")

    user = get_user_by_id(user_id)
    if not user:
        revoke_session(session)
        return api_error(E.UNAUTHORIZED, "User not found")

    tokens = generate_token_pair(user.id, get_user_role(user.id))
    rotate_session(
        session,
        user.id,
        tokens["token_hash"],
        tokens["expires_at"],
        request.remote_addr,
        request.headers.get("User-Agent", ""),
    )

    return jsonify({
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
    }), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    """Sign out everywhere: every refresh session of the caller is revoked."""
    revoked = sign_out(current_user_id())
    return jsonify({"message": "Logged out successfully", "sessions_revoked": revoked}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """Current user profile; the role is re-read from the Role Store."""
    return jsonify({"user": user_profile(get_current_user())}), 200
