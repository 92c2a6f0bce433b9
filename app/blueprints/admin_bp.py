"""
Admin Blueprint — user roles and dashboard numbers.

  GET  /api/v1/admin/users                 — every user with their role
  PUT  /api/v1/admin/users/<id>/role       — replace a user's role
  GET  /api/v1/admin/stats                 — users, notices, views, pending, 7-day views
"""

from flask import Blueprint, jsonify

from app.auth import current_user_id, require_role
from app.models.auth import ROLE_ADMIN
from app.services.role_service import assign_role, list_users_with_roles
from app.services.view_tracker import get_dashboard_stats
from app.utils.errors import E, api_error, register_error_handlers
from app.utils.helpers import get_json_body

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")
register_error_handlers(admin_bp)


@admin_bp.route("/users", methods=["GET"])
@require_role(ROLE_ADMIN)
def list_users():
    users = list_users_with_roles()
    return jsonify({"items": users, "total": len(users)}), 200


@admin_bp.route("/users/<int:user_id>/role", methods=["PUT"])
@require_role(ROLE_ADMIN)
def update_user_role(user_id):
    """Body: { "role": "admin" | "staff" | "student" }"""
    role = (get_json_body().get("role") or "").strip().lower()
    if not role:
        return api_error(E.VALIDATION_REQUIRED, "role is required")
    return jsonify(assign_role(current_user_id(), user_id, role)), 200


@admin_bp.route("/stats", methods=["GET"])
@require_role(ROLE_ADMIN)
def dashboard_stats():
    return jsonify(get_dashboard_stats()), 200
