"""
Notice Board
Audit trail blueprint (admin only).

Endpoints:
    GET  /api/v1/audit              — newest-first audit rows (max AUDIT_LOG_LIMIT)
    GET  /api/v1/audit/export.csv   — same rows as a CSV download
"""

from datetime import datetime, timezone

from flask import Blueprint, Response, jsonify, request

from app.auth import require_role
from app.models.auth import ROLE_ADMIN
from app.services.audit_service import export_audit_csv, list_audit_logs
from app.utils.errors import register_error_handlers

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")
register_error_handlers(audit_bp)


def _filtered_logs():
    """
    Query params:
        search       — substring of actor name, action or entity type
        action       — exact action (create, approve, assign_role, ...)
        entity_type  — exact entity type (notice, user_role)
        entity_id    — exact entity id
        limit        — row cap (never above AUDIT_LOG_LIMIT)
    """
    return list_audit_logs(
        search=request.args.get("search") or None,
        action=request.args.get("action") or None,
        entity_type=request.args.get("entity_type") or None,
        entity_id=request.args.get("entity_id") or None,
        limit=request.args.get("limit", type=int),
    )


# ── List / filter ────────────────────────────────────────────────────────────

@audit_bp.route("/audit", methods=["GET"])
@require_role(ROLE_ADMIN)
def list_audit():
    logs = _filtered_logs()
    return jsonify({
        "audit_logs": [log.to_dict() for log in logs],
        "total": len(logs),
    })


# ── Export ───────────────────────────────────────────────────────────────────

@audit_bp.route("/audit/export.csv", methods=["GET"])
@require_role(ROLE_ADMIN)
def export_audit():
    body = export_audit_csv(_filtered_logs())
    filename = f"audit-logs-{datetime.now(timezone.utc):%Y-%m-%d}.csv"
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
