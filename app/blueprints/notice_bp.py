"""
Notice Blueprint — submission, moderation, reading and view tracking.

Endpoints (all under /api/v1):
    GET    /notices                       — list visible notices (filters below)
    POST   /notices                       — submit (JSON or multipart with files)
    GET    /notices/<id>                  — one notice with attachments
    PUT    /notices/<id>                  — edit while pending (author / admin)
    DELETE /notices/<id>                  — delete (admin)
    POST   /notices/<id>/approve          — pending → approved (admin)
    POST   /notices/<id>/reject           — pending → rejected (admin)
    POST   /notices/moderation-preview    — screen a draft without saving
    POST   /notices/views                 — record views for rendered notices
    GET    /notices/alerts                — published-notice alerts after since_id
    GET    /categories                    — category list

List filters: ?status= &category_id= &search= &mine=1 &active_only=1
"""

import logging

from flask import Blueprint, current_app, jsonify, request, session

from app.auth import current_user_id, require_auth
from app.core.exceptions import ValidationError
from app.integrations.storage_gateway import get_object_store
from app.services import notice_lifecycle
from app.services.attachment_service import discard_uploads, upload_attachment
from app.services.view_tracker import SessionViewContext, track_views, view_counts
from app.utils.errors import E, api_error, register_error_handlers
from app.utils.helpers import get_json_body

logger = logging.getLogger(__name__)

notice_bp = Blueprint("notices", __name__, url_prefix="/api/v1")
register_error_handlers(notice_bp)

VIEWED_SESSION_KEY = "viewed_notices"

_TRUE = ("1", "true", "yes", "on")


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in _TRUE


def _int_or_none(value, field: str):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", details={field: "invalid"})


SUBMISSION_FIELDS = ("title", "content", "category_id", "priority", "publish_at", "expires_at")


def _submission_payload() -> tuple[dict, list]:
    """Notice fields plus the files to upload from the request.

    Multipart requests carry fields as form values and files under
    ``files``. JSON requests may reference files already uploaded
    elsewhere under ``attachments``.
    """
    if request.mimetype == "multipart/form-data":
        data = {k: request.form.get(k) for k in SUBMISSION_FIELDS}
        files = [f for f in request.files.getlist("files") if f and f.filename]
        return data, files
    return get_json_body(), []


def _text(data: dict, field: str) -> str:
    value = data.get(field)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: "must be a string"})
    return value or ""


# ═════════════════════════════════════════════════════════════════════════════
# Notices
# ═════════════════════════════════════════════════════════════════════════════

@notice_bp.route("/notices", methods=["GET"])
def list_notices():
    notices = notice_lifecycle.list_notices(
        current_user_id(),
        status=request.args.get("status") or None,
        category_id=_int_or_none(request.args.get("category_id"), "category_id"),
        search=request.args.get("search") or None,
        mine=_flag("mine"),
        active_only=_flag("active_only"),
    )
    items = [n.to_dict() for n in notices]
    if _flag("with_views"):
        counts = view_counts([n["id"] for n in items])
        for n in items:
            n["view_count"] = counts.get(n["id"], 0)
    return jsonify({"items": items, "total": len(items)}), 200


@notice_bp.route("/notices", methods=["POST"])
@require_auth
def create_notice():
    """Submit a notice; it starts as pending whatever the screening says."""
    data, files = _submission_payload()
    title = _text(data, "title").strip()
    content = _text(data, "content")
    if not title or not content.strip():
        return api_error(E.VALIDATION_REQUIRED, "title and content are required")

    actor_id = current_user_id()
    fields = {
        "title": title,
        "content": content,
        "category_id": _int_or_none(data.get("category_id"), "category_id"),
        "priority": data.get("priority") or "normal",
        "publish_at": data.get("publish_at") or None,
        "expires_at": data.get("expires_at") or None,
    }
    if not files:
        result = notice_lifecycle.create_notice(
            actor_id, attachments=data.get("attachments") or [], **fields,
        )
        return jsonify(result), 201

    # Nothing reaches storage until the submission itself is acceptable
    notice_lifecycle.check_submission(actor_id, **fields)
    store = get_object_store()
    uploaded = []
    try:
        for f in files:
            uploaded.append(upload_attachment(store, f.filename, f.read(), f.mimetype))
        result = notice_lifecycle.create_notice(actor_id, attachments=uploaded, **fields)
    except Exception:
        discard_uploads(store, uploaded)
        raise
    return jsonify(result), 201


@notice_bp.route("/notices/<int:notice_id>", methods=["GET"])
def get_notice(notice_id):
    notice = notice_lifecycle.get_notice(notice_id, current_user_id())
    return jsonify(notice.to_dict(include_attachments=True)), 200


@notice_bp.route("/notices/<int:notice_id>", methods=["PUT"])
@require_auth
def update_notice(notice_id):
    data = get_json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "No fields to update")
    if "category_id" in data:
        data["category_id"] = _int_or_none(data["category_id"], "category_id")
    result = notice_lifecycle.update_notice(notice_id, current_user_id(), data)
    return jsonify(result), 200


@notice_bp.route("/notices/<int:notice_id>", methods=["DELETE"])
@require_auth
def delete_notice(notice_id):
    return jsonify(notice_lifecycle.delete_notice(notice_id, current_user_id())), 200


@notice_bp.route("/notices/<int:notice_id>/approve", methods=["POST"])
@require_auth
def approve_notice(notice_id):
    return jsonify(notice_lifecycle.approve_notice(notice_id, current_user_id())), 200


@notice_bp.route("/notices/<int:notice_id>/reject", methods=["POST"])
@require_auth
def reject_notice(notice_id):
    reason = (get_json_body().get("reason") or "").strip() or None
    return jsonify(notice_lifecycle.reject_notice(notice_id, current_user_id(), reason)), 200


@notice_bp.route("/notices/moderation-preview", methods=["POST"])
def moderation_preview():
    data = get_json_body()
    return jsonify(notice_lifecycle.preview_moderation(
        data.get("title") or "", data.get("content") or "",
    )), 200


# ═════════════════════════════════════════════════════════════════════════════
# Views & alerts
# ═════════════════════════════════════════════════════════════════════════════

@notice_bp.route("/notices/views", methods=["POST"])
def record_views():
    """
    Record one view per notice per browsing session.

    Body: { "notice_ids": [1, 2, 3] }

    Ids the caller cannot see are ignored. The seen-set lives in the Flask
    session cookie, so every browser session counts separately.
    """
    raw = get_json_body().get("notice_ids")
    if not isinstance(raw, list):
        return api_error(E.VALIDATION_REQUIRED, "notice_ids must be a list")

    viewer_id = current_user_id()
    ids = []
    for value in raw:
        try:
            ids.append(int(value))
        except (TypeError, ValueError):
            continue
    wanted = set(ids)
    visible = {n.id for n in notice_lifecycle.list_notices(viewer_id) if n.id in wanted}

    ctx = SessionViewContext(session.get(VIEWED_SESSION_KEY))
    recorded = track_views([i for i in ids if i in visible], ctx, viewer_id=viewer_id)
    session[VIEWED_SESSION_KEY] = ctx.to_list()
    return jsonify({"recorded": recorded}), 200


@notice_bp.route("/notices/alerts", methods=["GET"])
def list_alerts():
    """Alerts for notices published after ``since_id`` (polling feed)."""
    since_id = _int_or_none(request.args.get("since_id"), "since_id") or 0
    feed = current_app.extensions.get("notice_alerts")
    alerts = feed.since(since_id) if feed is not None else []
    return jsonify({"alerts": alerts}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Categories
# ═════════════════════════════════════════════════════════════════════════════

@notice_bp.route("/categories", methods=["GET"])
def list_categories():
    return jsonify([c.to_dict() for c in notice_lifecycle.list_categories()]), 200
