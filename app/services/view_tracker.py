"""
View Tracker — one NoticeView per (session, notice), plus view analytics.

A ``SessionViewContext`` holds the ids a single browsing session has
already recorded. Each session gets its own instance, so two tabs (or
two users) never share a seen-set. The blueprint loads it from and saves
it back to the Flask session cookie.

Persistence is best-effort: when the insert fails the error is logged,
nothing is marked as seen, and the notices still render. The next batch
retries the same ids.

Usage:
    ctx = SessionViewContext(session.get("viewed_notices"))
    recorded = track_views([3, 5, 8], ctx, viewer_id=user_id)
    session["viewed_notices"] = ctx.to_list()
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from app.models import db
from app.models.auth import User
from app.models.notice import Notice, NoticeView

logger = logging.getLogger(__name__)

RECENT_VIEWS_DAYS = 7


class SessionViewContext:
    """Per-session record of notice ids whose view was already persisted.

    ``batch()`` holds the context across check, persist and mark so two
    concurrent requests on one session cannot both record the same id.
    """

    def __init__(self, seen_ids=None) -> None:
        self._lock = threading.RLock()
        self._seen: list[int] = []
        for raw in seen_ids or []:
            try:
                nid = int(raw)
            except (TypeError, ValueError):
                continue
            if nid not in self._seen:
                self._seen.append(nid)

    def unseen(self, notice_ids) -> list[int]:
        """Ids not yet recorded in this session, de-duplicated, order kept."""
        with self._lock:
            seen = set(self._seen)
        out: list[int] = []
        for nid in notice_ids:
            if nid not in seen and nid not in out:
                out.append(nid)
        return out

    def mark_seen(self, notice_ids) -> None:
        with self._lock:
            for nid in notice_ids:
                if nid not in self._seen:
                    self._seen.append(nid)

    def batch(self):
        """Lock held for one whole check-persist-mark round (reentrant)."""
        return self._lock

    def __contains__(self, notice_id) -> bool:
        with self._lock:
            return notice_id in self._seen

    def to_list(self) -> list[int]:
        with self._lock:
            return list(self._seen)


def track_views(notice_ids, ctx: SessionViewContext, viewer_id: int | None = None) -> list[int]:
    """Persist a view for every id this session has not recorded yet.

    Args:
        notice_ids: Ids currently rendered for the caller.
        ctx: The caller's session context; extended with the recorded ids.
        viewer_id: Authenticated viewer, or None for anonymous readers.

    Returns:
        The ids recorded by this call (empty when nothing new or on failure).
    """
    ids = []
    for raw in notice_ids or []:
        try:
            ids.append(int(raw))
        except (TypeError, ValueError):
            logger.debug("Ignoring non-integer notice id %r", raw)
    with ctx.batch():
        new_ids = ctx.unseen(ids)
        if not new_ids:
            return []

        now = datetime.now(timezone.utc)
        try:
            db.session.add_all(
                NoticeView(notice_id=nid, user_id=viewer_id, viewed_at=now) for nid in new_ids
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.warning("Could not record %d notice view(s)", len(new_ids), exc_info=True)
            return []

        ctx.mark_seen(new_ids)
    return new_ids


# ── Analytics ────────────────────────────────────────────────────────────────

def view_counts(notice_ids) -> dict[int, int]:
    """{notice_id: view count} for the given ids (zero-filled)."""
    ids = [int(n) for n in notice_ids]
    counts = {nid: 0 for nid in ids}
    if not ids:
        return counts
    rows = (
        db.session.query(NoticeView.notice_id, func.count(NoticeView.id))
        .filter(NoticeView.notice_id.in_(ids))
        .group_by(NoticeView.notice_id)
        .all()
    )
    for nid, count in rows:
        counts[nid] = count
    return counts


def get_dashboard_stats() -> dict:
    """Headline numbers for the admin dashboard."""
    since = datetime.now(timezone.utc) - timedelta(days=RECENT_VIEWS_DAYS)
    return {
        "total_users": User.query.count(),
        "total_notices": Notice.query.count(),
        "total_views": NoticeView.query.count(),
        "pending_count": Notice.query.filter_by(status="pending").count(),
        "recent_views": NoticeView.query.filter(NoticeView.viewed_at >= since).count(),
    }
