"""
University Notice Board
Notice domain models.

Models:
    - Category:          notice grouping (SET NULL on delete)
    - Notice:            staff announcement moving pending → approved | rejected
    - NoticeAttachment:  uploaded-file metadata, cascade-deleted with its notice
    - NoticeView:        append-only analytics row, one per (session, notice)
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTICE_STATUSES = ("pending", "approved", "rejected")
NOTICE_PRIORITIES = ("low", "normal", "high", "urgent")
ATTACHMENT_FILE_TYPES = ("image", "video", "document")

CONTENT_MIN_LENGTH = 10
CONTENT_MAX_LENGTH = 10000
TITLE_MAX_LENGTH = 300

# action → {"from": allowed source statuses, "to": target status}
NOTICE_TRANSITIONS = {
    "approve": {"from": {"pending"}, "to": "approved"},
    "reject": {"from": {"pending"}, "to": "rejected"},
}

DEFAULT_CATEGORIES = [
    ("Academics", "Academic announcements and updates", "#3B82F6"),
    ("Events", "University events and activities", "#10B981"),
    ("Deadlines", "Important deadlines and dates", "#EF4444"),
    ("General", "General information and announcements", "#8B5CF6"),
    ("Administration", "Administrative notices", "#F59E0B"),
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════
# Category
# ═══════════════════════════════════════════════════════════════
class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.Text)
    color = db.Column(db.String(20), default="#3B82F6")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    notices = db.relationship("Notice", back_populates="category", passive_deletes=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
        }


# ═══════════════════════════════════════════════════════════════
# Notice
# ═══════════════════════════════════════════════════════════════
class Notice(db.Model):
    __tablename__ = "notices"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_notices_status"
        ),
        db.CheckConstraint(
            "priority IN ('low', 'normal', 'high', 'urgent')", name="ck_notices_priority"
        ),
        db.Index("idx_notices_status", "status"),
        db.Index("idx_notices_author", "author_id"),
        db.Index("idx_notices_created", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(TITLE_MAX_LENGTH), nullable=False)
    content = db.Column(db.Text, nullable=False)
    category_id = db.Column(
        db.Integer,
        db.ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
    )
    author_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    status = db.Column(db.String(20), nullable=False, default="pending")
    priority = db.Column(db.String(20), nullable=False, default="normal")
    publish_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    category = db.relationship("Category", back_populates="notices")
    author = db.relationship("User", foreign_keys=[author_id])
    approver = db.relationship("User", foreign_keys=[approved_by])
    attachments = db.relationship(
        "NoticeAttachment",
        back_populates="notice",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="NoticeAttachment.id",
    )

    # ── Visibility ───────────────────────────────────────────────────────

    def is_published(self, now: datetime | None = None) -> bool:
        """Approved and past its scheduled publish time (if any)."""
        now = now or _utcnow()
        if self.status != "approved":
            return False
        publish_at = as_utc(self.publish_at)
        return publish_at is None or publish_at <= now

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or _utcnow()
        expires_at = as_utc(self.expires_at)
        return expires_at is not None and expires_at <= now

    # ── Serialisation ────────────────────────────────────────────────────

    def snapshot(self) -> dict:
        """Flat column snapshot used as audit before/after payload."""
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "category_id": self.category_id,
            "author_id": self.author_id,
            "status": self.status,
            "priority": self.priority,
            "publish_at": _iso(self.publish_at),
            "expires_at": _iso(self.expires_at),
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def to_dict(self, include_attachments=False):
        d = self.snapshot()
        d["category"] = self.category.to_dict() if self.category else None
        d["author_name"] = self.author.full_name if self.author else None
        d["is_expired"] = self.is_expired()
        if include_attachments:
            d["attachments"] = [a.to_dict() for a in self.attachments]
        return d

    def __repr__(self):
        return f"<Notice {self.id}: {self.status} {self.title[:30]!r}>"


# ═══════════════════════════════════════════════════════════════
# NoticeAttachment
# ═══════════════════════════════════════════════════════════════
class NoticeAttachment(db.Model):
    __tablename__ = "notice_attachments"
    __table_args__ = (
        db.Index("idx_notice_attachments_notice_id", "notice_id"),
        db.Index("idx_notice_attachments_file_type", "file_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    notice_id = db.Column(
        db.Integer,
        db.ForeignKey("notices.id", ondelete="CASCADE"),
        nullable=False,
    )
    file_name = db.Column(db.String(255), nullable=False)
    file_url = db.Column(db.String(1000), nullable=False)
    file_type = db.Column(db.String(20), nullable=False, comment="image | video | document")
    mime_type = db.Column(db.String(150), nullable=False)
    file_size = db.Column(db.Integer)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    notice = db.relationship("Notice", back_populates="attachments")

    def to_dict(self):
        return {
            "id": self.id,
            "notice_id": self.notice_id,
            "file_name": self.file_name,
            "file_url": self.file_url,
            "file_type": self.file_type,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
        }


# ═══════════════════════════════════════════════════════════════
# NoticeView
# ═══════════════════════════════════════════════════════════════
class NoticeView(db.Model):
    __tablename__ = "notice_views"
    __table_args__ = (
        db.Index("idx_notice_views_notice", "notice_id"),
        db.Index("idx_notice_views_viewed_at", "viewed_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    notice_id = db.Column(
        db.Integer,
        db.ForeignKey("notices.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    viewed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "notice_id": self.notice_id,
            "user_id": self.user_id,
            "viewed_at": _iso(self.viewed_at),
        }
