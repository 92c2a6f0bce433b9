"""notice_board_schema

Creates the notice-board tables:
  - users, user_roles, sessions   — accounts, single-role store, refresh sessions
  - categories                    — notice grouping (seeded with defaults)
  - notices                       — announcements with moderation status
  - notice_attachments            — uploaded-file metadata
  - notice_views                  — per-session view analytics
  - audit_logs                    — append-only audit trail

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 0001_notice_board
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '0001_notice_board'
down_revision = None
branch_labels = None
depends_on = None


DEFAULT_CATEGORIES = [
    ("Academics", "Academic announcements and updates", "#3B82F6"),
    ("Events", "University events and activities", "#10B981"),
    ("Deadlines", "Important deadlines and dates", "#EF4444"),
    ("General", "General information and announcements", "#8B5CF6"),
    ("Administration", "Administrative notices", "#F59E0B"),
]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Users & roles ─────────────────────────────────────────────────────
    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("password_hash", sa.String(length=256), nullable=True),
            sa.Column("full_name", sa.String(length=200), nullable=False,
                      server_default="New User"),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_users_email", "users", ["email"])

    if "user_roles" not in existing:
        op.create_table(
            "user_roles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False,
                      comment="admin | staff | student"),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "role", name="uq_user_role"),
            sa.CheckConstraint("role IN ('admin', 'staff', 'student')",
                               name="ck_user_roles_role"),
        )

    if "sessions" not in existing:
        op.create_table(
            "sessions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("token_hash", sa.String(length=256), nullable=False),
            sa.Column("ip_address", sa.String(length=45), nullable=True),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("last_used_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )

    # ── Categories ────────────────────────────────────────────────────────
    if "categories" not in existing:
        categories = op.create_table(
            "categories",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("color", sa.String(length=20), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )
        op.bulk_insert(categories, [
            {"name": n, "description": d, "color": c} for n, d, c in DEFAULT_CATEGORIES
        ])

    # ── Notices ───────────────────────────────────────────────────────────
    if "notices" not in existing:
        op.create_table(
            "notices",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("category_id", sa.Integer(), nullable=True),
            sa.Column("author_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False,
                      server_default="pending"),
            sa.Column("priority", sa.String(length=20), nullable=False,
                      server_default="normal"),
            sa.Column("publish_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("approved_by", sa.Integer(), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approved_by"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')",
                               name="ck_notices_status"),
            sa.CheckConstraint("priority IN ('low', 'normal', 'high', 'urgent')",
                               name="ck_notices_priority"),
        )
        op.create_index("idx_notices_status", "notices", ["status"])
        op.create_index("idx_notices_author", "notices", ["author_id"])
        op.create_index("idx_notices_created", "notices", ["created_at"])

    if "notice_attachments" not in existing:
        op.create_table(
            "notice_attachments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("notice_id", sa.Integer(), nullable=False),
            sa.Column("file_name", sa.String(length=255), nullable=False),
            sa.Column("file_url", sa.String(length=1000), nullable=False),
            sa.Column("file_type", sa.String(length=20), nullable=False,
                      comment="image | video | document"),
            sa.Column("mime_type", sa.String(length=150), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["notice_id"], ["notices.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_notice_attachments_notice_id", "notice_attachments", ["notice_id"])
        op.create_index("idx_notice_attachments_file_type", "notice_attachments", ["file_type"])

    if "notice_views" not in existing:
        op.create_table(
            "notice_views",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("notice_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["notice_id"], ["notices.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_notice_views_notice", "notice_views", ["notice_id"])
        op.create_index("idx_notice_views_viewed_at", "notice_views", ["viewed_at"])

    # ── Audit ─────────────────────────────────────────────────────────────
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(length=30), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=True),
            sa.Column("old_values_json", sa.Text(), nullable=True),
            sa.Column("new_values_json", sa.Text(), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("ip_address", sa.String(length=45), nullable=True),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_user", "audit_logs", ["user_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_created", "audit_logs", ["created_at"])


def downgrade():
    for table in (
        "audit_logs", "notice_views", "notice_attachments", "notices",
        "categories", "sessions", "user_roles", "users",
    ):
        op.drop_table(table)
