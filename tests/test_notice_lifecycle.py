"""
Notice lifecycle service tests.

Covers:
  - create_notice: role gate, validation, sanitisation, moderation verdict,
    atomic attachment registration, audit + realtime side effects
  - approve / reject: role gate, state machine, approved_by/approved_at, audit
  - update_notice / delete_notice
  - list_notices / get_notice visibility rules and filters
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.attributes import set_committed_value

from app.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    StateError,
    TransientIOError,
    ValidationError,
)
from app.models import db
from app.models.audit import AuditLog
from app.models.notice import Notice, NoticeAttachment, as_utc
from app.services import notice_lifecycle as svc
from app.services.realtime import get_change_bus

CONTENT = "The main library will open at eight during exam week."


def _create(author, **overrides):
    kwargs = {"title": "Library hours", "content": CONTENT}
    kwargs.update(overrides)
    return svc.create_notice(author.id, **kwargs)


def _attachment(name="poster.png", mime="image/png"):
    return {
        "file_name": name,
        "file_url": f"/files/attachments/notice_attachments/{name}",
        "mime_type": mime,
        "file_size": 1024,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════

class TestCreateNotice:
    def test_staff_creates_pending_notice(self, staff):
        result = _create(staff)
        notice = result["notice"]
        assert notice["status"] == "pending"
        assert notice["author_id"] == staff.id
        assert notice["priority"] == "normal"
        assert result["moderation"]["approved"] is True
        assert result["audit_recorded"] is True

    def test_admin_may_create(self, admin):
        assert _create(admin)["notice"]["status"] == "pending"

    def test_student_is_refused(self, student):
        with pytest.raises(AuthorizationError):
            _create(student)
        assert Notice.query.count() == 0

    def test_anonymous_is_refused(self):
        with pytest.raises(AuthorizationError) as exc:
            svc.create_notice(None, title="Hello", content=CONTENT)
        assert exc.value.authenticated is False

    def test_flagged_content_is_still_created_pending(self, staff):
        result = _create(staff, title="URGENT spam", content="Visit http://spam.example now!!!!")
        assert result["notice"]["status"] == "pending"
        assert result["moderation"]["approved"] is False
        assert result["moderation"]["severity"] == "high"

    def test_content_is_sanitised_before_storage(self, staff):
        result = _create(staff, content="First line here\r\n\r\n\r\n\r\nSecond line here  ")
        assert result["notice"]["content"] == "First line here\n\nSecond line here"

    def test_title_is_trimmed(self, staff):
        assert _create(staff, title="  Padded title  ")["notice"]["title"] == "Padded title"

    @pytest.mark.parametrize("field, value", [
        ("title", ""),
        ("title", "x" * 301),
        ("content", "short"),
        ("content", "word " * 2001),
        ("priority", "critical"),
        ("category_id", 9999),
        ("publish_at", "not-a-date"),
        ("title", 123),
        ("priority", 5),
        ("expires_at", 20300101),
    ])
    def test_invalid_fields_rejected(self, staff, field, value):
        with pytest.raises(ValidationError) as exc:
            _create(staff, **{field: value})
        assert field in exc.value.details
        assert Notice.query.count() == 0

    def test_expiry_must_follow_publish(self, staff):
        with pytest.raises(ValidationError) as exc:
            _create(staff, publish_at="2030-01-02T00:00:00Z", expires_at="2030-01-01T00:00:00Z")
        assert "expires_at" in exc.value.details

    def test_category_and_schedule_stored(self, staff, category):
        result = _create(
            staff, category_id=category.id, priority="urgent",
            publish_at="2030-01-01T09:00:00Z", expires_at="2030-02-01T09:00:00Z",
        )
        notice = result["notice"]
        assert notice["category"]["name"] == "Events"
        assert notice["priority"] == "urgent"
        assert notice["publish_at"].startswith("2030-01-01T09:00:00")

    def test_attachments_registered_with_notice(self, staff):
        result = _create(staff, attachments=[_attachment(), _attachment("guide.pdf", "application/pdf")])
        atts = result["notice"]["attachments"]
        assert [a["file_type"] for a in atts] == ["image", "document"]
        assert NoticeAttachment.query.count() == 2

    def test_bad_attachment_descriptor_creates_nothing(self, staff):
        with pytest.raises(ValidationError):
            _create(staff, attachments=[{"file_name": "x.png"}])
        assert Notice.query.count() == 0
        assert NoticeAttachment.query.count() == 0

    def test_persistence_failure_rolls_back_everything(self, staff, monkeypatch):
        def boom(notice, descriptors):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(svc, "register_attachments", boom)
        with pytest.raises(TransientIOError):
            _create(staff, attachments=[_attachment()])
        assert Notice.query.count() == 0
        assert NoticeAttachment.query.count() == 0

    def test_create_is_audited(self, staff):
        notice_id = _create(staff)["notice"]["id"]
        log = AuditLog.query.filter_by(entity_type="notice", entity_id=str(notice_id)).one()
        assert log.action == "create"
        assert log.user_id == staff.id
        assert log.old_values is None
        assert log.new_values["status"] == "pending"
        assert log.metadata_values["moderation"]["approved"] is True

    def test_audit_failure_does_not_undo_create(self, staff, monkeypatch):
        monkeypatch.setattr(svc, "record_event", lambda **kw: None)
        result = _create(staff)
        assert result["audit_recorded"] is False
        assert db.session.get(Notice, result["notice"]["id"]) is not None

    def test_create_publishes_insert(self, staff):
        seen = []
        unsubscribe = get_change_bus().subscribe("notices", "INSERT", seen.append)
        try:
            notice_id = _create(staff)["notice"]["id"]
        finally:
            unsubscribe()
        assert len(seen) == 1
        assert seen[0].new["id"] == notice_id


# ═════════════════════════════════════════════════════════════════════════════
# Approve / reject
# ═════════════════════════════════════════════════════════════════════════════

class TestTransitions:
    def test_admin_approves(self, staff, admin):
        notice_id = _create(staff)["notice"]["id"]
        result = svc.approve_notice(notice_id, admin.id)
        assert result["previous_status"] == "pending"
        assert result["new_status"] == "approved"
        assert result["action"] == "approve"
        notice = db.session.get(Notice, notice_id)
        assert notice.approved_by == admin.id
        assert notice.approved_at is not None

    def test_admin_rejects_with_reason(self, staff, admin):
        notice_id = _create(staff)["notice"]["id"]
        result = svc.reject_notice(notice_id, admin.id, reason="Duplicate")
        assert result["new_status"] == "rejected"
        log = AuditLog.query.filter_by(action="reject").one()
        assert log.old_values == {"status": "pending"}
        assert log.new_values == {"status": "rejected"}
        assert log.metadata_values["reason"] == "Duplicate"

    def test_approve_audit_carries_status_and_approver(self, staff, admin):
        notice_id = _create(staff)["notice"]["id"]
        svc.approve_notice(notice_id, admin.id)
        log = AuditLog.query.filter_by(action="approve").one()
        assert log.user_id == admin.id
        assert log.old_values == {"status": "pending"}
        assert log.new_values == {"status": "approved"}
        assert log.metadata_values["approved_by"] == admin.id

    @pytest.mark.parametrize("role_fixture", ["staff", "student"])
    def test_non_admin_cannot_moderate(self, request, staff, role_fixture):
        actor = request.getfixturevalue(role_fixture)
        notice_id = _create(staff)["notice"]["id"]
        with pytest.raises(AuthorizationError):
            svc.approve_notice(notice_id, actor.id)
        with pytest.raises(AuthorizationError):
            svc.reject_notice(notice_id, actor.id)
        assert db.session.get(Notice, notice_id).status == "pending"

    def test_approve_twice_is_state_error(self, staff, admin):
        notice_id = _create(staff)["notice"]["id"]
        svc.approve_notice(notice_id, admin.id)
        with pytest.raises(StateError) as exc:
            svc.approve_notice(notice_id, admin.id)
        assert exc.value.current_status == "approved"
        assert AuditLog.query.filter_by(action="approve").count() == 1

    def test_decision_on_stale_read_is_refused(self, staff, admin):
        notice_id = _create(staff)["notice"]["id"]
        svc.approve_notice(notice_id, admin.id)
        # A second moderator still holds the pending copy they loaded earlier
        stale = db.session.get(Notice, notice_id)
        set_committed_value(stale, "status", "pending")

        with pytest.raises(StateError) as exc:
            svc.reject_notice(notice_id, admin.id, reason="Duplicate")
        assert exc.value.current_status == "approved"
        assert db.session.get(Notice, notice_id).status == "approved"
        assert AuditLog.query.filter_by(action="reject").count() == 0

    def test_rejected_is_terminal(self, staff, admin):
        notice_id = _create(staff)["notice"]["id"]
        svc.reject_notice(notice_id, admin.id)
        with pytest.raises(StateError):
            svc.approve_notice(notice_id, admin.id)

    def test_unknown_notice(self, admin):
        with pytest.raises(NotFoundError):
            svc.approve_notice(424242, admin.id)

    def test_validate_transition_reports_reason(self, staff, admin):
        notice_id = _create(staff)["notice"]["id"]
        notice = db.session.get(Notice, notice_id)
        assert svc.validate_transition(notice, "approve")["valid"] is True
        assert svc.validate_transition(notice, "archive")["valid"] is False
        svc.approve_notice(notice_id, admin.id)
        check = svc.validate_transition(notice, "reject")
        assert check["valid"] is False
        assert "approved" in check["reason"]

    def test_approve_publishes_update_with_old_and_new(self, staff, admin):
        notice_id = _create(staff)["notice"]["id"]
        seen = []
        unsubscribe = get_change_bus().subscribe("notices", "UPDATE", seen.append)
        try:
            svc.approve_notice(notice_id, admin.id)
        finally:
            unsubscribe()
        assert len(seen) == 1
        assert seen[0].old["status"] == "pending"
        assert seen[0].new["status"] == "approved"


# ═════════════════════════════════════════════════════════════════════════════
# Update / delete
# ═════════════════════════════════════════════════════════════════════════════

class TestUpdateDelete:
    def test_author_edits_pending_notice(self, staff):
        notice_id = _create(staff)["notice"]["id"]
        result = svc.update_notice(notice_id, staff.id, {"title": "New title", "priority": "high"})
        assert result["notice"]["title"] == "New title"
        assert result["notice"]["priority"] == "high"
        log = AuditLog.query.filter_by(action="update").one()
        assert log.old_values["title"] == "Library hours"
        assert log.new_values["title"] == "New title"

    def test_other_staff_cannot_edit(self, staff, make_user):
        other = make_user("staff")
        notice_id = _create(staff)["notice"]["id"]
        with pytest.raises(NotFoundError):
            svc.update_notice(notice_id, other.id, {"title": "Hijack"})

    def test_status_not_editable(self, staff):
        notice_id = _create(staff)["notice"]["id"]
        with pytest.raises(ValidationError):
            svc.update_notice(notice_id, staff.id, {"status": "approved"})
        assert db.session.get(Notice, notice_id).status == "pending"

    def test_approved_notice_is_frozen(self, staff, admin):
        notice_id = _create(staff)["notice"]["id"]
        svc.approve_notice(notice_id, admin.id)
        with pytest.raises(StateError):
            svc.update_notice(notice_id, staff.id, {"title": "Late edit"})

    def test_changes_must_be_a_mapping(self, staff):
        notice_id = _create(staff)["notice"]["id"]
        with pytest.raises(ValidationError):
            svc.update_notice(notice_id, staff.id, ["title", "x"])

    def test_non_string_content_rejected(self, staff):
        notice_id = _create(staff)["notice"]["id"]
        with pytest.raises(ValidationError) as exc:
            svc.update_notice(notice_id, staff.id, {"content": 42})
        assert exc.value.details == {"content": "must be a string"}
        assert db.session.get(Notice, notice_id).content == CONTENT

    def test_admin_deletes_with_cascade(self, staff, admin):
        notice_id = _create(staff, attachments=[_attachment()])["notice"]["id"]
        result = svc.delete_notice(notice_id, admin.id)
        assert result["deleted"] is True
        assert db.session.get(Notice, notice_id) is None
        assert NoticeAttachment.query.count() == 0
        log = AuditLog.query.filter_by(action="delete").one()
        assert log.new_values is None
        assert log.metadata_values == {"attachments_removed": 1}

    def test_staff_cannot_delete(self, staff):
        notice_id = _create(staff)["notice"]["id"]
        with pytest.raises(AuthorizationError):
            svc.delete_notice(notice_id, staff.id)


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════

class TestVisibility:
    @pytest.fixture()
    def board(self, staff, admin):
        """One notice in each status plus a scheduled one."""
        pending = _create(staff, title="Pending notice")["notice"]["id"]
        approved = _create(staff, title="Approved notice")["notice"]["id"]
        rejected = _create(staff, title="Rejected notice")["notice"]["id"]
        future = (datetime.now(timezone.utc) + timedelta(days=3)).isoformat()
        scheduled = _create(staff, title="Scheduled notice", publish_at=future)["notice"]["id"]
        svc.approve_notice(approved, admin.id)
        svc.reject_notice(rejected, admin.id)
        svc.approve_notice(scheduled, admin.id)
        return {"pending": pending, "approved": approved,
                "rejected": rejected, "scheduled": scheduled}

    def test_student_sees_only_published(self, board, student):
        ids = {n.id for n in svc.list_notices(student.id)}
        assert ids == {board["approved"]}

    def test_anonymous_sees_only_published(self, board):
        ids = {n.id for n in svc.list_notices(None)}
        assert ids == {board["approved"]}

    def test_author_sees_own_in_any_status(self, board, staff):
        ids = {n.id for n in svc.list_notices(staff.id)}
        assert ids == set(board.values())

    def test_other_staff_sees_only_published(self, board, make_user):
        other = make_user("staff")
        assert {n.id for n in svc.list_notices(other.id)} == {board["approved"]}

    def test_admin_sees_everything(self, board, admin):
        assert {n.id for n in svc.list_notices(admin.id)} == set(board.values())

    def test_status_filter(self, board, admin):
        ids = {n.id for n in svc.list_notices(admin.id, status="pending")}
        assert ids == {board["pending"]}

    def test_invalid_status_filter(self, admin):
        with pytest.raises(ValidationError):
            svc.list_notices(admin.id, status="archived")

    def test_search_matches_title(self, board, admin):
        ids = {n.id for n in svc.list_notices(admin.id, search="rejected")}
        assert ids == {board["rejected"]}

    def test_mine_filter(self, board, admin):
        assert svc.list_notices(admin.id, mine=True) == []

    def test_newest_first(self, board, admin):
        ids = [n.id for n in svc.list_notices(admin.id)]
        assert ids == sorted(ids, reverse=True)

    def test_get_hidden_notice_is_not_found(self, board, student):
        with pytest.raises(NotFoundError):
            svc.get_notice(board["pending"], student.id)
        assert svc.get_notice(board["approved"], student.id).id == board["approved"]

    def test_scheduled_notice_appears_after_publish_time(self, board, student):
        notice = db.session.get(Notice, board["scheduled"])
        notice.publish_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.session.commit()
        ids = {n.id for n in svc.list_notices(student.id)}
        assert board["scheduled"] in ids

    def test_expired_notice_stays_listed_but_flagged(self, staff, admin, student):
        notice_id = _create(staff)["notice"]["id"]
        svc.approve_notice(notice_id, admin.id)
        notice = db.session.get(Notice, notice_id)
        notice.expires_at = datetime.now(timezone.utc) - timedelta(hours=1)
        db.session.commit()

        listed = svc.list_notices(student.id)
        assert [n.id for n in listed] == [notice_id]
        assert listed[0].to_dict()["is_expired"] is True
        assert svc.list_notices(student.id, active_only=True) == []


class TestCategories:
    def test_seed_is_idempotent(self):
        assert svc.seed_default_categories() == 5
        db.session.commit()
        assert svc.seed_default_categories() == 0
        names = [c.name for c in svc.list_categories()]
        assert names == sorted(["Academics", "Events", "Deadlines", "General", "Administration"])


def test_preview_moderation_sanitises_and_screens():
    preview = svc.preview_moderation("URGENT", "Check http://x.example\r\n\r\n\r\nnow please")
    assert preview["content"] == "Check http://x.example\n\nnow please"
    assert "Contains URLs" in preview["moderation"]["issues"]
    assert "Contains excessive capitalization" in preview["moderation"]["issues"]


def test_as_utc_handles_naive_values():
    naive = datetime(2030, 1, 1, 9, 0)
    assert as_utc(naive).tzinfo is timezone.utc


def test_preview_moderation_rejects_non_string_content():
    with pytest.raises(ValidationError) as exc:
        svc.preview_moderation("Title", 12345)
    assert exc.value.details == {"content": "must be a string"}


def test_check_submission_persists_nothing(staff, student):
    fields = svc.check_submission(staff.id, title="  Open day ", content=CONTENT, priority=None)
    assert fields["title"] == "Open day"
    assert fields["priority"] == "normal"
    assert Notice.query.count() == 0
    with pytest.raises(AuthorizationError):
        svc.check_submission(student.id, title="Open day", content=CONTENT)
