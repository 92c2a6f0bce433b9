"""
Audit Recorder tests — writing, querying, CSV export.
"""

import csv
import io

import pytest

from app.core.exceptions import ValidationError
from app.models import db
from app.models.audit import AuditLog
from app.services import audit_service as svc


def _event(actor_id=None, action="create", entity_type="notice", entity_id=1, **kw):
    return svc.record_event(
        actor_id=actor_id, action=action, entity_type=entity_type,
        entity_id=entity_id, **kw,
    )


class TestActionForChange:
    @pytest.mark.parametrize("old, new, expected", [
        ({"status": "pending"}, {"status": "approved"}, "approve"),
        ({"status": "pending"}, {"status": "rejected"}, "reject"),
        ({"status": "pending", "title": "a"}, {"status": "pending", "title": "b"}, "update"),
        ({"title": "a"}, {"title": "b"}, "update"),
    ])
    def test_classification(self, old, new, expected):
        assert svc.action_for_change(old, new) == expected


class TestRecordEvent:
    def test_row_written_with_json_payloads(self, admin):
        log = _event(
            admin.id, action="approve", entity_id=7,
            old_values={"status": "pending"}, new_values={"status": "approved"},
            metadata={"reason": None},
        )
        assert log is not None
        stored = db.session.get(AuditLog, log.id)
        assert stored.entity_id == "7"
        assert stored.old_values == {"status": "pending"}
        assert stored.new_values == {"status": "approved"}
        assert stored.metadata_values == {"reason": None}
        assert stored.actor_name == admin.full_name

    def test_absent_payloads_stay_null(self):
        log = _event(action="delete")
        assert log.old_values_json is None
        assert log.new_values_json is None

    def test_request_context_captured(self, app):
        with app.test_request_context(
            "/", environ_base={"REMOTE_ADDR": "10.0.0.5"},
            headers={"User-Agent": "pytest-agent"},
        ):
            log = _event()
        assert log.ip_address == "10.0.0.5"
        assert log.user_agent == "pytest-agent"

    def test_failure_returns_none_and_rolls_back(self):
        # Unknown actor violates the users FK on commit
        assert _event(actor_id=99999) is None
        assert AuditLog.query.count() == 0


class TestListAuditLogs:
    def test_newest_first(self):
        ids = [_event(entity_id=i).id for i in range(3)]
        assert [log.id for log in svc.list_audit_logs()] == list(reversed(ids))

    def test_filters(self, admin):
        _event(admin.id, action="approve", entity_id=1)
        _event(admin.id, action="reject", entity_id=2)
        _event(None, action="assign_role", entity_type="user_role", entity_id=3)

        assert [log.action for log in svc.list_audit_logs(action="reject")] == ["reject"]
        assert len(svc.list_audit_logs(entity_type="notice")) == 2
        assert len(svc.list_audit_logs(entity_id="3")) == 1

    @pytest.mark.parametrize("filters, field", [
        ({"action": "archive"}, "action"),
        ({"entity_type": "session"}, "entity_type"),
    ])
    def test_unknown_filter_values_rejected(self, filters, field):
        with pytest.raises(ValidationError) as exc:
            svc.list_audit_logs(**filters)
        assert field in exc.value.details

    def test_search_matches_actor_name_and_action(self, admin):
        _event(admin.id, action="approve")
        _event(None, action="assign_role", entity_type="user_role")
        assert len(svc.list_audit_logs(search="ada")) == 1
        assert len(svc.list_audit_logs(search="ROLE")) == 1

    def test_limit_is_capped_by_config(self, app):
        for i in range(5):
            _event(entity_id=i)
        old = app.config["AUDIT_LOG_LIMIT"]
        app.config["AUDIT_LOG_LIMIT"] = 3
        try:
            assert len(svc.list_audit_logs()) == 3
            assert len(svc.list_audit_logs(limit=50)) == 3
            assert len(svc.list_audit_logs(limit=2)) == 2
        finally:
            app.config["AUDIT_LOG_LIMIT"] = old


class TestExportCsv:
    def test_header_and_rows(self, admin):
        _event(admin.id, action="approve", entity_id=9,
               old_values={"status": "pending"}, new_values={"status": "approved"})
        _event(None, action="assign_role", entity_type="user_role", entity_id=4)

        text = svc.export_audit_csv(svc.list_audit_logs())
        rows = list(csv.reader(io.StringIO(text)))
        assert rows[0] == ["Timestamp", "User", "Action", "Entity Type", "Entity ID", "Details"]
        assert len(rows) == 3
        system_row, approve_row = rows[1], rows[2]
        assert system_row[1] == "Unknown"
        assert approve_row[1:5] == ["Ada Admin", "approve", "notice", "9"]
        assert '"new": {"status": "approved"}' in approve_row[5]

    def test_every_cell_quoted(self):
        _event()
        first_line = svc.export_audit_csv(svc.list_audit_logs()).splitlines()[0]
        assert first_line.startswith('"Timestamp","User"')

    def test_empty_export_is_header_only(self):
        assert svc.export_audit_csv([]).strip().count("\n") == 0
