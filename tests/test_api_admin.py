"""
Admin, audit and health API tests.
"""

import csv
import io

import pytest

from app.services.role_service import get_user_role


@pytest.fixture()
def admin_headers(admin, auth_headers):
    return auth_headers(admin, role="admin")


class TestUsersApi:
    def test_list_users_with_roles(self, client, admin_headers, staff, student):
        res = client.get("/api/v1/admin/users", headers=admin_headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 3
        roles = {u["email"]: u["role"] for u in body["items"]}
        assert roles[staff.email] == "staff"
        assert roles[student.email] == "student"

    def test_change_role(self, client, admin, admin_headers, student):
        res = client.put(f"/api/v1/admin/users/{student.id}/role",
                         json={"role": "Staff"}, headers=admin_headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["previous_role"] == "student"
        assert body["role"] == "staff"
        assert body["audit_recorded"] is True
        assert get_user_role(student.id) == "staff"

        audit = client.get("/api/v1/audit?entity_type=user_role", headers=admin_headers).get_json()
        assert sorted(a["action"] for a in audit["audit_logs"]) == ["assign_role", "remove_role"]
        assert all(a["user_id"] == admin.id for a in audit["audit_logs"])

    def test_unknown_role_is_422(self, client, admin_headers, student):
        res = client.put(f"/api/v1/admin/users/{student.id}/role",
                         json={"role": "dean"}, headers=admin_headers)
        assert res.status_code == 422
        assert get_user_role(student.id) == "student"

    def test_missing_role_is_400(self, client, admin_headers, student):
        res = client.put(f"/api/v1/admin/users/{student.id}/role", json={}, headers=admin_headers)
        assert res.status_code == 400

    def test_unknown_user_is_404(self, client, admin_headers):
        res = client.put("/api/v1/admin/users/9999/role",
                         json={"role": "staff"}, headers=admin_headers)
        assert res.status_code == 404

    def test_demoted_admin_loses_access_immediately(self, client, admin, admin_headers, make_user,
                                                    auth_headers):
        other = make_user("admin")
        client.put(f"/api/v1/admin/users/{admin.id}/role", json={"role": "student"},
                   headers=auth_headers(other, role="admin"))
        # Same token as before; the role is re-read on every request
        assert client.get("/api/v1/admin/users", headers=admin_headers).status_code == 403

    @pytest.mark.parametrize("fixture_name", ["staff", "student"])
    def test_non_admin_is_403(self, request, client, auth_headers, fixture_name):
        user = request.getfixturevalue(fixture_name)
        headers = auth_headers(user, role=fixture_name)
        assert client.get("/api/v1/admin/users", headers=headers).status_code == 403
        assert client.get("/api/v1/admin/stats", headers=headers).status_code == 403
        assert client.get("/api/v1/audit", headers=headers).status_code == 403
        assert client.get("/api/v1/audit/export.csv", headers=headers).status_code == 403


class TestStatsApi:
    def test_stats_shape(self, client, admin_headers, staff):
        res = client.get("/api/v1/admin/stats", headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json() == {
            "total_users": 2,
            "total_notices": 0,
            "total_views": 0,
            "pending_count": 0,
            "recent_views": 0,
        }


class TestAuditApi:
    def _notice_activity(self, client, admin_headers, staff, auth_headers):
        res = client.post(
            "/api/v1/notices",
            json={"title": "Open day", "content": "Visit the campus this Saturday morning."},
            headers=auth_headers(staff, role="staff"),
        )
        notice_id = res.get_json()["notice"]["id"]
        client.post(f"/api/v1/notices/{notice_id}/approve", headers=admin_headers)
        return notice_id

    def test_list_newest_first_with_filters(self, client, admin_headers, staff, auth_headers):
        notice_id = self._notice_activity(client, admin_headers, staff, auth_headers)

        logs = client.get("/api/v1/audit", headers=admin_headers).get_json()
        assert [a["action"] for a in logs["audit_logs"]] == ["approve", "create"]
        assert logs["total"] == 2

        approve = client.get(f"/api/v1/audit?action=approve&entity_id={notice_id}",
                             headers=admin_headers).get_json()
        assert approve["total"] == 1
        assert approve["audit_logs"][0]["new_values"] == {"status": "approved"}

        limited = client.get("/api/v1/audit?limit=1", headers=admin_headers).get_json()
        assert limited["total"] == 1

    def test_unknown_action_filter_is_422(self, client, admin_headers):
        res = client.get("/api/v1/audit?action=archive", headers=admin_headers)
        assert res.status_code == 422
        assert "action" in res.get_json()["details"]

    def test_search_by_actor_name(self, client, admin_headers, staff, auth_headers):
        self._notice_activity(client, admin_headers, staff, auth_headers)
        res = client.get("/api/v1/audit?search=sam", headers=admin_headers).get_json()
        assert [a["action"] for a in res["audit_logs"]] == ["create"]

    def test_csv_export(self, client, admin_headers, staff, auth_headers):
        self._notice_activity(client, admin_headers, staff, auth_headers)
        res = client.get("/api/v1/audit/export.csv", headers=admin_headers)
        assert res.status_code == 200
        assert res.mimetype == "text/csv"
        disposition = res.headers["Content-Disposition"]
        assert disposition.startswith('attachment; filename="audit-logs-')
        assert disposition.endswith('.csv"')

        rows = list(csv.reader(io.StringIO(res.get_data(as_text=True))))
        assert rows[0][0] == "Timestamp"
        assert [r[2] for r in rows[1:]] == ["approve", "create"]
        assert rows[1][1] == "Ada Admin"


class TestHealthApi:
    def test_ready(self, client):
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        checks = res.get_json()["checks"]
        assert checks["database"]["status"] == "ok"
        assert checks["realtime"]["subscribers"] >= 1
