"""
API tests for admin settings, user management and vendor maintenance.
"""
from app.core.rbac import Role
from app.db.models import (
    ApprovalStatus, AuditLog, ChatMessage, Evaluation, EvaluationDraft, FinalDecision, RfiStatus,
    User, Vendor, VendorVote, VoteValue,
)
from app.services.consensus import cast_vote

ALL_ON = {
    "chat_enabled": True,
    "direct_decision_enabled": True,
    "print_enabled": True,
    "export_enabled": True,
}


class TestSettings:
    def test_defaults_are_all_enabled(self, client, make_user, auth_headers):
        admin = make_user(role=Role.ADMIN)
        response = client.get("/api/admin/settings", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json() == ALL_ON

    def test_update_persists_and_is_audited(self, client, db, make_user, auth_headers):
        admin = make_user(role=Role.ADMIN)
        body = dict(ALL_ON, export_enabled=False)

        response = client.put("/api/admin/settings", json=body, headers=auth_headers(admin))

        assert response.status_code == 200
        assert response.json()["export_enabled"] is False
        assert client.get("/api/admin/settings", headers=auth_headers(admin)).json() == body
        assert db.query(AuditLog).filter(AuditLog.action == "update_settings").count() == 1

    def test_non_boolean_rejected(self, client, make_user, auth_headers):
        admin = make_user(role=Role.ADMIN)
        body = dict(ALL_ON, chat_enabled="yes", print_enabled=1)

        response = client.put("/api/admin/settings", json=body, headers=auth_headers(admin))

        assert response.status_code == 400
        assert response.json()["details"]["fields"] == ["chat_enabled", "print_enabled"]

    def test_missing_field_rejected(self, client, make_user, auth_headers):
        admin = make_user(role=Role.ADMIN)
        body = dict(ALL_ON)
        del body["export_enabled"]

        response = client.put("/api/admin/settings", json=body, headers=auth_headers(admin))

        assert response.status_code == 400

    def test_non_admin_forbidden(self, client, make_user, auth_headers):
        user = make_user(role=Role.DECISION_MAKER)
        assert client.get("/api/admin/settings", headers=auth_headers(user)).status_code == 403
        assert client.put("/api/admin/settings", json=ALL_ON, headers=auth_headers(user)).status_code == 403


class TestUserManagement:
    def test_pending_users_and_approval(self, client, db, make_user, auth_headers):
        admin = make_user(role=Role.ADMIN)
        pending = make_user(role=Role.CONTRIBUTOR)
        pending.approval_status = ApprovalStatus.PENDING.value
        db.commit()

        listed = client.get("/api/admin/users/pending", headers=auth_headers(admin)).json()
        assert [u["id"] for u in listed] == [pending.id]

        response = client.post(f"/api/admin/users/{pending.id}/approve", json={"status": "APPROVED"},
                               headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["approval_status"] == "APPROVED"

    def test_role_change_updates_evaluator(self, client, db, make_user, auth_headers):
        admin = make_user(role=Role.ADMIN)
        user = make_user(role=Role.CONTRIBUTOR)

        response = client.put(f"/api/admin/users/{user.id}/role", json={"role": "DECISION_MAKER"},
                              headers=auth_headers(admin))

        assert response.json()["role"] == "DECISION_MAKER"
        db.expire_all()
        assert db.query(User).filter(User.id == user.id).one().evaluator.role == "DECISION_MAKER"

    def test_partial_permission_update(self, client, make_user, auth_headers):
        admin = make_user(role=Role.ADMIN)
        user = make_user(can_print_reports=True)

        response = client.put(f"/api/admin/users/{user.id}/permissions", json={"can_access_chat": True},
                              headers=auth_headers(admin))

        permissions = response.json()["permissions"]
        assert permissions["can_access_chat"] is True
        assert permissions["can_print_reports"] is True
        assert permissions["can_export_data"] is False

    def test_cannot_delete_self(self, client, make_user, auth_headers):
        admin = make_user(role=Role.ADMIN)
        response = client.delete(f"/api/admin/users/{admin.id}", headers=auth_headers(admin))
        assert response.status_code == 400

    def test_delete_user_removes_owned_rows(self, client, db, make_user, make_vendor,
                                            auth_headers, evaluation_payload):
        admin = make_user(role=Role.ADMIN)
        user = make_user(can_access_chat=True)
        vendor = make_vendor()
        headers = auth_headers(user)
        client.post("/api/evaluations", json=evaluation_payload(vendor.id), headers=headers)
        client.post(f"/api/vendors/{vendor.id}/vote", json={"vote": "ACCEPT"}, headers=headers)
        client.post(f"/api/chat/{vendor.id}", json={"content": "bye"}, headers=headers)

        user_id = user.id
        response = client.delete(f"/api/admin/users/{user_id}", headers=auth_headers(admin))

        assert response.status_code == 200
        db.expire_all()
        assert db.query(User).filter(User.id == user_id).first() is None
        assert db.query(Evaluation).count() == 0
        assert db.query(VendorVote).count() == 0
        assert db.query(ChatMessage).count() == 0

    def test_deleting_a_voter_reopens_the_decision(self, client, db, make_user, make_vendor, auth_headers):
        admin = make_user(role=Role.ADMIN)
        voters = [make_user() for _ in range(3)]
        vendor = make_vendor()
        for voter in voters:
            cast_vote(db, vendor.id, voter.id, VoteValue.ACCEPT)
        assert db.query(Vendor).filter(Vendor.id == vendor.id).one().final_decision == FinalDecision.ACCEPTED.value

        response = client.delete(f"/api/admin/users/{voters[0].id}", headers=auth_headers(admin))

        assert response.status_code == 200
        db.expire_all()
        stored = db.query(Vendor).filter(Vendor.id == vendor.id).one()
        assert db.query(VendorVote).filter(VendorVote.vendor_id == vendor.id).count() == 2
        assert stored.final_decision is None
        assert stored.rfi_status == RfiStatus.IN_PROGRESS.value


class TestVendorManagement:
    def test_update_vendor(self, client, make_user, make_vendor, auth_headers):
        admin = make_user(role=Role.ADMIN)
        vendor = make_vendor()

        response = client.put(
            f"/api/admin/vendors/{vendor.id}/manage",
            json={"action": "UPDATE_VENDOR", "data": {"name": "Renamed", "chat_enabled": False}},
            headers=auth_headers(admin),
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"
        assert response.json()["chat_enabled"] is False

    def test_invalid_scope(self, client, make_user, make_vendor, auth_headers):
        admin = make_user(role=Role.ADMIN)
        vendor = make_vendor()

        response = client.put(
            f"/api/admin/vendors/{vendor.id}/manage",
            json={"action": "UPDATE_SCOPE", "scopes": ["Media", "Print"]},
            headers=auth_headers(admin),
        )

        assert response.status_code == 400
        assert response.json()["details"]["fields"] == ["scopes"]

    def test_clear_evaluations(self, client, db, make_user, make_vendor, auth_headers, evaluation_payload):
        admin = make_user(role=Role.ADMIN)
        evaluator = make_user(role=Role.CONTRIBUTOR)
        vendor = make_vendor()
        client.post("/api/evaluations", json=evaluation_payload(vendor.id), headers=auth_headers(evaluator))

        response = client.put(f"/api/admin/vendors/{vendor.id}/manage", json={"action": "CLEAR_EVALUATIONS"},
                              headers=auth_headers(admin))

        assert response.json()["deleted"] == 1
        db.expire_all()
        assert db.query(Evaluation).count() == 0

    def test_delete_vendor_cascades(self, client, db, make_user, make_vendor, auth_headers, evaluation_payload):
        admin = make_user(role=Role.ADMIN)
        member = make_user(can_access_chat=True)
        vendor = make_vendor()
        headers = auth_headers(member)
        client.post("/api/evaluations/autosave", json={"vendor_id": vendor.id, "data": {}}, headers=headers)
        client.post(f"/api/vendors/{vendor.id}/vote", json={"vote": "REJECT"}, headers=headers)
        client.post(f"/api/chat/{vendor.id}", json={"content": "note"}, headers=headers)

        response = client.delete(f"/api/admin/vendors/{vendor.id}", headers=auth_headers(admin))

        assert response.status_code == 200
        db.expire_all()
        assert db.query(Vendor).count() == 0
        assert db.query(EvaluationDraft).count() == 0
        assert db.query(VendorVote).count() == 0
        assert db.query(ChatMessage).count() == 0


class TestAuditLogs:
    def test_logs_are_listed_newest_first(self, client, make_user, auth_headers):
        admin = make_user(role=Role.ADMIN)
        headers = auth_headers(admin)
        client.put("/api/admin/settings", json=ALL_ON, headers=headers)
        client.put("/api/admin/settings", json=dict(ALL_ON, chat_enabled=False), headers=headers)

        logs = client.get("/api/admin/audit/logs", params={"action": "update_settings"}, headers=headers).json()

        assert len(logs) == 2
        assert logs[0]["details"]["chat_enabled"] is False
        assert logs[0]["user_email"] == admin.email
