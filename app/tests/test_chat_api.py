"""
API tests for vendor chat: access control, posting, notifications, stream auth.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from app.core.config import settings
from app.core.rbac import Role
from app.db.models import ChatMessage, ChatNotification
from app.services.admin_settings import FeatureSettings, update_admin_settings
from app.services.chat import latest_cursor, messages_after


def _chat_user(make_user, **kwargs):
    return make_user(role=Role.DECISION_MAKER, can_access_chat=True, **kwargs)


class TestChatAccess:
    def test_user_without_chat_permission(self, client, make_user, make_vendor, auth_headers):
        user = make_user(role=Role.DECISION_MAKER, can_access_chat=False)
        vendor = make_vendor()

        response = client.post(f"/api/chat/{vendor.id}", json={"content": "hi"}, headers=auth_headers(user))

        assert response.status_code == 403

    def test_contributor_cannot_post(self, client, make_user, make_vendor, auth_headers):
        user = make_user(role=Role.CONTRIBUTOR, can_access_chat=True)
        vendor = make_vendor()

        response = client.post(f"/api/chat/{vendor.id}", json={"content": "hi"}, headers=auth_headers(user))

        assert response.status_code == 403

    def test_global_toggle_off(self, client, db, make_user, make_vendor, auth_headers):
        user = _chat_user(make_user)
        vendor = make_vendor()
        update_admin_settings(db, FeatureSettings(chat_enabled=False))

        response = client.get(f"/api/chat/{vendor.id}", headers=auth_headers(user))

        assert response.status_code == 403
        assert response.json()["details"]["feature"] == "chat_enabled"

    def test_vendor_toggle_off(self, client, make_user, make_vendor, auth_headers):
        user = _chat_user(make_user)
        vendor = make_vendor(chat_enabled=False)

        response = client.get(f"/api/chat/{vendor.id}", headers=auth_headers(user))

        assert response.status_code == 403

    def test_unknown_vendor(self, client, make_user, auth_headers):
        user = _chat_user(make_user)
        response = client.get("/api/chat/999", headers=auth_headers(user))
        assert response.status_code == 404


class TestPostMessage:
    def test_post_and_list(self, client, make_user, make_vendor, auth_headers):
        user = _chat_user(make_user, name="Dana")
        vendor = make_vendor()
        headers = auth_headers(user)

        posted = client.post(f"/api/chat/{vendor.id}", json={"content": "  First  "}, headers=headers)
        client.post(f"/api/chat/{vendor.id}", json={"content": "Second"}, headers=headers)
        history = client.get(f"/api/chat/{vendor.id}", headers=headers).json()

        assert posted.status_code == 201
        assert posted.json()["content"] == "First"
        assert posted.json()["sender_name"] == "Dana"
        assert [m["content"] for m in history] == ["First", "Second"]

    def test_blank_message_rejected(self, client, db, make_user, make_vendor, auth_headers):
        user = _chat_user(make_user)
        vendor = make_vendor()

        response = client.post(f"/api/chat/{vendor.id}", json={"content": "   "}, headers=auth_headers(user))

        assert response.status_code == 400
        assert response.json()["details"]["fields"] == ["content"]
        assert db.query(ChatMessage).count() == 0

    def test_fan_out_skips_sender_and_users_without_chat(self, client, db, make_user, make_vendor, auth_headers):
        sender = _chat_user(make_user)
        peer = _chat_user(make_user)
        make_user(role=Role.DECISION_MAKER, can_access_chat=False)
        make_user(role=Role.CONTRIBUTOR, can_access_chat=True)
        vendor = make_vendor()

        client.post(f"/api/chat/{vendor.id}", json={"content": "hello"}, headers=auth_headers(sender))

        db.expire_all()
        notified = [n.user_id for n in db.query(ChatNotification).all()]
        assert notified == [peer.id]

    def test_queue_mode_enqueues_fan_out(self, client, db, make_user, make_vendor, auth_headers, monkeypatch):
        sender = _chat_user(make_user)
        _chat_user(make_user)
        vendor = make_vendor()
        monkeypatch.setattr(settings, "NOTIFICATION_FANOUT_MODE", "queue")

        with patch("app.workers.jobs.enqueue_notification_fanout") as enqueue:
            response = client.post(f"/api/chat/{vendor.id}", json={"content": "queued"},
                                   headers=auth_headers(sender))

        assert response.status_code == 201
        enqueue.assert_called_once_with(response.json()["id"], sender.id)
        assert db.query(ChatNotification).count() == 0


class TestNotifications:
    def test_unread_counts_and_mark_read(self, client, make_user, make_vendor, auth_headers):
        sender = _chat_user(make_user)
        reader = _chat_user(make_user)
        first, second = make_vendor(), make_vendor()
        for vendor, count in ((first, 2), (second, 1)):
            for i in range(count):
                client.post(f"/api/chat/{vendor.id}", json={"content": f"m{i}"}, headers=auth_headers(sender))

        unread = client.get("/api/chat/notifications/unread", headers=auth_headers(reader)).json()
        assert unread["total"] == 3
        assert unread["vendors"] == {str(first.id): 2, str(second.id): 1}

        marked = client.post(f"/api/chat/{first.id}/notifications/read", headers=auth_headers(reader))
        assert marked.json() == {"marked_read": 2}

        unread = client.get("/api/chat/notifications/unread", headers=auth_headers(reader)).json()
        assert unread == {"total": 1, "vendors": {str(second.id): 1}}

    def test_sender_has_nothing_unread(self, client, make_user, make_vendor, auth_headers):
        sender = _chat_user(make_user)
        vendor = make_vendor()
        client.post(f"/api/chat/{vendor.id}", json={"content": "x"}, headers=auth_headers(sender))

        unread = client.get("/api/chat/notifications/unread", headers=auth_headers(sender)).json()

        assert unread == {"total": 0, "vendors": {}}


class TestStreamAuthorization:
    def test_missing_token(self, client, make_vendor):
        vendor = make_vendor()
        assert client.get(f"/api/chat/{vendor.id}/stream").status_code == 401

    def test_invalid_token(self, client, make_vendor):
        vendor = make_vendor()
        response = client.get(f"/api/chat/{vendor.id}/stream", params={"token": "not-a-jwt"})
        assert response.status_code == 401

    def test_user_without_chat_permission(self, client, make_user, make_vendor, auth_headers):
        user = make_user(role=Role.DECISION_MAKER, can_access_chat=False)
        vendor = make_vendor()
        token = auth_headers(user)["Authorization"].split()[1]

        response = client.get(f"/api/chat/{vendor.id}/stream", params={"token": token})

        assert response.status_code == 403

    def test_unknown_vendor(self, client, make_user, auth_headers):
        user = _chat_user(make_user)
        token = auth_headers(user)["Authorization"].split()[1]

        response = client.get("/api/chat/999/stream", params={"token": token})

        assert response.status_code == 404


class TestMessageCursor:
    def _message(self, db, vendor_id, sender_id, content, created_at):
        message = ChatMessage(vendor_id=vendor_id, sender_id=sender_id, content=content, created_at=created_at)
        db.add(message)
        db.commit()
        return message

    def test_messages_after_cursor_include_same_timestamp(self, db, make_user, make_vendor):
        user = _chat_user(make_user)
        vendor = make_vendor()
        ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
        first = self._message(db, vendor.id, user.id, "a", ts)
        self._message(db, vendor.id, user.id, "b", ts)
        self._message(db, vendor.id, user.id, "c", ts + timedelta(seconds=1))

        after = messages_after(db, vendor.id, (first.created_at, first.id))

        assert [m.content for m in after] == ["b", "c"]

    def test_latest_cursor(self, db, make_user, make_vendor):
        user = _chat_user(make_user)
        vendor = make_vendor()
        assert latest_cursor(db, vendor.id) is None

        ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._message(db, vendor.id, user.id, "a", ts)
        last = self._message(db, vendor.id, user.id, "b", ts + timedelta(seconds=5))

        assert latest_cursor(db, vendor.id)[1] == last.id
        assert messages_after(db, vendor.id, latest_cursor(db, vendor.id)) == []
