"""
Notification tests (decision event bus + pending-approval mail).

Verifies:
- Events for an offline user are buffered and flushed in order before "ready"
- Buffers keep only the newest queue_limit events
- ack drops the buffer; unregister stops delivery
- Mail goes only to active admins with a usable address, and never raises
"""

import queue
import smtplib

from erp.extensions import mail
from erp.models.auth import USER_STATUS_INACTIVE
from erp.services import approval_request_service, notification_service
from erp.services.notification_bus import EVENT_APPROVAL_DECISION, EVENT_READY, ApprovalEventBus, approval_events


def _drain(sink):
    events = []
    while True:
        try:
            events.append(sink.get_nowait())
        except queue.Empty:
            return events


# =============================================================================
# EVENT BUS
# =============================================================================


class TestEventBus:

    def test_buffered_then_flushed_in_order(self):
        bus = ApprovalEventBus()
        assert bus.notify(7, {"request_id": 1}) == 0
        bus.notify(7, {"request_id": 2})

        sink = bus.register(7)
        assert _drain(sink) == [
            (EVENT_APPROVAL_DECISION, {"request_id": 1}),
            (EVENT_APPROVAL_DECISION, {"request_id": 2}),
            (EVENT_READY, {"ok": True}),
        ]
        assert bus.pending(7) == []

    def test_live_sinks_all_receive(self):
        bus = ApprovalEventBus()
        first = bus.register(7)
        second = bus.register(7)
        _drain(first)
        _drain(second)

        assert bus.notify(7, {"request_id": 3}) == 2
        assert _drain(first) == [(EVENT_APPROVAL_DECISION, {"request_id": 3})]
        assert _drain(second) == [(EVENT_APPROVAL_DECISION, {"request_id": 3})]

    def test_queue_limit_keeps_newest(self):
        bus = ApprovalEventBus(queue_limit=3)
        for i in range(5):
            bus.notify(7, {"request_id": i})
        assert [e["request_id"] for e in bus.pending(7)] == [2, 3, 4]

    def test_ack_clears_buffer(self):
        bus = ApprovalEventBus()
        bus.notify(7, {"request_id": 1})
        bus.ack(7)
        assert bus.pending(7) == []

    def test_unregister_falls_back_to_buffer(self):
        bus = ApprovalEventBus()
        sink = bus.register(7)
        bus.unregister(7, sink)

        assert bus.is_connected(7) is False
        bus.notify(7, {"request_id": 9})
        assert bus.pending(7) == [{"request_id": 9}]

    def test_users_isolated(self):
        bus = ApprovalEventBus()
        bus.notify(7, {"request_id": 1})
        assert bus.pending(8) == []


def test_ack_route(client, db_session, clerk, clerk_headers):
    approval_events.notify(clerk.id, {"request_id": 1})

    resp = client.post("/api/administration/approvals/events/ack", headers=clerk_headers)
    assert resp.status_code == 200
    assert approval_events.pending(clerk.id) == []


# =============================================================================
# PENDING-APPROVAL MAIL
# =============================================================================


class TestPendingMail:

    def _request(self, db_session, requester):
        request = approval_request_service.create_request(
            entity_type="ACCOUNT",
            entity_id="NEW",
            requested_by=requester.id,
            summary="Create Account: Cash in hand",
            new_value={"_action": "create", "name": "Cash in hand"},
        )
        db_session.commit()
        return request

    def test_recipients_are_active_admins(self, db_session, admin_user, make_user):
        make_user("admin2", "admin", email="ops@example.com")
        make_user("admin3", " Admin ", email="not-an-email")
        retired = make_user("admin4", "Admin", email="retired@erp.local")
        retired.status = USER_STATUS_INACTIVE
        make_user("clerk2", "Clerk", email="clerk@erp.local")
        db_session.commit()

        assert notification_service.active_admin_emails() == ["admin@erp.local"]

    def test_skipped_without_smtp(self, db_session, admin_user, clerk):
        request = self._request(db_session, clerk)
        assert notification_service.notify_pending_approval(request) is False

    def test_mail_body(self, app, db_session, admin_user, clerk):
        request = self._request(db_session, clerk)
        message = notification_service.build_pending_mail(request, ["admin@erp.local"])

        assert message.subject == "ERP approval pending: ACCOUNT"
        assert message.recipients == ["admin@erp.local"]
        body = message.body
        assert f"Request ID: {request.id}" in body
        assert "Requested By: clerk" in body
        assert '"name": "Cash in hand"' in body

    def test_send_failure_is_logged_not_raised(self, app, db_session, admin_user, clerk, monkeypatch):
        request = self._request(db_session, clerk)
        sent = []

        def fail(message):
            sent.append(message)
            raise smtplib.SMTPException("relay down")

        monkeypatch.setitem(app.config, "MAIL_SERVER", "smtp.erp.local")
        monkeypatch.setattr(notification_service, "send_mail", fail)

        assert notification_service.notify_pending_approval(request) is False
        assert len(sent) == 1

    def test_sent(self, app, db_session, admin_user, clerk, monkeypatch):
        request = self._request(db_session, clerk)
        sent = []
        monkeypatch.setitem(app.config, "MAIL_SERVER", "smtp.erp.local")
        monkeypatch.setattr(notification_service, "send_mail", sent.append)

        assert notification_service.notify_pending_approval(request) is True
        assert sent[0].recipients == ["admin@erp.local"]

    def test_delivered_through_flask_mail(self, app, db_session, admin_user, clerk, monkeypatch):
        request = self._request(db_session, clerk)
        monkeypatch.setitem(app.config, "MAIL_SERVER", "smtp.erp.local")

        with mail.record_messages() as outbox:
            assert notification_service.notify_pending_approval(request) is True

        assert [m.subject for m in outbox] == ["ERP approval pending: ACCOUNT"]
        assert outbox[0].sender == "erp@localhost"
