import logging

from helpers import NOW, add_branch, add_category, add_partner, add_user, make_session
from ticketing.models.notification import Notification
from ticketing.models.notification_outbox import NotificationOutbox
from ticketing.models.request import Request, RequestStatusLog
from ticketing.models.user import User
from ticketing.services import configuration, notification_fanout
from ticketing.services.notification_fanout import (
    Audience,
    RequestEvent,
    fan_out,
    list_notifications,
    mark_notification_read,
    notify_request_event,
    resolve_recipients,
)


def _seed(db):
    customer = add_user(db, name="Cara", email="Cara@Example.com", user_type="customer")
    admin = add_user(db, name="Ada", email="ada@example.com", user_type="admin")
    add_user(db, name="Old Admin", email="old@example.com", user_type="admin")
    db.query(User).filter_by(email="old@example.com").update({"is_active": False})
    db.commit()
    category = add_category(db)
    partner = add_partner(db, "Gleam", category_ids=[category.id])
    manager = add_user(db, name="Mo", email="mo@gleam.example.com", user_type="partner", partner_id=partner.id)
    branch = add_branch(db, partner, "Gleam Central", 25.0, 55.0, user=manager)
    request = Request(
        request_number="REQ-20261018-0001",
        customer_id=customer.id,
        customer_name="Cara",
        customer_phone="+971500000001",
        customer_address="Somewhere",
        customer_lat=25.0,
        customer_lng=55.0,
        category_id=category.id,
        partner_id=partner.id,
        branch_id=branch.id,
        status="in_progress",
        submitted_at=NOW,
    )
    db.add(request)
    db.flush()
    log = RequestStatusLog(request_id=request.id, status="in_progress", timestamp=NOW)
    db.add(log)
    db.commit()
    return customer, admin, manager, partner, branch, request, log


def test_resolve_recipients_by_audience():
    db = make_session()
    customer, admin, manager, _partner, branch, request, _log = _seed(db)

    assert [u.id for u in resolve_recipients(db, Audience.CUSTOMER, request)] == [customer.id]
    assert [u.id for u in resolve_recipients(db, Audience.ADMINS, request)] == [admin.id]
    assert [u.id for u in resolve_recipients(db, Audience.BRANCH_USERS, request)] == [manager.id]
    request.branch_id = None
    assert resolve_recipients(db, Audience.BRANCH_USERS, request) == []
    assert [u.id for u in resolve_recipients(db, Audience.BRANCH_USERS, request, branch_id=branch.id)] == [manager.id]


def test_in_progress_notifies_and_emails_customer():
    db = make_session()
    customer, admin, _manager, partner, branch, request, log = _seed(db)

    written = fan_out(
        db,
        RequestEvent(
            event="in_progress",
            request_id=request.id,
            status_log_id=log.id,
            partner_id=partner.id,
            branch_id=branch.id,
            notes="Technician on the way",
        ),
    )

    assert written == 1
    note = db.query(Notification).one()
    assert note.user_id == customer.id
    assert note.type == "request_in_progress"
    mail = db.query(NotificationOutbox).one()
    assert mail.target == "cara@example.com"
    assert mail.status == "PENDING"
    assert mail.subject == "Request Status Update - REQ-20261018-0001"
    assert "New Status: In Progress" in mail.message
    assert "Technician on the way" in mail.message


def test_confirmed_sends_no_email():
    db = make_session()
    customer, admin, _manager, partner, _branch, request, log = _seed(db)

    written = fan_out(
        db, RequestEvent(event="confirmed", request_id=request.id, status_log_id=log.id, partner_id=partner.id)
    )

    assert written == 2
    assert {n.user_id for n in db.query(Notification).all()} == {customer.id, admin.id}
    assert db.query(NotificationOutbox).count() == 0


def test_email_queue_is_idempotent_per_log_entry():
    db = make_session()
    _customer, _admin, _manager, partner, branch, request, log = _seed(db)
    event = RequestEvent(
        event="completed", request_id=request.id, status_log_id=log.id, partner_id=partner.id, branch_id=branch.id
    )

    fan_out(db, event)
    fan_out(db, event)

    targets = sorted(row.target for row in db.query(NotificationOutbox).all())
    assert targets == ["ada@example.com", "cara@example.com"]


def test_submitted_emails_admins_and_operations_team(monkeypatch):
    db = make_session()
    _customer, admin, _manager, _partner, _branch, request, log = _seed(db)
    monkeypatch.setattr(configuration.settings, "operational_team_emails", "ops@example.com")

    written = fan_out(db, RequestEvent(event="submitted", request_id=request.id, status_log_id=log.id))

    assert written == 1
    assert db.query(Notification).one().user_id == admin.id
    targets = sorted(row.target for row in db.query(NotificationOutbox).all())
    assert targets == ["ada@example.com", "ops@example.com"]
    assert all(row.subject == "New Service Request - REQ-20261018-0001" for row in db.query(NotificationOutbox).all())


def test_notify_request_event_swallows_errors(monkeypatch, caplog):
    db = make_session()
    _customer, _admin, _manager, _partner, _branch, request, log = _seed(db)

    def _boom(*_args, **_kwargs):
        raise RuntimeError("smtp gone")

    monkeypatch.setattr(notification_fanout, "enqueue_email", _boom)
    caplog.set_level(logging.ERROR)

    assert notify_request_event(db, RequestEvent(event="completed", request_id=request.id, status_log_id=log.id)) == 0
    assert db.query(Notification).count() == 0
    assert any("Notification fan-out failed" in rec.getMessage() for rec in caplog.records)


def test_mark_notification_read():
    db = make_session()
    customer, _admin, _manager, partner, _branch, request, log = _seed(db)
    fan_out(db, RequestEvent(event="closed", request_id=request.id, status_log_id=log.id, partner_id=partner.id))

    unread = list_notifications(db, customer.id, unread_only=True).all()
    assert len(unread) == 1
    assert mark_notification_read(db, unread[0].id, customer.id).read is True
    assert list_notifications(db, customer.id, unread_only=True).all() == []
    assert mark_notification_read(db, unread[0].id, customer.id + 100) is None
