import datetime
import logging

from helpers import NOW, add_branch, add_category, add_partner, add_user, make_session
from ticketing.models.notification import Notification
from ticketing.models.notification_outbox import NotificationOutbox
from ticketing.models.request import RequestAssignment
from ticketing.schemas.requests import RequestCreate
from ticketing.services import request_service, sla_monitor
from ticketing.services.sla_monitor import sweep_expired_assignments


def _seed(db):
    customer = add_user(db, name="Cara", email="cara@example.com", user_type="customer")
    admin = add_user(db, name="Ada", email="ada@example.com", user_type="admin")
    category = add_category(db)
    partner = add_partner(db, "Slow Wash", category_ids=[category.id])
    branch = add_branch(db, partner, "Slow Branch", 25.0, 55.0)
    return customer, admin, category, partner, branch


def _assigned_request(db, customer, admin, category, partner, branch, *, assigned_at):
    payload = RequestCreate(
        customer_name="Cara",
        customer_phone="+971500000001",
        customer_address="Somewhere",
        customer_lat=25.0,
        customer_lng=55.0,
        category_id=category.id,
    )
    request = request_service.create_request(db, payload, customer.id, now=assigned_at)
    return request_service.assign_request(db, request.id, partner.id, branch.id, admin.id, now=assigned_at)


def test_sweep_reverts_expired_assignment():
    db = make_session()
    customer, admin, category, partner, branch = _seed(db)
    request = _assigned_request(db, customer, admin, category, partner, branch, assigned_at=NOW)

    reverted = sweep_expired_assignments(db, now=NOW + datetime.timedelta(minutes=16))

    assert reverted == 1
    current = request_service.get_request(db, request.id)
    assert current.status == "unassigned"
    assert current.partner_id is None
    assert current.branch_id is None
    assert current.sla_deadline is None
    assert current.rejected_at is not None
    assert current.rejection_reason is None
    last = request_service.get_request_timeline(db, request.id)[-1]
    assert last["status"] == "rejected"
    assert last["notes"] == "SLA breach: no partner response within 15 minutes"
    assignment = db.query(RequestAssignment).filter(RequestAssignment.request_id == request.id).one()
    assert assignment.response == "timeout"
    admin_types = [n.type for n in db.query(Notification).filter(Notification.user_id == admin.id).all()]
    assert "partner_timeout" in admin_types
    timeout_mail = db.query(NotificationOutbox).filter(NotificationOutbox.event == "sla_timeout").all()
    assert [row.target for row in timeout_mail] == ["ada@example.com"]
    assert timeout_mail[0].subject.startswith("SLA Timeout Alert - Request ")


def test_sweep_ignores_requests_inside_deadline():
    db = make_session()
    customer, admin, category, partner, branch = _seed(db)
    request = _assigned_request(db, customer, admin, category, partner, branch, assigned_at=NOW)

    assert sweep_expired_assignments(db, now=NOW + datetime.timedelta(minutes=14)) == 0
    assert request_service.get_request(db, request.id).status == "assigned"


def test_sweep_skips_confirmed_requests():
    db = make_session()
    customer, admin, category, partner, branch = _seed(db)
    request = _assigned_request(db, customer, admin, category, partner, branch, assigned_at=NOW)
    request_service.confirm_request(db, request.id, None, now=NOW + datetime.timedelta(minutes=5))

    assert sweep_expired_assignments(db, now=NOW + datetime.timedelta(hours=1)) == 0
    assert request_service.get_request(db, request.id).status == "confirmed"


def test_sweep_isolates_failures(monkeypatch, caplog):
    db = make_session()
    customer, admin, category, partner, branch = _seed(db)
    first = _assigned_request(db, customer, admin, category, partner, branch, assigned_at=NOW)
    second = _assigned_request(
        db, customer, admin, category, partner, branch, assigned_at=NOW + datetime.timedelta(minutes=1)
    )
    first_id = first.id
    second_id = second.id
    original = sla_monitor.apply_sla_timeout

    def _flaky(db_, request, **kwargs):
        if request.id == first_id:
            raise RuntimeError("lock timeout")
        return original(db_, request, **kwargs)

    monkeypatch.setattr(sla_monitor, "apply_sla_timeout", _flaky)
    caplog.set_level(logging.ERROR)

    reverted = sweep_expired_assignments(db, now=NOW + datetime.timedelta(minutes=30))

    assert reverted == 1
    assert request_service.get_request(db, first_id).status == "assigned"
    assert request_service.get_request(db, second_id).status == "unassigned"
    assert any("SLA revert failed" in rec.getMessage() for rec in caplog.records)


def test_reassignment_after_timeout_gets_new_deadline():
    db = make_session()
    customer, admin, category, partner, branch = _seed(db)
    request = _assigned_request(db, customer, admin, category, partner, branch, assigned_at=NOW)
    sweep_expired_assignments(db, now=NOW + datetime.timedelta(minutes=20))

    later = NOW + datetime.timedelta(minutes=25)
    reassigned = request_service.assign_request(db, request.id, partner.id, branch.id, admin.id, now=later)

    assert reassigned.status == "assigned"
    assert reassigned.sla_deadline.replace(tzinfo=None) == (later + datetime.timedelta(minutes=15)).replace(tzinfo=None)
    statuses = [entry["status"] for entry in request_service.get_request_timeline(db, request.id)]
    assert statuses == ["submitted", "assigned", "rejected", "assigned"]


def test_skipped_revert_releases_row_lock():
    db = make_session()
    customer, admin, category, partner, branch = _seed(db)
    request = _assigned_request(db, customer, admin, category, partner, branch, assigned_at=NOW)
    request_id = request.id
    request_service.confirm_request(db, request_id, None, now=NOW + datetime.timedelta(minutes=5))

    assert sla_monitor._revert_one(db, request_id, NOW + datetime.timedelta(hours=1)) is None
    assert not db.in_transaction()
