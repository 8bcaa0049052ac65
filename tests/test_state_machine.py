import datetime

import pytest

from helpers import NOW, add_branch, add_category, add_partner, add_user, make_session
from ticketing.core.errors import InvalidStatusTransition, RequestAlreadyClosed, ValidationError
from ticketing.models.request import Request, RequestAssignment, RequestStatusLog
from ticketing.schemas.requests import RequestCreate
from ticketing.services import request_service
from ticketing.services.sla_monitor import sweep_expired_assignments
from ticketing.services.state_machine import (
    ASSIGNABLE_STATUSES,
    LOG_ANNOTATIONS,
    RATED,
    TRANSITIONS,
    RequestStatus,
    allowed_targets,
    apply_transition,
    can_transition,
    ensure_transition,
    parse_status,
)


def _seed(db):
    customer = add_user(db, name="Cara Customer", email="cara@example.com", user_type="customer")
    admin = add_user(db, name="Ada Admin", email="ada@example.com", user_type="admin")
    category = add_category(db)
    partner = add_partner(db, "Shine Partners", category_ids=[category.id])
    branch = add_branch(db, partner, "Shine Downtown", 25.2048, 55.2708)
    return customer, admin, category, partner, branch


def _create(db, customer, category, now=NOW) -> Request:
    payload = RequestCreate(
        customer_name=customer.name,
        customer_phone="+971500000001",
        customer_address="1 Marina Walk",
        customer_lat=25.2050,
        customer_lng=55.2710,
        category_id=category.id,
    )
    return request_service.create_request(db, payload, customer.id, now=now)


def _log_statuses(db, request_id):
    rows = (
        db.query(RequestStatusLog)
        .filter(RequestStatusLog.request_id == request_id)
        .order_by(RequestStatusLog.id.asc())
        .all()
    )
    return [row.status for row in rows]


def test_transition_table_covers_every_status():
    assert set(TRANSITIONS) == set(RequestStatus)
    assert TRANSITIONS[RequestStatus.CLOSED] == frozenset()
    assert ASSIGNABLE_STATUSES == {RequestStatus.SUBMITTED, RequestStatus.UNASSIGNED}


@pytest.mark.parametrize(
    "current,target,expected",
    [
        ("submitted", "assigned", True),
        ("unassigned", "assigned", True),
        ("assigned", "confirmed", True),
        ("assigned", "rejected", True),
        ("confirmed", "in_progress", True),
        ("in_progress", "completed", True),
        ("completed", "closed", True),
        ("submitted", "confirmed", False),
        ("assigned", "in_progress", False),
        ("confirmed", "completed", False),
        ("completed", "in_progress", False),
        ("closed", "assigned", False),
    ],
)
def test_can_transition(current, target, expected):
    assert can_transition(current, target) is expected


def test_parse_status_rejects_unknown_values():
    assert parse_status(" In_Progress ") is RequestStatus.IN_PROGRESS
    with pytest.raises(ValidationError):
        parse_status("archived")


def test_ensure_transition_closed_is_terminal():
    with pytest.raises(RequestAlreadyClosed):
        ensure_transition("closed", "assigned")
    with pytest.raises(InvalidStatusTransition) as exc_info:
        ensure_transition("submitted", "completed")
    assert exc_info.value.current == "submitted"
    assert exc_info.value.target == "completed"
    assert allowed_targets("closed") == frozenset()


def test_reject_is_stored_unassigned_but_logged_rejected():
    db = make_session()
    customer, admin, category, partner, branch = _seed(db)
    request = _create(db, customer, category)
    request_service.assign_request(db, request.id, partner.id, branch.id, admin.id, now=NOW)

    rejected = request_service.reject_request(
        db, request.id, None, "Fully booked", now=NOW + datetime.timedelta(minutes=2)
    )

    assert rejected.status == "unassigned"
    assert rejected.partner_id is None
    assert rejected.branch_id is None
    assert rejected.sla_deadline is None
    assert rejected.rejection_reason == "Fully booked"
    assert rejected.rejected_at is not None
    assert _log_statuses(db, request.id) == ["submitted", "assigned", "rejected"]
    assignment = db.query(RequestAssignment).filter(RequestAssignment.request_id == request.id).one()
    assert assignment.response == "rejected"
    assert assignment.rejection_reason == "Fully booked"


def test_reject_without_reason_leaves_request_untouched():
    db = make_session()
    customer, admin, category, partner, branch = _seed(db)
    request = _create(db, customer, category)
    request_service.assign_request(db, request.id, partner.id, branch.id, admin.id, now=NOW)

    with pytest.raises(ValidationError):
        request_service.update_status(db, request.id, "rejected", None, rejection_reason="  ")

    current = request_service.get_request(db, request.id)
    assert current.status == "assigned"
    assert current.partner_id == partner.id
    assert _log_statuses(db, request.id) == ["submitted", "assigned"]


def test_illegal_transition_writes_no_log():
    db = make_session()
    customer, _admin, category, _partner, _branch = _seed(db)
    request = _create(db, customer, category)

    with pytest.raises(InvalidStatusTransition):
        request_service.update_status(db, request.id, "completed", None)

    assert request_service.get_request(db, request.id).status == "submitted"
    assert _log_statuses(db, request.id) == ["submitted"]


def test_apply_transition_stamps_milestone():
    db = make_session()
    customer, admin, category, partner, branch = _seed(db)
    request = _create(db, customer, category)
    request_service.assign_request(db, request.id, partner.id, branch.id, admin.id, now=NOW)
    request = request_service.get_request(db, request.id)

    confirmed_at = NOW + datetime.timedelta(minutes=3)
    entry = apply_transition(db, request, RequestStatus.CONFIRMED, actor_id=admin.id, now=confirmed_at)
    db.commit()

    assert entry.status == "confirmed"
    assert request.status == "confirmed"
    assert request.confirmed_at is not None


def test_status_log_is_a_walk_through_the_table():
    db = make_session()
    customer, admin, category, partner, branch = _seed(db)
    request = _create(db, customer, category)
    rid = request.id
    request_service.assign_request(db, rid, partner.id, branch.id, admin.id, now=NOW)
    request_service.reject_request(db, rid, None, "No staff", now=NOW)
    request_service.assign_request(db, rid, partner.id, branch.id, admin.id, now=NOW)
    # Partner never answers; the sweep returns the request to the pool.
    assert sweep_expired_assignments(db, now=NOW + datetime.timedelta(minutes=30)) == 1
    later = NOW + datetime.timedelta(minutes=31)
    request_service.assign_request(db, rid, partner.id, branch.id, admin.id, now=later)
    request_service.confirm_request(db, rid, None, now=later)
    request_service.update_status(db, rid, "in_progress", None, now=later)
    request_service.update_status(db, rid, "completed", None, now=later)
    request_service.rate_request(db, rid, 4, None, customer.id, now=later)
    request_service.close_request(db, rid, customer.id, now=later)

    labels = _log_statuses(db, rid)
    assert labels.count(RATED) == 1
    assert labels.count("rejected") == 2
    statuses = [parse_status(s) for s in labels if s not in LOG_ANNOTATIONS]
    assert statuses[-1] is RequestStatus.CLOSED
    assert statuses[0] is RequestStatus.SUBMITTED
    for previous, current in zip(statuses, statuses[1:]):
        assert current in TRANSITIONS[previous]
