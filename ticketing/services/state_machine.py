"""
Request status state machine.

The transition table below is the single authority on which status changes
are legal. `apply_transition` validates a change against it, stamps the
milestone timestamp, updates the pending assignment on partner responses and
appends exactly one status log entry. All guards run before the first
mutation so a refused transition leaves the request untouched.

A partner rejection is stored as `unassigned` (the request goes back to the
assignment pool) while the status log records `rejected`. An SLA timeout takes
the same edge. Annotations such as `rated` sit outside the table.
"""

from __future__ import annotations

import datetime
import enum
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.errors import InvalidStatusTransition, RequestAlreadyClosed, ValidationError
from ..models.request import Request, RequestAssignment, RequestStatusLog


logger = logging.getLogger("state_machine")


class RequestStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CLOSED = "closed"


class AssignmentResponse(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    TIMEOUT = "timeout"


TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.SUBMITTED: frozenset({RequestStatus.ASSIGNED}),
    RequestStatus.UNASSIGNED: frozenset({RequestStatus.ASSIGNED}),
    RequestStatus.ASSIGNED: frozenset({RequestStatus.CONFIRMED, RequestStatus.REJECTED}),
    RequestStatus.CONFIRMED: frozenset({RequestStatus.IN_PROGRESS}),
    RequestStatus.IN_PROGRESS: frozenset({RequestStatus.COMPLETED}),
    RequestStatus.COMPLETED: frozenset({RequestStatus.CLOSED}),
    RequestStatus.REJECTED: frozenset({RequestStatus.ASSIGNED}),
    RequestStatus.CLOSED: frozenset(),
}

ASSIGNABLE_STATUSES = frozenset({RequestStatus.SUBMITTED, RequestStatus.UNASSIGNED})

# Log-only labels; they record an event without moving the request.
RATED = "rated"
LOG_ANNOTATIONS = frozenset({RATED})

# Milestone column stamped when a request enters the status.
MILESTONE_FIELDS: dict[RequestStatus, str] = {
    RequestStatus.ASSIGNED: "assigned_at",
    RequestStatus.CONFIRMED: "confirmed_at",
    RequestStatus.REJECTED: "rejected_at",
    RequestStatus.IN_PROGRESS: "in_progress_at",
    RequestStatus.COMPLETED: "completed_at",
    RequestStatus.CLOSED: "closed_at",
}


def parse_status(value: str | RequestStatus) -> RequestStatus:
    if isinstance(value, RequestStatus):
        return value
    try:
        return RequestStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown request status: {value}")


def allowed_targets(status: str | RequestStatus) -> frozenset[RequestStatus]:
    return TRANSITIONS[parse_status(status)]


def can_transition(current: str | RequestStatus, target: str | RequestStatus) -> bool:
    return parse_status(target) in allowed_targets(current)


def ensure_transition(current: str | RequestStatus, target: str | RequestStatus) -> None:
    current_status = parse_status(current)
    target_status = parse_status(target)
    if current_status is RequestStatus.CLOSED:
        raise RequestAlreadyClosed("Request is closed and can no longer change")
    if target_status not in TRANSITIONS[current_status]:
        raise InvalidStatusTransition(current_status.value, target_status.value)


def _pending_assignment(db: Session, request: Request) -> Optional[RequestAssignment]:
    return (
        db.query(RequestAssignment)
        .filter(
            RequestAssignment.request_id == request.id,
            RequestAssignment.response == AssignmentResponse.PENDING.value,
        )
        .order_by(RequestAssignment.assigned_at.desc(), RequestAssignment.id.desc())
        .first()
    )


def _append_log(
    db: Session,
    request: Request,
    label: str,
    *,
    actor_id: Optional[int],
    notes: Optional[str],
    now: datetime.datetime,
) -> RequestStatusLog:
    entry = RequestStatusLog(
        request_id=request.id,
        status=label,
        changed_by_user_id=actor_id,
        notes=notes,
        timestamp=now,
    )
    db.add(entry)
    return entry


def _release_assignment(
    db: Session,
    request: Request,
    response: AssignmentResponse,
    reason: str,
    now: datetime.datetime,
) -> None:
    assignment = _pending_assignment(db, request)
    if assignment is not None:
        assignment.response = response.value
        assignment.responded_at = now
        assignment.rejection_reason = reason
        db.add(assignment)
    else:
        logger.warning("No pending assignment for request_id=%s on %s", request.id, response.value)
    request.status = RequestStatus.UNASSIGNED.value
    request.partner_id = None
    request.branch_id = None
    request.assigned_at = None
    request.sla_deadline = None


def apply_transition(
    db: Session,
    request: Request,
    target: str | RequestStatus,
    *,
    actor_id: Optional[int],
    notes: Optional[str] = None,
    rejection_reason: Optional[str] = None,
    now: Optional[datetime.datetime] = None,
) -> RequestStatusLog:
    """Validate and apply one transition to an already locked request.

    The caller owns the transaction; this function only flushes.
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    target_status = parse_status(target)
    ensure_transition(request.status, target_status)
    reason = (rejection_reason or "").strip()
    if target_status is RequestStatus.REJECTED and not reason:
        raise ValidationError("A rejection reason is required")

    setattr(request, MILESTONE_FIELDS[target_status], now)
    request.updated_at = now
    request.updated_by_user_id = actor_id

    if target_status is RequestStatus.REJECTED:
        _release_assignment(db, request, AssignmentResponse.REJECTED, reason, now)
        request.rejection_reason = reason
        notes = notes or f"Rejected: {reason}"
    else:
        if target_status is RequestStatus.CONFIRMED:
            assignment = _pending_assignment(db, request)
            if assignment is not None:
                assignment.response = AssignmentResponse.CONFIRMED.value
                assignment.responded_at = now
                db.add(assignment)
            else:
                logger.warning("No pending assignment for request_id=%s on confirmed", request.id)
        request.status = target_status.value
    if target_status is RequestStatus.CLOSED:
        request.closed_by_user_id = actor_id

    db.add(request)
    entry = _append_log(db, request, target_status.value, actor_id=actor_id, notes=notes, now=now)
    db.flush()
    logger.info(
        "Request transition request_id=%s number=%s to=%s stored=%s",
        request.id,
        request.request_number,
        target_status.value,
        request.status,
    )
    return entry


def append_status_note(
    db: Session,
    request: Request,
    *,
    actor_id: Optional[int],
    notes: str,
    now: Optional[datetime.datetime] = None,
) -> RequestStatusLog:
    """Record a timeline entry for the current status without changing it."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    label = parse_status(request.status).value
    entry = _append_log(db, request, label, actor_id=actor_id, notes=notes, now=now)
    db.flush()
    return entry


def append_annotation(
    db: Session,
    request: Request,
    label: str,
    *,
    actor_id: Optional[int],
    notes: str,
    now: Optional[datetime.datetime] = None,
) -> RequestStatusLog:
    """Record a non-transition event (e.g. a rating); the status is unchanged."""
    if label not in LOG_ANNOTATIONS:
        raise ValidationError(f"Unknown status log annotation: {label}")
    now = now or datetime.datetime.now(datetime.timezone.utc)
    entry = _append_log(db, request, label, actor_id=actor_id, notes=notes, now=now)
    db.flush()
    return entry


def apply_sla_timeout(
    db: Session,
    request: Request,
    *,
    timeout_minutes: int,
    actor_id: Optional[int] = None,
    now: Optional[datetime.datetime] = None,
) -> RequestStatusLog:
    """Return an assigned request to the pool after its SLA deadline lapsed.

    Takes the same `assigned -> rejected` edge as a partner rejection, but
    the assignment is closed as `timeout` and no rejection reason is kept on
    the request.
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    current = parse_status(request.status)
    if current is not RequestStatus.ASSIGNED:
        raise InvalidStatusTransition(current.value, RequestStatus.REJECTED.value)

    _release_assignment(
        db,
        request,
        AssignmentResponse.TIMEOUT,
        f"Auto-unassigned: No response within {timeout_minutes}-minute SLA",
        now,
    )
    request.rejected_at = now
    request.rejection_reason = None
    request.updated_at = now
    request.updated_by_user_id = actor_id
    db.add(request)
    entry = _append_log(
        db,
        request,
        RequestStatus.REJECTED.value,
        actor_id=actor_id,
        notes=f"SLA breach: no partner response within {timeout_minutes} minutes",
        now=now,
    )
    db.flush()
    return entry
