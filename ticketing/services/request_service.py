"""
Request lifecycle use cases.

Each command locks the request row, validates the change through the state
machine, commits, and only then hands a `RequestEvent` to the notification
fan-out. Any error before the commit rolls the whole unit of work back, so a
refused command leaves neither a changed request nor a status log entry.
"""

from __future__ import annotations

import datetime
import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.auth import UserContext
from ..core.errors import (
    AuthorizationError,
    BranchNotFound,
    InvalidStatusTransition,
    RequestAlreadyClosed,
    RequestNotFound,
    ValidationError,
)
from ..core.pagination import paginate
from ..models.branch import Branch
from ..models.partner import Category, Partner
from ..models.request import Request, RequestAssignment, RequestStatusLog
from ..models.user import User
from ..schemas.requests import RequestCreate
from .geo_matcher import BranchMatch, find_nearest_branch, validate_coordinate
from .notification_fanout import RequestEvent, notify_request_event
from .request_numbers import next_request_number
from .sla_policy import compute_deadline, resolve_timeout_minutes
from .state_machine import (
    ASSIGNABLE_STATUSES,
    RATED,
    RequestStatus,
    append_annotation,
    append_status_note,
    apply_transition,
    parse_status,
)


logger = logging.getLogger("request_service")

# Targets reachable through update_status; assignment and closure have their
# own commands.
STATUS_UPDATE_TARGETS = frozenset(
    {
        RequestStatus.CONFIRMED,
        RequestStatus.REJECTED,
        RequestStatus.IN_PROGRESS,
        RequestStatus.COMPLETED,
    }
)

CREATE_ATTEMPTS = 3


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _load_for_update(db: Session, request_id: int) -> Request:
    request = (
        db.query(Request)
        .filter(Request.id == request_id, Request.is_deleted.is_(False))
        .with_for_update()
        .populate_existing()
        .first()
    )
    if request is None:
        raise RequestNotFound(request_id)
    return request


def get_request(db: Session, request_id: int) -> Request:
    request = db.query(Request).filter(Request.id == request_id, Request.is_deleted.is_(False)).first()
    if request is None:
        raise RequestNotFound(request_id)
    return request


def get_request_by_number(db: Session, request_number: str, actor: Optional[UserContext] = None) -> Request:
    request = (
        db.query(Request)
        .filter(Request.request_number == request_number.strip().upper(), Request.is_deleted.is_(False))
        .first()
    )
    if request is None:
        raise RequestNotFound(request_number)
    if actor is not None and actor.user_type == "customer" and request.customer_id != actor.user_id:
        raise AuthorizationError("Request belongs to another customer")
    return request


def create_request(
    db: Session,
    payload: RequestCreate,
    customer_id: int,
    *,
    now: Optional[datetime.datetime] = None,
) -> Request:
    now = now or _utcnow()
    lat, lng = validate_coordinate(payload.customer_lat, payload.customer_lng)
    category = db.get(Category, payload.category_id)
    if category is None or category.is_deleted or not category.is_active:
        raise ValidationError(f"Unknown category: {payload.category_id}")

    for attempt in range(1, CREATE_ATTEMPTS + 1):
        try:
            request_number = next_request_number(db, now)
            request = Request(
                request_number=request_number,
                customer_id=customer_id,
                customer_name=payload.customer_name,
                customer_phone=payload.customer_phone,
                customer_address=payload.customer_address,
                customer_lat=lat,
                customer_lng=lng,
                category_id=payload.category_id,
                service_id=payload.service_id,
                pickup_option_id=payload.pickup_option_id,
                status=RequestStatus.SUBMITTED.value,
                submitted_at=now,
                created_at=now,
                updated_at=now,
                updated_by_user_id=customer_id,
            )
            db.add(request)
            db.flush()
            entry = append_status_note(db, request, actor_id=customer_id, notes="Request submitted", now=now)
            log_id = entry.id
            request_id = request.id
            db.commit()
            break
        except IntegrityError as exc:
            db.rollback()
            if attempt == CREATE_ATTEMPTS:
                raise
            logger.warning("Request number conflict; retrying attempt=%s err=%s", attempt, exc)
        except Exception:
            db.rollback()
            raise

    logger.info("Request created id=%s number=%s customer_id=%s", request_id, request_number, customer_id)
    notify_request_event(
        db,
        RequestEvent(event="submitted", request_id=request_id, status_log_id=log_id, actor_id=customer_id),
    )
    return get_request(db, request_id)


def assign_request(
    db: Session,
    request_id: int,
    partner_id: int,
    branch_id: int,
    actor_id: Optional[int],
    *,
    now: Optional[datetime.datetime] = None,
) -> Request:
    now = now or _utcnow()
    try:
        request = _load_for_update(db, request_id)
        current = parse_status(request.status)
        if current is RequestStatus.CLOSED:
            raise RequestAlreadyClosed("Request is closed and can no longer change")
        if current not in ASSIGNABLE_STATUSES:
            raise InvalidStatusTransition(
                current.value,
                RequestStatus.ASSIGNED.value,
                f"Request can only be assigned while submitted or unassigned (current: {current.value})",
            )
        branch = (
            db.query(Branch)
            .filter(
                Branch.id == branch_id,
                Branch.partner_id == partner_id,
                Branch.is_active.is_(True),
                Branch.is_deleted.is_(False),
            )
            .first()
        )
        if branch is None:
            raise BranchNotFound(f"Branch {branch_id} not found for partner {partner_id}")
        partner = db.get(Partner, partner_id)
        partner_name = partner.name if partner else str(partner_id)

        timeout_minutes = resolve_timeout_minutes(db, partner_id)
        request.partner_id = partner_id
        request.branch_id = branch_id
        request.assigned_by_user_id = actor_id
        request.sla_deadline = compute_deadline(now, timeout_minutes)
        request.rejection_reason = None
        db.add(
            RequestAssignment(
                request_id=request.id,
                partner_id=partner_id,
                branch_id=branch_id,
                assigned_by_user_id=actor_id,
                assigned_at=now,
                response="pending",
            )
        )
        entry = apply_transition(
            db,
            request,
            RequestStatus.ASSIGNED,
            actor_id=actor_id,
            notes=f"Assigned to {partner_name} - {branch.name}",
            now=now,
        )
        log_id = entry.id
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Request assigned id=%s partner_id=%s branch_id=%s sla_minutes=%s",
        request_id,
        partner_id,
        branch_id,
        timeout_minutes,
    )
    notify_request_event(
        db,
        RequestEvent(
            event="assigned",
            request_id=request_id,
            status_log_id=log_id,
            actor_id=actor_id,
            partner_id=partner_id,
            branch_id=branch_id,
        ),
    )
    return get_request(db, request_id)


def update_status(
    db: Session,
    request_id: int,
    target: str | RequestStatus,
    actor_id: Optional[int],
    *,
    notes: Optional[str] = None,
    rejection_reason: Optional[str] = None,
    now: Optional[datetime.datetime] = None,
) -> Request:
    now = now or _utcnow()
    target_status = parse_status(target)
    if target_status not in STATUS_UPDATE_TARGETS:
        raise ValidationError(f"Status {target_status.value} cannot be set directly; use the dedicated operation")
    try:
        request = _load_for_update(db, request_id)
        partner_id = request.partner_id
        branch_id = request.branch_id
        entry = apply_transition(
            db,
            request,
            target_status,
            actor_id=actor_id,
            notes=notes,
            rejection_reason=rejection_reason,
            now=now,
        )
        log_id = entry.id
        db.commit()
    except Exception:
        db.rollback()
        raise

    notify_request_event(
        db,
        RequestEvent(
            event=target_status.value,
            request_id=request_id,
            status_log_id=log_id,
            actor_id=actor_id,
            partner_id=partner_id,
            branch_id=branch_id,
            reason=rejection_reason,
            notes=notes,
        ),
    )
    return get_request(db, request_id)


def confirm_request(db: Session, request_id: int, actor_id: Optional[int], **kwargs) -> Request:
    return update_status(db, request_id, RequestStatus.CONFIRMED, actor_id, **kwargs)


def reject_request(db: Session, request_id: int, actor_id: Optional[int], reason: str, **kwargs) -> Request:
    return update_status(db, request_id, RequestStatus.REJECTED, actor_id, rejection_reason=reason, **kwargs)


def close_request(
    db: Session,
    request_id: int,
    actor_id: Optional[int],
    *,
    now: Optional[datetime.datetime] = None,
) -> Request:
    now = now or _utcnow()
    try:
        request = _load_for_update(db, request_id)
        partner_id = request.partner_id
        branch_id = request.branch_id
        entry = apply_transition(
            db,
            request,
            RequestStatus.CLOSED,
            actor_id=actor_id,
            notes="Request closed after customer verification",
            now=now,
        )
        log_id = entry.id
        db.commit()
    except Exception:
        db.rollback()
        raise

    notify_request_event(
        db,
        RequestEvent(
            event="closed",
            request_id=request_id,
            status_log_id=log_id,
            actor_id=actor_id,
            partner_id=partner_id,
            branch_id=branch_id,
        ),
    )
    return get_request(db, request_id)


def rate_request(
    db: Session,
    request_id: int,
    rating: int,
    feedback: Optional[str],
    customer_id: Optional[int],
    *,
    now: Optional[datetime.datetime] = None,
) -> Request:
    now = now or _utcnow()
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be an integer between 1 and 5")
    try:
        request = _load_for_update(db, request_id)
        if request.customer_id != customer_id:
            raise AuthorizationError("Only the requesting customer can rate this request")
        current = parse_status(request.status)
        if current is not RequestStatus.COMPLETED:
            raise InvalidStatusTransition(
                current.value,
                RequestStatus.COMPLETED.value,
                f"Only completed requests can be rated (current: {current.value})",
            )
        if request.rating is not None:
            raise InvalidStatusTransition(current.value, current.value, "Request has already been rated")
        request.rating = rating
        request.feedback = (feedback or "").strip() or None
        request.rated_at = now
        request.updated_at = now
        request.updated_by_user_id = customer_id
        db.add(request)
        append_annotation(db, request, RATED, actor_id=customer_id, notes=f"Rated {rating} stars", now=now)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Request rated id=%s rating=%s", request_id, rating)
    return get_request(db, request_id)


def suggest_branch(db: Session, request_id: int) -> Optional[BranchMatch]:
    request = get_request(db, request_id)
    return find_nearest_branch(
        db,
        request.customer_lat,
        request.customer_lng,
        category_id=request.category_id,
    )


def soft_delete_request(db: Session, request_id: int, actor_id: Optional[int]) -> Request:
    try:
        request = _load_for_update(db, request_id)
        request.is_deleted = True
        request.updated_at = _utcnow()
        request.updated_by_user_id = actor_id
        db.add(request)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Request soft-deleted id=%s by=%s", request_id, actor_id)
    return request


def list_requests(
    db: Session,
    *,
    status: Optional[str] = None,
    partner_id: Optional[int] = None,
    branch_id: Optional[int] = None,
    customer_id: Optional[int] = None,
    category_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Request], int]:
    query = db.query(Request).filter(Request.is_deleted.is_(False))
    if status:
        query = query.filter(Request.status == parse_status(status).value)
    if partner_id is not None:
        query = query.filter(Request.partner_id == partner_id)
    if branch_id is not None:
        query = query.filter(Request.branch_id == branch_id)
    if customer_id is not None:
        query = query.filter(Request.customer_id == customer_id)
    if category_id is not None:
        query = query.filter(Request.category_id == category_id)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Request.request_number.ilike(term),
                Request.customer_name.ilike(term),
                Request.customer_phone.ilike(term),
            )
        )
    query = query.order_by(Request.created_at.desc(), Request.id.desc())
    return paginate(query, page=page, page_size=page_size)


def list_unassigned_requests(db: Session) -> list[Request]:
    return (
        db.query(Request)
        .filter(
            Request.is_deleted.is_(False),
            Request.status.in_([status.value for status in ASSIGNABLE_STATUSES]),
        )
        .order_by(Request.created_at.asc(), Request.id.asc())
        .all()
    )


def get_request_timeline(db: Session, request_id: int) -> list[dict]:
    get_request(db, request_id)
    rows = (
        db.query(RequestStatusLog, User.name)
        .outerjoin(User, User.id == RequestStatusLog.changed_by_user_id)
        .filter(RequestStatusLog.request_id == request_id)
        .order_by(RequestStatusLog.timestamp.asc(), RequestStatusLog.id.asc())
        .all()
    )
    return [
        {
            "id": entry.id,
            "status": entry.status,
            "notes": entry.notes,
            "timestamp": entry.timestamp,
            "changed_by_user_id": entry.changed_by_user_id,
            "changed_by_name": name,
        }
        for entry, name in rows
    ]


def list_assignments(db: Session, request_id: int) -> list[RequestAssignment]:
    return (
        db.query(RequestAssignment)
        .filter(RequestAssignment.request_id == request_id)
        .order_by(RequestAssignment.assigned_at.asc(), RequestAssignment.id.asc())
        .all()
    )
