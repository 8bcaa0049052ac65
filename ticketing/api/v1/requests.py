"""
API endpoints for service requests: intake, assignment, partner responses,
closure, rating and the status timeline.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from ...core.auth import UserContext, get_current_user, require_user_types
from ...core.db import get_db
from ...core.errors import AuthorizationError
from ...core.pagination import clamp_page_size, set_pagination_headers
from ...models.request import Request
from ...schemas.requests import (
    AssignIn,
    AssignmentOut,
    BranchMatchOut,
    RateIn,
    RequestCreate,
    RequestOut,
    StatusUpdateIn,
    TimelineEntryOut,
)
from ...services import request_service


router = APIRouter(prefix="/api/v1/requests", tags=["requests"])


def _require_user_id(user: UserContext) -> int:
    if user.user_id is None:
        raise HTTPException(status_code=401, detail="User id is required")
    return user.user_id


def _ensure_can_view(request: Request, user: UserContext) -> None:
    if user.is_staff:
        return
    if user.user_type == "customer" and request.customer_id == user.user_id:
        return
    if user.user_type == "partner" and user.partner_id is not None and request.partner_id == user.partner_id:
        return
    raise AuthorizationError("Not allowed to access this request")


@router.post("", response_model=RequestOut, status_code=201)
def create_request(
    payload: RequestCreate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_user_types("customer", "admin", "operation")),
) -> Request:
    return request_service.create_request(db, payload, _require_user_id(user))


@router.get("", response_model=list[RequestOut])
def list_requests(
    response: Response,
    status: Optional[str] = Query(None),
    partner_id: Optional[int] = Query(None),
    branch_id: Optional[int] = Query(None),
    category_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> list[Request]:
    page_size = clamp_page_size(page_size)
    customer_id = None
    if user.user_type == "customer":
        customer_id = _require_user_id(user)
    elif user.user_type == "partner":
        if user.partner_id is None:
            raise AuthorizationError("Partner user has no partner")
        partner_id = user.partner_id
    rows, total = request_service.list_requests(
        db,
        status=status,
        partner_id=partner_id,
        branch_id=branch_id,
        customer_id=customer_id,
        category_id=category_id,
        search=search,
        page=page,
        page_size=page_size,
    )
    set_pagination_headers(response, total=total, page=page, page_size=page_size)
    return rows


@router.get("/unassigned", response_model=list[RequestOut])
def list_unassigned(
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_user_types("admin", "operation")),
) -> list[Request]:
    return request_service.list_unassigned_requests(db)


@router.get("/by-number/{request_number}", response_model=RequestOut)
def get_by_number(
    request_number: str,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> Request:
    request = request_service.get_request_by_number(db, request_number, actor=user)
    _ensure_can_view(request, user)
    return request


@router.get("/{request_id}", response_model=RequestOut)
def get_request(
    request_id: int,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> Request:
    request = request_service.get_request(db, request_id)
    _ensure_can_view(request, user)
    return request


@router.get("/{request_id}/timeline", response_model=list[TimelineEntryOut])
def get_timeline(
    request_id: int,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> list[dict]:
    _ensure_can_view(request_service.get_request(db, request_id), user)
    return request_service.get_request_timeline(db, request_id)


@router.get("/{request_id}/assignments", response_model=list[AssignmentOut])
def get_assignments(
    request_id: int,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_user_types("admin", "operation")),
) -> list:
    request_service.get_request(db, request_id)
    return request_service.list_assignments(db, request_id)


@router.get("/{request_id}/suggested-branch", response_model=Optional[BranchMatchOut])
def suggested_branch(
    request_id: int,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_user_types("admin", "operation")),
) -> Optional[dict]:
    match = request_service.suggest_branch(db, request_id)
    if match is None:
        return None
    return {
        "branch_id": match.branch.id,
        "partner_id": match.branch.partner_id,
        "branch_name": match.branch.name,
        "distance_km": round(match.distance_km, 3),
        "radius_km": match.branch.radius_km,
    }


@router.post("/{request_id}/assign", response_model=RequestOut)
def assign(
    request_id: int,
    payload: AssignIn,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_user_types("admin", "operation")),
) -> Request:
    return request_service.assign_request(db, request_id, payload.partner_id, payload.branch_id, user.user_id)


@router.post("/{request_id}/status", response_model=RequestOut)
def update_status(
    request_id: int,
    payload: StatusUpdateIn,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_user_types("partner", "admin", "operation")),
) -> Request:
    if user.user_type == "partner":
        request = request_service.get_request(db, request_id)
        if user.partner_id is None or request.partner_id != user.partner_id:
            raise AuthorizationError("Request is not assigned to your partner")
    return request_service.update_status(
        db,
        request_id,
        payload.status,
        user.user_id,
        notes=payload.notes,
        rejection_reason=payload.rejection_reason,
    )


@router.post("/{request_id}/close", response_model=RequestOut)
def close(
    request_id: int,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_user_types("customer", "admin", "operation")),
) -> Request:
    if user.user_type == "customer":
        request = request_service.get_request(db, request_id)
        if request.customer_id != user.user_id:
            raise AuthorizationError("Only the requesting customer can close this request")
    return request_service.close_request(db, request_id, user.user_id)


@router.post("/{request_id}/rate", response_model=RequestOut)
def rate(
    request_id: int,
    payload: RateIn,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_user_types("customer")),
) -> Request:
    return request_service.rate_request(db, request_id, payload.rating, payload.feedback, _require_user_id(user))


@router.delete("/{request_id}", status_code=204)
def delete_request(
    request_id: int,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_user_types("admin")),
) -> Response:
    request_service.soft_delete_request(db, request_id, user.user_id)
    return Response(status_code=204)
