"""
In-app notification and email delivery endpoints.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from ...core.auth import UserContext, get_current_user, require_user_types
from ...core.db import get_db
from ...core.pagination import clamp_page_size, paginate, set_pagination_headers
from ...schemas.notifications import NotificationDeliveryOut, NotificationOut
from ...services.notification_fanout import list_notifications, mark_notification_read
from ...services.notification_worker import list_deliveries


router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


def _user_id(user: UserContext) -> int:
    if user.user_id is None:
        raise HTTPException(status_code=401, detail="User id is required")
    return user.user_id


@router.get("", response_model=list[NotificationOut])
def my_notifications(
    response: Response,
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> list:
    page_size = clamp_page_size(page_size)
    rows, total = paginate(
        list_notifications(db, _user_id(user), unread_only=unread_only),
        page=page,
        page_size=page_size,
    )
    set_pagination_headers(response, total=total, page=page, page_size=page_size)
    return rows


@router.post("/{notification_id}/read", response_model=NotificationOut)
def read_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
):
    notification = mark_notification_read(db, notification_id, _user_id(user))
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification


@router.get("/deliveries", response_model=list[NotificationDeliveryOut])
def deliveries(
    response: Response,
    request_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1),
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_user_types("admin", "operation")),
) -> list:
    page_size = clamp_page_size(page_size)
    rows, total = paginate(
        list_deliveries(db, request_id=request_id, status=status),
        page=page,
        page_size=page_size,
    )
    set_pagination_headers(response, total=total, page=page, page_size=page_size)
    return rows
