"""
Notification fan-out for request lifecycle events.

Every committed transition produces a `RequestEvent`. The fan-out resolves
the audiences for that event (customer, admins, branch users), writes one
in-app Notification per recipient and queues emails in the outbox for the
events customers get mail for. It always runs after the transition has been
committed; `notify_request_event` swallows and logs any failure so the
caller's state change is never affected.
"""

from __future__ import annotations

import datetime
import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..core.errors import log_exception
from ..models.branch import Branch, BranchUser
from ..models.notification import Notification
from ..models.partner import Partner
from ..models.request import Request
from ..models.user import User
from .configuration import get_sla_notification_recipients
from .notification_outbox import (
    EmailContent,
    build_sla_timeout_email,
    build_status_update_email,
    build_submitted_email,
    enqueue_email,
)


logger = logging.getLogger("notification_fanout")


class NotificationType(str, enum.Enum):
    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_ASSIGNED = "request_assigned"
    REQUEST_CONFIRMED = "request_confirmed"
    REQUEST_REJECTED = "request_rejected"
    REQUEST_IN_PROGRESS = "request_in_progress"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_CLOSED = "request_closed"
    PARTNER_TIMEOUT = "partner_timeout"
    SLA_REMINDER = "sla_reminder"
    GENERAL = "general"


class Audience(str, enum.Enum):
    CUSTOMER = "customer"
    ADMINS = "admins"
    BRANCH_USERS = "branch_users"


# Lifecycle events that also email their recipients.
EMAIL_EVENTS = frozenset({"submitted", "in_progress", "completed"})


@dataclass
class RequestEvent:
    """A committed lifecycle change, captured before fields were cleared."""

    event: str  # submitted | assigned | confirmed | rejected | in_progress | completed | closed | sla_timeout
    request_id: int
    status_log_id: Optional[int] = None
    actor_id: Optional[int] = None
    partner_id: Optional[int] = None
    branch_id: Optional[int] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    timeout_minutes: Optional[int] = None
    assigned_at: Optional[datetime.datetime] = None
    sla_deadline: Optional[datetime.datetime] = None


@dataclass
class Message:
    type: NotificationType
    title: str
    body: str


def resolve_recipients(
    db: Session,
    audience: Audience,
    request: Request,
    *,
    branch_id: Optional[int] = None,
) -> list[User]:
    if audience is Audience.CUSTOMER:
        customer = db.get(User, request.customer_id)
        return [customer] if customer is not None else []
    if audience is Audience.ADMINS:
        return (
            db.query(User)
            .filter(
                User.user_type == "admin",
                User.is_active.is_(True),
                User.is_deleted.is_(False),
            )
            .order_by(User.id.asc())
            .all()
        )
    if audience is Audience.BRANCH_USERS:
        target_branch = branch_id if branch_id is not None else request.branch_id
        if target_branch is None:
            return []
        return (
            db.query(User)
            .join(BranchUser, BranchUser.user_id == User.id)
            .filter(
                BranchUser.branch_id == target_branch,
                BranchUser.is_active.is_(True),
                BranchUser.is_deleted.is_(False),
                User.is_active.is_(True),
                User.is_deleted.is_(False),
            )
            .order_by(User.id.asc())
            .all()
        )
    raise ValueError(f"Unsupported audience: {audience}")


def _partner_name(db: Session, partner_id: Optional[int]) -> str:
    if partner_id is None:
        return "Unknown Partner"
    partner = db.get(Partner, partner_id)
    return partner.name if partner else "Unknown Partner"


def _branch_name(db: Session, branch_id: Optional[int]) -> Optional[str]:
    if branch_id is None:
        return None
    branch = db.get(Branch, branch_id)
    return branch.name if branch else None


def _messages_for(db: Session, event: RequestEvent, request: Request) -> dict[Audience, Message]:
    number = request.request_number
    partner = _partner_name(db, event.partner_id)
    kind = event.event
    if kind == "submitted":
        return {
            Audience.ADMINS: Message(
                NotificationType.REQUEST_SUBMITTED,
                "New Request Submitted",
                f"Request {number} from {request.customer_name} is waiting for assignment.",
            ),
        }
    if kind == "assigned":
        return {
            Audience.CUSTOMER: Message(
                NotificationType.REQUEST_ASSIGNED,
                "Request Assigned",
                f"Your request has been assigned to {partner}.",
            ),
            Audience.BRANCH_USERS: Message(
                NotificationType.REQUEST_ASSIGNED,
                "New Request Assigned",
                f"New request assigned to your branch: {number}.",
            ),
        }
    if kind == "confirmed":
        return {
            Audience.CUSTOMER: Message(
                NotificationType.REQUEST_CONFIRMED,
                "Request Confirmed",
                f"{partner} has confirmed your request {number}.",
            ),
            Audience.ADMINS: Message(
                NotificationType.REQUEST_CONFIRMED,
                "Request Confirmed",
                f"Request {number} was confirmed by {partner}.",
            ),
        }
    if kind == "rejected":
        reason = f" Reason: {event.reason}" if event.reason else ""
        return {
            Audience.CUSTOMER: Message(
                NotificationType.REQUEST_REJECTED,
                "Request Update",
                f"The partner could not take request {number}. We will find an alternative partner.",
            ),
            Audience.ADMINS: Message(
                NotificationType.REQUEST_REJECTED,
                "Request Rejected",
                f"Request {number} was rejected by {partner} and needs reassignment.{reason}",
            ),
        }
    if kind == "in_progress":
        return {
            Audience.CUSTOMER: Message(
                NotificationType.REQUEST_IN_PROGRESS,
                "Service In Progress",
                f"Work on your request {number} has started.",
            ),
        }
    if kind == "completed":
        return {
            Audience.CUSTOMER: Message(
                NotificationType.REQUEST_COMPLETED,
                "Request Completed",
                f"Your request {number} has been completed. Please rate your experience.",
            ),
            Audience.ADMINS: Message(
                NotificationType.REQUEST_COMPLETED,
                "Request Completed",
                f"Request {number} was completed by {partner}.",
            ),
        }
    if kind == "closed":
        return {
            Audience.CUSTOMER: Message(
                NotificationType.REQUEST_CLOSED,
                "Request Closed",
                f"Your request {number} has been closed. Thank you.",
            ),
            Audience.BRANCH_USERS: Message(
                NotificationType.REQUEST_CLOSED,
                "Request Closed",
                f"Request {number} has been closed after customer verification.",
            ),
        }
    if kind == "sla_timeout":
        return {
            Audience.ADMINS: Message(
                NotificationType.PARTNER_TIMEOUT,
                "Partner Response Timeout",
                (
                    f"Request {number} was not answered by {partner} within "
                    f"{event.timeout_minutes} minutes and is back in the queue."
                ),
            ),
        }
    raise ValueError(f"Unsupported request event: {kind}")


def _email_content(db: Session, event: RequestEvent, request: Request) -> Optional[EmailContent]:
    if event.event == "submitted":
        return build_submitted_email(request)
    if event.event in ("in_progress", "completed"):
        return build_status_update_email(
            request,
            event.event,
            branch_name=_branch_name(db, event.branch_id),
            notes=event.notes,
        )
    if event.event == "sla_timeout":
        return build_sla_timeout_email(
            request,
            partner_name=_partner_name(db, event.partner_id),
            timeout_minutes=event.timeout_minutes or 0,
            assigned_at=event.assigned_at,
            sla_deadline=event.sla_deadline,
        )
    return None


def _email_targets(db: Session, event: RequestEvent, recipients: Iterable[User]) -> list[str]:
    targets: list[str] = []
    if event.event in EMAIL_EVENTS:
        targets.extend(user.email for user in recipients if user.email)
    if event.event in ("submitted", "sla_timeout"):
        targets.extend(get_sla_notification_recipients(db))
    return targets


def fan_out(db: Session, event: RequestEvent) -> int:
    """Write notifications and queue emails for one event; returns rows written."""
    request = db.get(Request, event.request_id)
    if request is None:
        logger.warning("Fan-out skipped; request_id=%s not found", event.request_id)
        return 0

    written = 0
    notified: set[int] = set()
    recipients_all: list[User] = []
    for audience, message in _messages_for(db, event, request).items():
        for user in resolve_recipients(db, audience, request, branch_id=event.branch_id):
            if user.id in notified:
                continue
            notified.add(user.id)
            recipients_all.append(user)
            db.add(
                Notification(
                    user_id=user.id,
                    type=message.type.value,
                    title=message.title,
                    body=message.body,
                    request_id=request.id,
                )
            )
            written += 1

    queued = 0
    content = _email_content(db, event, request)
    if content is not None:
        for target in _email_targets(db, event, recipients_all):
            if enqueue_email(
                db,
                request_id=request.id,
                status_log_id=event.status_log_id,
                event=event.event,
                target=target,
                content=content,
            ):
                queued += 1

    db.commit()
    logger.info(
        "Fan-out done request_id=%s event=%s notifications=%s emails=%s",
        request.id,
        event.event,
        written,
        queued,
    )
    return written


def notify_request_event(db: Session, event: RequestEvent) -> int:
    """Best-effort fan-out; never raises."""
    try:
        return fan_out(db, event)
    except Exception as exc:
        try:
            db.rollback()
        except Exception as rollback_exc:
            logger.warning("Rollback after fan-out failure failed: %s", rollback_exc)
        log_exception(
            logger,
            "Notification fan-out failed",
            extra={"request_id": event.request_id, "event": event.event},
            exc=exc,
        )
        return 0


def list_notifications(
    db: Session,
    user_id: int,
    *,
    unread_only: bool = False,
):
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc())


def mark_notification_read(db: Session, notification_id: int, user_id: int) -> Optional[Notification]:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if notification is None:
        return None
    if not notification.read:
        notification.read = True
        notification.read_at = datetime.datetime.now(datetime.timezone.utc)
        db.add(notification)
        db.commit()
        db.refresh(notification)
    return notification
