"""
Notification outbox helpers and request email templating.
"""

from __future__ import annotations

import datetime
import logging
import os
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..models.notification_outbox import NotificationOutbox
from ..models.request import Request


logger = logging.getLogger("notification_outbox")

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://127.0.0.1:8000").rstrip("/")

STATUS_LABELS = {
    "in_progress": "In Progress",
    "completed": "Completed",
}


@dataclass
class EmailContent:
    subject: str
    body: str


def _format_ts(ts: datetime.datetime | None) -> str:
    if not ts:
        return "-"
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=datetime.timezone.utc)
    return ts.astimezone(datetime.timezone.utc).strftime("%d %b %Y %H:%M UTC")


def _request_url(request: Request) -> str:
    return f"{PUBLIC_BASE_URL}/requests/{request.request_number}"


def build_submitted_email(request: Request) -> EmailContent:
    body = "\n".join(
        [
            "A new service request has been submitted.",
            "",
            f"Request Number: {request.request_number}",
            f"Customer: {request.customer_name} ({request.customer_phone})",
            f"Address: {request.customer_address}",
            f"Submitted: {_format_ts(request.submitted_at)}",
            "",
            f"Assign a partner: {_request_url(request)}",
        ]
    )
    return EmailContent(subject=f"New Service Request - {request.request_number}", body=body)


def build_status_update_email(
    request: Request,
    status: str,
    *,
    branch_name: Optional[str] = None,
    notes: Optional[str] = None,
) -> EmailContent:
    label = STATUS_LABELS.get(status, status)
    lines = [
        "Your service request status has been updated.",
        "",
        f"Request Number: {request.request_number}",
        f"New Status: {label}",
    ]
    if branch_name:
        lines.append(f"Branch: {branch_name}")
    lines.append("")
    lines.append(f"Notes: {notes}" if notes else "Log in to view full request details.")
    return EmailContent(subject=f"Request Status Update - {request.request_number}", body="\n".join(lines))


def build_sla_timeout_email(
    request: Request,
    *,
    partner_name: str,
    timeout_minutes: int,
    assigned_at: datetime.datetime | None,
    sla_deadline: datetime.datetime | None,
) -> EmailContent:
    body = "\n".join(
        [
            "A partner did not respond to an assignment in time. The request is back in the queue.",
            "",
            f"Request Number: {request.request_number}",
            f"Partner: {partner_name}",
            f"Assigned At: {_format_ts(assigned_at)}",
            f"SLA Deadline: {_format_ts(sla_deadline)} ({timeout_minutes} minutes)",
            "",
            f"Reassign: {_request_url(request)}",
        ]
    )
    return EmailContent(subject=f"SLA Timeout Alert - Request {request.request_number}", body=body)


def _normalize_target(target: str) -> str:
    return (target or "").strip().lower()


def enqueue_email(
    db: Session,
    *,
    request_id: Optional[int],
    status_log_id: Optional[int],
    event: str,
    target: str,
    content: EmailContent,
) -> bool:
    """Queue one email; returns False for empty or already queued targets.

    The caller commits.
    """
    normalized = _normalize_target(target)
    if not normalized:
        return False
    if status_log_id is not None:
        exists = (
            db.query(NotificationOutbox.id)
            .filter(
                NotificationOutbox.status_log_id == status_log_id,
                NotificationOutbox.channel == "EMAIL",
                NotificationOutbox.target == normalized,
            )
            .first()
        )
        if exists:
            return False
    db.add(
        NotificationOutbox(
            request_id=request_id,
            status_log_id=status_log_id,
            event=event,
            channel="EMAIL",
            target=normalized,
            subject=content.subject,
            message=content.body,
            status="PENDING",
            attempts=0,
        )
    )
    db.flush()
    return True
