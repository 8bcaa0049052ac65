"""
SLA monitor that returns assigned requests to the queue when the partner
does not respond before the SLA deadline.
"""

from __future__ import annotations

import datetime
import logging
import os
import threading
from typing import Optional

from sqlalchemy.orm import Session

from ..core.db import SessionLocal
from ..core.errors import log_exception
from ..models.request import Request
from .notification_fanout import RequestEvent, notify_request_event
from .sla_policy import resolve_timeout_minutes
from .state_machine import RequestStatus, apply_sla_timeout


logger = logging.getLogger("SlaMonitor")

SYSTEM_USER_ID = os.getenv("SYSTEM_USER_ID")


def _ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


def _system_actor_id() -> Optional[int]:
    if not SYSTEM_USER_ID:
        return None
    try:
        return int(SYSTEM_USER_ID)
    except ValueError:
        logger.warning("Ignoring non-numeric SYSTEM_USER_ID=%s", SYSTEM_USER_ID)
        return None


def _expired_request_ids(db: Session, now: datetime.datetime) -> list[int]:
    rows = (
        db.query(Request.id)
        .filter(
            Request.status == RequestStatus.ASSIGNED.value,
            Request.is_deleted.is_(False),
            Request.sla_deadline.isnot(None),
            Request.sla_deadline < now,
        )
        .order_by(Request.sla_deadline.asc())
        .all()
    )
    return [row[0] for row in rows]


def _revert_one(db: Session, request_id: int, now: datetime.datetime) -> Optional[RequestEvent]:
    request = (
        db.query(Request)
        .filter(Request.id == request_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    # Partner may have answered between the scan and the lock.
    if (
        request is None
        or request.status != RequestStatus.ASSIGNED.value
        or request.sla_deadline is None
        or _ensure_utc(request.sla_deadline) >= now
    ):
        db.rollback()
        return None
    partner_id = request.partner_id
    branch_id = request.branch_id
    assigned_at = request.assigned_at
    sla_deadline = request.sla_deadline
    timeout_minutes = resolve_timeout_minutes(db, partner_id)
    entry = apply_sla_timeout(
        db,
        request,
        timeout_minutes=timeout_minutes,
        actor_id=_system_actor_id(),
        now=now,
    )
    event = RequestEvent(
        event="sla_timeout",
        request_id=request.id,
        status_log_id=entry.id,
        partner_id=partner_id,
        branch_id=branch_id,
        timeout_minutes=timeout_minutes,
        assigned_at=assigned_at,
        sla_deadline=sla_deadline,
    )
    db.commit()
    logger.info(
        "SLA breach: request_id=%s number=%s partner_id=%s returned to queue",
        request.id,
        request.request_number,
        partner_id,
    )
    return event


def sweep_expired_assignments(db: Session, *, now: Optional[datetime.datetime] = None) -> int:
    """Revert every assigned request past its deadline; returns the count.

    Each request is its own transaction: a failure is rolled back, logged
    and skipped.
    """
    now = _ensure_utc(now or datetime.datetime.now(datetime.timezone.utc))
    request_ids = _expired_request_ids(db, now)
    if not request_ids:
        logger.debug("No expired SLA assignments")
        return 0
    logger.info("Found %s expired SLA assignments", len(request_ids))
    reverted = 0
    for request_id in request_ids:
        try:
            event = _revert_one(db, request_id, now)
        except Exception as exc:
            db.rollback()
            log_exception(logger, "SLA revert failed", extra={"request_id": request_id}, exc=exc)
            continue
        if event is None:
            continue
        reverted += 1
        notify_request_event(db, event)
    return reverted


def run_sla_monitor(stop_event: threading.Event) -> None:
    interval_sec = int(os.getenv("SLA_MONITOR_INTERVAL_SEC", "60"))
    interval_sec = max(10, interval_sec)
    logger.info("SLA monitor started (interval=%ss)", interval_sec)
    while not stop_event.is_set():
        try:
            with SessionLocal() as db:
                sweep_expired_assignments(db)
        except Exception as exc:
            logger.exception("SLA monitor cycle failed: %s", exc)
        stop_event.wait(interval_sec)
    logger.info("SLA monitor stopped")
