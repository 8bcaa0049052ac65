"""
Day-scoped request numbers: REQ-YYYYMMDD-NNNN.

Each calendar day (in REQUEST_NUMBER_TIMEZONE, UTC by default) has one
`request_counters` row. Incrementing it with a single
UPDATE holds the row lock until the creating transaction commits, so
concurrent submissions on the same day are serialized and never reuse a
number. The first submission of a day inserts the row; losing that insert
race surfaces as a unique conflict and the increment is retried.
"""

from __future__ import annotations

import datetime
import logging
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.request import RequestCounter


logger = logging.getLogger("request_numbers")

MAX_ATTEMPTS = 5


def numbering_zone(name: Optional[str] = None) -> datetime.tzinfo:
    name = (name or settings.request_number_timezone or "UTC").strip()
    if name.upper() == "UTC":
        return datetime.timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown REQUEST_NUMBER_TIMEZONE=%s; numbering by UTC day", name)
        return datetime.timezone.utc


def day_key(now: datetime.datetime, zone: Optional[datetime.tzinfo] = None) -> str:
    # Naive timestamps are UTC throughout the service.
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    return now.astimezone(zone or numbering_zone()).strftime("%Y%m%d")


def format_request_number(day: str, sequence: int) -> str:
    return f"REQ-{day}-{sequence:04d}"


def next_request_number(db: Session, now: datetime.datetime) -> str:
    """Reserve the next number for `now`'s day inside the caller's transaction.

    Must run before anything else is added to the session: a lost insert
    race rolls the session back before retrying.
    """
    day = day_key(now)
    for attempt in range(1, MAX_ATTEMPTS + 1):
        result = db.execute(
            update(RequestCounter)
            .where(RequestCounter.day == day)
            .values(value=RequestCounter.value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            value = db.execute(select(RequestCounter.value).where(RequestCounter.day == day)).scalar_one()
            return format_request_number(day, value)
        try:
            db.add(RequestCounter(day=day, value=1))
            db.flush()
            return format_request_number(day, 1)
        except IntegrityError:
            db.rollback()
            logger.info("Request counter for %s created concurrently; retrying (attempt=%s)", day, attempt)
    raise RuntimeError(f"Could not allocate request number for {day}")
