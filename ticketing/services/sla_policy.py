"""
SLA policy: how long a partner has to answer an assignment.

Resolution order for the timeout (minutes):
    1. partner-scoped `sla_timeout_minutes`, when numeric and > 0
    2. global `sla_timeout_minutes`, when numeric and within [1, 60]
    3. DEFAULT_SLA_TIMEOUT_MINUTES (settings override when positive)

Lookups never raise; a failing tier is logged and the next one is tried.
Each tier reads inside a savepoint: callers hold the request row lock, and
on PostgreSQL a failed statement would otherwise poison their transaction.
"""

from __future__ import annotations

import datetime
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import guarded_call
from .configuration import SLA_TIMEOUT_MINUTES, get_config_value


logger = logging.getLogger("sla_policy")

DEFAULT_SLA_TIMEOUT_MINUTES = 15
GLOBAL_MIN_MINUTES = 1
GLOBAL_MAX_MINUTES = 60


def _parse_minutes(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        value = float(str(raw).strip())
    except ValueError:
        return None
    if value != value or not value.is_integer():
        return None
    return int(value)


def _partner_minutes(db: Session, partner_id: Optional[int]) -> Optional[int]:
    if partner_id is None:
        return None
    minutes = _parse_minutes(get_config_value(db, SLA_TIMEOUT_MINUTES, scope="partner", partner_id=partner_id))
    if minutes is not None and minutes > 0:
        return minutes
    return None


def _global_minutes(db: Session) -> Optional[int]:
    minutes = _parse_minutes(get_config_value(db, SLA_TIMEOUT_MINUTES))
    if minutes is not None and GLOBAL_MIN_MINUTES <= minutes <= GLOBAL_MAX_MINUTES:
        return minutes
    return None


def default_timeout_minutes() -> int:
    configured = getattr(settings, "default_sla_timeout_minutes", None)
    if isinstance(configured, int) and configured > 0:
        return configured
    return DEFAULT_SLA_TIMEOUT_MINUTES


def _in_savepoint(db: Session, lookup: Callable[[], Optional[int]]) -> Optional[int]:
    with db.begin_nested():
        return lookup()


def resolve_timeout_minutes(db: Session, partner_id: Optional[int] = None) -> int:
    minutes = guarded_call(
        "Partner SLA lookup",
        lambda: _in_savepoint(db, lambda: _partner_minutes(db, partner_id)),
        logger=logger,
        context={"partner_id": partner_id},
    )
    if minutes is not None:
        return minutes
    minutes = guarded_call(
        "Global SLA lookup",
        lambda: _in_savepoint(db, lambda: _global_minutes(db)),
        logger=logger,
    )
    if minutes is not None:
        return minutes
    return default_timeout_minutes()


def compute_deadline(assigned_at: datetime.datetime, timeout_minutes: int) -> datetime.datetime:
    return assigned_at + datetime.timedelta(seconds=timeout_minutes * 60)
