"""
Runtime configuration accessor and notification recipient lists.
"""

from __future__ import annotations

import datetime
import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import ValidationError
from ..models.configuration import Configuration
from ..models.user import User


logger = logging.getLogger("configuration")

SLA_TIMEOUT_MINUTES = "sla_timeout_minutes"
OPERATIONAL_TEAM_EMAILS = "operational_team_emails"
ADMIN_NOTIFICATION_EMAILS = "admin_notification_emails"

CONFIG_SCOPES = {"global", "partner"}


def _config_query(db: Session, key: str, scope: str, partner_id: Optional[int]):
    query = db.query(Configuration).filter(
        Configuration.key == key,
        Configuration.scope == scope,
        Configuration.is_deleted.is_(False),
    )
    if scope == "partner":
        query = query.filter(Configuration.partner_id == partner_id)
    else:
        query = query.filter(Configuration.partner_id.is_(None))
    return query


def get_config_value(
    db: Session,
    key: str,
    *,
    scope: str = "global",
    partner_id: Optional[int] = None,
) -> Optional[str]:
    if scope not in CONFIG_SCOPES:
        raise ValidationError(f"Unknown configuration scope: {scope}")
    if scope == "partner" and partner_id is None:
        return None
    row = _config_query(db, key, scope, partner_id).filter(Configuration.is_active.is_(True)).first()
    if row is None:
        return None
    return row.value


def set_config_value(
    db: Session,
    key: str,
    value: str,
    *,
    scope: str = "global",
    partner_id: Optional[int] = None,
    description: Optional[str] = None,
    actor_id: Optional[int] = None,
) -> Configuration:
    if scope not in CONFIG_SCOPES:
        raise ValidationError(f"Unknown configuration scope: {scope}")
    if scope == "partner" and partner_id is None:
        raise ValidationError("partner_id is required for partner-scoped configuration")
    key = (key or "").strip()
    if not key:
        raise ValidationError("Configuration key is required")
    if key == SLA_TIMEOUT_MINUTES:
        try:
            minutes = int(str(value).strip())
        except ValueError:
            raise ValidationError("sla_timeout_minutes must be an integer")
        if scope == "global" and not 1 <= minutes <= 60:
            raise ValidationError("Global sla_timeout_minutes must be between 1 and 60")
        if minutes <= 0:
            raise ValidationError("sla_timeout_minutes must be positive")

    now = datetime.datetime.now(datetime.timezone.utc)
    row = _config_query(db, key, scope, partner_id if scope == "partner" else None).first()
    if row is None:
        row = Configuration(
            scope=scope,
            partner_id=partner_id if scope == "partner" else None,
            key=key,
            value=str(value),
        )
    row.value = str(value)
    if description is not None:
        row.description = description
    row.is_active = True
    row.is_deleted = False
    row.updated_by_user_id = actor_id
    row.updated_at = now
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Configuration updated key=%s scope=%s partner_id=%s", key, scope, partner_id)
    return row


def list_configs(db: Session, *, partner_id: Optional[int] = None) -> list[Configuration]:
    query = db.query(Configuration).filter(
        Configuration.is_active.is_(True),
        Configuration.is_deleted.is_(False),
    )
    if partner_id is not None:
        query = query.filter(Configuration.partner_id == partner_id)
    return query.order_by(Configuration.scope.asc(), Configuration.key.asc()).all()


def split_emails(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def _dedupe(emails: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for email in emails:
        norm = email.strip().lower()
        if not norm or norm in seen:
            continue
        seen.add(norm)
        out.append(email.strip())
    return out


def get_admin_emails(db: Session) -> list[str]:
    """Admin/operations addresses: users table, then config, then ADMIN_EMAIL."""
    try:
        rows = (
            db.query(User.email)
            .filter(
                User.user_type.in_(["admin", "operation"]),
                User.is_active.is_(True),
                User.is_deleted.is_(False),
            )
            .order_by(User.id.asc())
            .all()
        )
        emails = _dedupe(row[0] for row in rows if row[0])
        if emails:
            return emails
        configured = split_emails(get_config_value(db, ADMIN_NOTIFICATION_EMAILS))
        if configured:
            return _dedupe(configured)
    except Exception as exc:
        logger.warning("Admin email lookup failed; falling back to ADMIN_EMAIL: %s", exc)
    if settings.admin_email:
        return [settings.admin_email.strip()]
    logger.warning("No admin emails found in database, config, or environment")
    return []


def get_operational_team_emails(db: Session) -> list[str]:
    try:
        configured = split_emails(get_config_value(db, OPERATIONAL_TEAM_EMAILS))
        if configured:
            return _dedupe(configured)
    except Exception as exc:
        logger.warning("Operational team email lookup failed: %s", exc)
    return _dedupe(split_emails(settings.operational_team_emails))


def get_sla_notification_recipients(db: Session) -> list[str]:
    return _dedupe([*get_admin_emails(db), *get_operational_team_emails(db)])
