"""
Outbox worker for sending request emails with retries.
"""

from __future__ import annotations

import datetime
import logging
import os
import smtplib
import requests
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.notification_outbox import NotificationOutbox


logger = logging.getLogger("notification_worker")

STATUS_PENDING = "PENDING"
STATUS_RETRYING = "RETRYING"
STATUS_SENT = "SENT"
STATUS_FAILED = "FAILED"

# Seconds between attempts 1, 2, 3, ...; the last step repeats.
BACKOFF_SCHEDULE_SEC = (60, 300, 900, 3600, 21600)
CLAIM_LEASE_SEC = 30


class NotificationProvider:
    def send_email(self, to: str, subject: str, body: str) -> Optional[str]:
        raise NotImplementedError


class EmailLogProvider(NotificationProvider):
    def send_email(self, to: str, subject: str, body: str) -> Optional[str]:
        logger.info("EMAIL (log) to=%s subject=%s", to, subject)
        return None


class EmailSMTPProvider(NotificationProvider):
    """
    SMTP email provider.

    For MailHog:
        SMTP_HOST=127.0.0.1
        SMTP_PORT=1025
        SMTP_STARTTLS=false
    """

    def __init__(self) -> None:
        self.host = os.getenv("SMTP_HOST") or settings.smtp_host
        self.port = int(os.getenv("SMTP_PORT") or settings.smtp_port or 587)
        self.user = os.getenv("SMTP_USER") or settings.smtp_user
        self.password = os.getenv("SMTP_PASSWORD") or settings.smtp_password
        self.sender = os.getenv("SMTP_FROM") or settings.smtp_from or self.user or "ticketing@localhost"

        # Respect explicit flags first.
        raw_tls = os.getenv("SMTP_USE_TLS", os.getenv("SMTP_STARTTLS", "")).lower().strip()
        if raw_tls in {"0", "false", "no"}:
            self.starttls = False
        elif raw_tls in {"1", "true", "yes"}:
            self.starttls = True
        else:
            # MailHog listens on 1025 without TLS
            self.starttls = False if self.port == 1025 else True

        logger.info(
            "SMTP config loaded host=%s port=%s starttls=%s",
            self.host,
            self.port,
            self.starttls,
        )

    def send_email(self, to: str, subject: str, body: str) -> Optional[str]:
        if not self.host:
            raise RuntimeError("SMTP_HOST is not configured")
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.set_content(body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=8) as server:
                server.ehlo()
                if self.starttls:
                    server.starttls()
                    server.ehlo()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
            return None
        except Exception as exc:
            raise RuntimeError(f"SMTP send failed: {exc}") from exc


class EmailHTTPProvider(NotificationProvider):
    """JSON email gateway: POST {to, subject, text} to EMAIL_API_URL."""

    def __init__(self) -> None:
        self.url = (os.getenv("EMAIL_API_URL") or settings.email_api_url or "").strip()
        if not self.url:
            raise RuntimeError("EMAIL_API_URL is not configured")
        self.api_key = (os.getenv("EMAIL_API_KEY") or settings.email_api_key or "").strip()
        self.sender = os.getenv("SMTP_FROM") or settings.smtp_from or "ticketing@localhost"
        self.timeout = float(os.getenv("EMAIL_API_TIMEOUT_SEC", "10"))

    def send_email(self, to: str, subject: str, body: str) -> Optional[str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"from": self.sender, "to": to, "subject": subject, "text": body}
        try:
            resp = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RuntimeError(f"Email API request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise RuntimeError(f"Email API error status={resp.status_code} body={resp.text[:300]}")
        try:
            data = resp.json()
        except ValueError:
            return None
        if isinstance(data, dict):
            message_id = data.get("id") or data.get("message_id")
            return str(message_id) if message_id else None
        return None


@dataclass
class ProviderSet:
    email: NotificationProvider

    def send(self, outbox: NotificationOutbox) -> Optional[str]:
        if outbox.channel == "EMAIL":
            subject = outbox.subject or "Service Request Update"
            return self.email.send_email(outbox.target, subject, outbox.message)
        raise RuntimeError(f"Unsupported channel: {outbox.channel}")


def _build_providers() -> ProviderSet:
    smtp_host = (os.getenv("SMTP_HOST") or settings.smtp_host or "").strip()
    api_url = (os.getenv("EMAIL_API_URL") or settings.email_api_url or "").strip()

    email: NotificationProvider
    if smtp_host:
        email = EmailSMTPProvider()
    elif api_url:
        try:
            email = EmailHTTPProvider()
        except Exception as exc:
            logger.error("Email API provider disabled: %s", exc)
            email = EmailLogProvider()
    else:
        logger.error("SMTP_HOST and EMAIL_API_URL missing; using EmailLogProvider.")
        email = EmailLogProvider()

    logger.info("Providers selected: email=%s", type(email).__name__)
    return ProviderSet(email=email)


def _backoff_seconds(attempt: int) -> int:
    idx = min(max(attempt - 1, 0), len(BACKOFF_SCHEDULE_SEC) - 1)
    return BACKOFF_SCHEDULE_SEC[idx]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _due_rows(db: Session, now: datetime.datetime, batch_size: int) -> list[NotificationOutbox]:
    query = (
        db.query(NotificationOutbox)
        .filter(
            NotificationOutbox.status.in_([STATUS_PENDING, STATUS_RETRYING]),
            or_(NotificationOutbox.next_retry_at.is_(None), NotificationOutbox.next_retry_at <= now),
        )
        .order_by(NotificationOutbox.created_at.asc(), NotificationOutbox.id.asc())
        .limit(batch_size)
    )
    # Parallel workers on Postgres split the batch instead of double-sending
    if db.bind and db.bind.dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=True)
    return query.all()


def _claim(db: Session, row: NotificationOutbox, now: datetime.datetime) -> bool:
    # A crash mid-send leaves the row RETRYING with a short lease, not stuck.
    row.attempts = int(row.attempts or 0) + 1
    row.status = STATUS_RETRYING
    row.next_retry_at = now + datetime.timedelta(seconds=CLAIM_LEASE_SEC)
    row.updated_at = now
    try:
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("Could not claim outbox row id=%s err=%s", row.id, exc)
        return False
    return True


def _record_result(
    row: NotificationOutbox,
    *,
    message_id: Optional[str],
    error: Optional[Exception],
    max_attempts: int,
) -> None:
    finished_at = _utcnow()
    if error is None:
        row.status = STATUS_SENT
        row.provider_message_id = message_id
        row.sent_at = finished_at
        row.last_error = None
        row.next_retry_at = None
        return
    row.last_error = str(error)
    if row.attempts >= max_attempts:
        row.status = STATUS_FAILED
        row.next_retry_at = None
        logger.error(
            "Email delivery gave up id=%s target=%s request_id=%s attempts=%s",
            row.id,
            row.target,
            row.request_id,
            row.attempts,
        )
        return
    row.status = STATUS_RETRYING
    row.next_retry_at = finished_at + datetime.timedelta(seconds=_backoff_seconds(row.attempts))


def process_outbox_batch(
    db: Session,
    *,
    providers: Optional[ProviderSet] = None,
    max_attempts: int = 5,
    batch_size: int = 50,
) -> int:
    """Send one batch of due outbox rows; returns how many were settled."""
    providers = providers or _build_providers()
    now = _utcnow()
    settled = 0

    for row in _due_rows(db, now, batch_size):
        if not _claim(db, row, now):
            continue
        message_id: Optional[str] = None
        error: Optional[Exception] = None
        try:
            message_id = providers.send(row)
        except Exception as exc:
            error = exc
            logger.warning(
                "Email send failed id=%s event=%s target=%s attempt=%s err=%s",
                row.id,
                row.event,
                row.target,
                row.attempts,
                exc,
            )
        _record_result(row, message_id=message_id, error=error, max_attempts=max_attempts)
        try:
            db.commit()
            settled += 1
        except Exception as exc:
            db.rollback()
            logger.warning("Could not store delivery result id=%s err=%s", row.id, exc)

    return settled


def list_deliveries(db: Session, *, request_id: Optional[int] = None, status: Optional[str] = None):
    query = db.query(NotificationOutbox)
    if request_id is not None:
        query = query.filter(NotificationOutbox.request_id == request_id)
    if status:
        query = query.filter(NotificationOutbox.status == status.upper())
    return query.order_by(NotificationOutbox.created_at.desc())
