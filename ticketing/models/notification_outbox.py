"""
Notification outbox for reliable email delivery and audit.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, DateTime, Integer, Text, Index, UniqueConstraint, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationOutbox(Base):
    __tablename__ = "notification_outbox"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    request_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("requests.id", ondelete="CASCADE"), index=True, nullable=True
    )
    # Status log entry that triggered the delivery; scopes idempotency per event
    status_log_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("request_status_log.id", ondelete="CASCADE"), nullable=True
    )
    event: Mapped[str] = mapped_column(String(32))  # submitted | in_progress | completed | sla_timeout
    channel: Mapped[str] = mapped_column(String(16), default="EMAIL")
    target: Mapped[str] = mapped_column(String(256))
    subject: Mapped[str | None] = mapped_column(String(256), nullable=True)
    message: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(16), default="PENDING")  # PENDING | SENT | FAILED | RETRYING
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("status_log_id", "channel", "target", name="uq_notification_outbox_log_channel_target"),
        Index("ix_notification_outbox_status_next_retry", "status", "next_retry_at"),
    )
