"""
Pydantic schemas for in-app notifications, email delivery status and
runtime configuration.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Literal

from pydantic import BaseModel, ConfigDict


class NotificationOut(BaseModel):
    id: int
    type: str
    title: str
    body: str
    request_id: Optional[int] = None
    read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationDeliveryOut(BaseModel):
    id: str
    request_id: Optional[int] = None
    event: str
    channel: str
    target: str
    status: str
    attempts: int
    next_retry_at: Optional[datetime] = None
    last_error: Optional[str] = None
    provider_message_id: Optional[str] = None
    created_at: datetime
    sent_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ConfigurationIn(BaseModel):
    value: str
    scope: Literal["global", "partner"] = "global"
    partner_id: Optional[int] = None
    description: Optional[str] = None


class ConfigurationOut(BaseModel):
    id: int
    scope: str
    partner_id: Optional[int] = None
    key: str
    value: str
    description: Optional[str] = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
