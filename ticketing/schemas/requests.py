"""
Pydantic schemas for service requests, assignment and timeline.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class RequestCreate(BaseModel):
    customer_name: str = Field(min_length=1, max_length=255)
    customer_phone: str = Field(min_length=1, max_length=50)
    customer_address: str = Field(min_length=1)
    customer_lat: float
    customer_lng: float
    category_id: int
    service_id: Optional[int] = None
    pickup_option_id: Optional[int] = None


class RequestOut(BaseModel):
    id: int
    request_number: str
    customer_id: int
    customer_name: str
    customer_phone: str
    customer_address: str
    customer_lat: float
    customer_lng: float
    category_id: int
    service_id: Optional[int] = None
    pickup_option_id: Optional[int] = None
    partner_id: Optional[int] = None
    branch_id: Optional[int] = None
    assigned_by_user_id: Optional[int] = None
    assigned_at: Optional[datetime] = None
    status: str
    sla_deadline: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    submitted_at: datetime
    confirmed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    in_progress_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closed_by_user_id: Optional[int] = None
    rating: Optional[int] = None
    feedback: Optional[str] = None
    rated_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AssignIn(BaseModel):
    partner_id: int
    branch_id: int


class StatusUpdateIn(BaseModel):
    status: Literal["confirmed", "rejected", "in_progress", "completed"]
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class RateIn(BaseModel):
    rating: int
    feedback: Optional[str] = None


class TimelineEntryOut(BaseModel):
    id: int
    status: str
    notes: Optional[str] = None
    timestamp: datetime
    changed_by_user_id: Optional[int] = None
    changed_by_name: Optional[str] = None


class AssignmentOut(BaseModel):
    id: int
    partner_id: int
    branch_id: int
    assigned_by_user_id: Optional[int] = None
    assigned_at: datetime
    response: str
    rejection_reason: Optional[str] = None
    responded_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BranchMatchOut(BaseModel):
    branch_id: int
    partner_id: int
    branch_name: str
    distance_km: float
    radius_km: Optional[float] = None
