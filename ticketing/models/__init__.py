"""
SQLAlchemy model base class for the ticketing backend.

This package defines ORM models for requests, their assignment history and
status log, partners, branches, users, notifications and configuration.
All models should inherit from the declarative `Base` defined here.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


from .user import User  # noqa: E402,F401
from .partner import Partner, Category, PartnerCategory  # noqa: E402,F401
from .branch import Branch, BranchUser  # noqa: E402,F401
from .request import Request, RequestAssignment, RequestStatusLog, RequestCounter  # noqa: E402,F401
from .notification import Notification  # noqa: E402,F401
from .notification_outbox import NotificationOutbox  # noqa: E402,F401
from .configuration import Configuration  # noqa: E402,F401

__all__ = [
    "Base",

    # Identity
    "User",

    # Partners / Branches
    "Partner",
    "Category",
    "PartnerCategory",
    "Branch",
    "BranchUser",

    # Requests
    "Request",
    "RequestAssignment",
    "RequestStatusLog",
    "RequestCounter",

    # Notifications
    "Notification",
    "NotificationOutbox",

    # Settings
    "Configuration",
]
