"""
Service layer for the ticketing backend.

This package holds the request lifecycle: the status state machine, branch
matching, SLA policy and monitor, and the notification fan-out and outbox.
"""

from .request_service import assign_request, create_request, update_status
from .sla_monitor import sweep_expired_assignments

__all__ = ["create_request", "assign_request", "update_status", "sweep_expired_assignments"]
