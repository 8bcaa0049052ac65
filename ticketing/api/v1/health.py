"""
Health endpoints for the ticketing backend.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from ...core.db import get_db


router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("")
def health(request: Request, db: Session = Depends(get_db)) -> dict:
    database_ok = True
    try:
        db.execute(text("SELECT 1"))
    except Exception:
        database_ok = False
    thread = getattr(request.app.state, "sla_monitor_thread", None)
    return {
        "status": "ok" if database_ok else "degraded",
        "database": database_ok,
        "sla_monitor": bool(thread and thread.is_alive()),
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
    }
