"""
Internal endpoints for external schedulers.

POST /api/v1/internal/sla-check runs one SLA sweep. Callers authenticate with
the shared CRON_SECRET in the X-Cron-Secret header.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from ...core.config import settings
from ...core.db import get_db
from ...services.sla_monitor import sweep_expired_assignments


router = APIRouter(prefix="/api/v1/internal", tags=["internal"])
logger = logging.getLogger("internal_api")


def _require_cron_secret(x_cron_secret: Optional[str] = Header(None, alias="X-Cron-Secret")) -> None:
    expected = settings.cron_secret
    if not expected:
        raise HTTPException(status_code=503, detail="CRON_SECRET is not configured")
    if not x_cron_secret or not secrets.compare_digest(x_cron_secret, expected):
        raise HTTPException(status_code=401, detail="Invalid cron secret")


@router.post("/sla-check", dependencies=[Depends(_require_cron_secret)])
def sla_check(db: Session = Depends(get_db)) -> dict:
    reverted = sweep_expired_assignments(db)
    logger.info("Scheduled SLA check reverted=%s", reverted)
    return {"reverted": reverted}
