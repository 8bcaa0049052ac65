"""
Runtime configuration endpoints (SLA timeouts, notification recipients).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...core.auth import UserContext, require_user_types
from ...core.db import get_db
from ...schemas.notifications import ConfigurationIn, ConfigurationOut
from ...services.configuration import list_configs, set_config_value


router = APIRouter(prefix="/api/v1/configurations", tags=["configurations"])


@router.get("", response_model=list[ConfigurationOut])
def get_configurations(
    partner_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_user_types("admin", "operation")),
) -> list:
    return list_configs(db, partner_id=partner_id)


@router.put("/{key}", response_model=ConfigurationOut)
def put_configuration(
    key: str,
    payload: ConfigurationIn,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_user_types("admin")),
):
    return set_config_value(
        db,
        key,
        payload.value,
        scope=payload.scope,
        partner_id=payload.partner_id,
        description=payload.description,
        actor_id=user.user_id,
    )
