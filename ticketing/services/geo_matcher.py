"""
Nearest-branch suggestion for request assignment.

Branches are ranked by great-circle distance from the customer; the nearest
one is only returned when the customer lies inside that branch's own service
radius. The result is advisory: assigners may pick any partner/branch.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import exists
from sqlalchemy.orm import Session

from ..core.errors import ValidationError
from ..models.branch import Branch, DEFAULT_RADIUS_KM
from ..models.partner import Partner, PartnerCategory


EARTH_RADIUS_KM = 6371.0


@dataclass
class BranchMatch:
    branch: Branch
    distance_km: float


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def validate_coordinate(lat: float, lng: float) -> tuple[float, float]:
    try:
        lat_f = float(lat)
        lng_f = float(lng)
    except (TypeError, ValueError):
        raise ValidationError("Coordinate must be numeric")
    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        raise ValidationError("Coordinate must be finite")
    if not -90.0 <= lat_f <= 90.0:
        raise ValidationError(f"Latitude out of range: {lat_f}")
    if not -180.0 <= lng_f <= 180.0:
        raise ValidationError(f"Longitude out of range: {lng_f}")
    return lat_f, lng_f


def _branch_radius(branch: Branch) -> float:
    if branch.radius_km is None or branch.radius_km <= 0:
        return DEFAULT_RADIUS_KM
    return float(branch.radius_km)


def _candidate_branches(
    db: Session,
    *,
    category_id: Optional[int],
    partner_id: Optional[int],
) -> list[Branch]:
    query = (
        db.query(Branch)
        .join(Partner, Partner.id == Branch.partner_id)
        .filter(
            Branch.is_active.is_(True),
            Branch.is_deleted.is_(False),
            Partner.is_active.is_(True),
            Partner.is_deleted.is_(False),
        )
    )
    if partner_id is not None:
        query = query.filter(Branch.partner_id == partner_id)
    if category_id is not None:
        offers_category = exists().where(
            PartnerCategory.partner_id == Branch.partner_id,
            PartnerCategory.category_id == category_id,
            PartnerCategory.is_active.is_(True),
            PartnerCategory.is_deleted.is_(False),
        )
        query = query.filter(offers_category)
    return query.all()


def rank_branches(
    db: Session,
    lat: float,
    lng: float,
    *,
    category_id: Optional[int] = None,
    partner_id: Optional[int] = None,
) -> list[BranchMatch]:
    """All eligible branches ordered by distance, ignoring service radius."""
    lat, lng = validate_coordinate(lat, lng)
    matches = [
        BranchMatch(branch=branch, distance_km=haversine_km(lat, lng, branch.lat, branch.lng))
        for branch in _candidate_branches(db, category_id=category_id, partner_id=partner_id)
    ]
    matches.sort(key=lambda m: (m.distance_km, m.branch.id))
    return matches


def find_nearest_branch(
    db: Session,
    lat: float,
    lng: float,
    *,
    category_id: Optional[int] = None,
    partner_id: Optional[int] = None,
) -> Optional[BranchMatch]:
    ranked = rank_branches(db, lat, lng, category_id=category_id, partner_id=partner_id)
    if not ranked:
        return None
    nearest = ranked[0]
    if nearest.distance_km > _branch_radius(nearest.branch):
        return None
    return nearest
