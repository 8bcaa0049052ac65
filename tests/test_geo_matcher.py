import math

import pytest

from helpers import add_branch, add_category, add_partner, make_session
from ticketing.core.errors import ValidationError
from ticketing.models.branch import Branch
from ticketing.services.geo_matcher import (
    EARTH_RADIUS_KM,
    find_nearest_branch,
    haversine_km,
    rank_branches,
    validate_coordinate,
)


KM_PER_DEGREE = 2 * math.pi * EARTH_RADIUS_KM / 360.0


def _lat_for_km(km: float) -> float:
    return km / KM_PER_DEGREE


def test_haversine_known_distance():
    assert haversine_km(0.0, 0.0, 0.0, 0.0) == 0.0
    assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(KM_PER_DEGREE, rel=1e-9)
    # Dubai to Abu Dhabi, roughly 115-130 km
    assert 110 < haversine_km(25.2048, 55.2708, 24.4539, 54.3773) < 135


def test_radius_boundary():
    db = make_session()
    category = add_category(db)
    partner = add_partner(db, "Edge Partner", category_ids=[category.id])
    add_branch(db, partner, "Origin", 0.0, 0.0, radius_km=10.0)

    inside = find_nearest_branch(db, _lat_for_km(10.0 - 0.01), 0.0, category_id=category.id)
    outside = find_nearest_branch(db, _lat_for_km(10.0 + 0.01), 0.0, category_id=category.id)

    assert inside is not None
    assert inside.distance_km == pytest.approx(9.99, abs=1e-6)
    assert outside is None


def test_closer_branch_wins():
    db = make_session()
    category = add_category(db)
    partner_a = add_partner(db, "Alpha", category_ids=[category.id])
    partner_b = add_partner(db, "Beta", category_ids=[category.id])
    add_branch(db, partner_a, "Far", _lat_for_km(6.0), 0.0, radius_km=10.0)
    near = add_branch(db, partner_b, "Near", _lat_for_km(2.0), 0.0, radius_km=10.0)

    match = find_nearest_branch(db, 0.0, 0.0, category_id=category.id)

    assert match is not None
    assert match.branch.id == near.id
    ranked = rank_branches(db, 0.0, 0.0, category_id=category.id)
    assert [m.branch.name for m in ranked] == ["Near", "Far"]


def test_nearest_out_of_own_radius_is_not_skipped():
    db = make_session()
    category = add_category(db)
    partner = add_partner(db, "Alpha", category_ids=[category.id])
    add_branch(db, partner, "Tiny", _lat_for_km(2.0), 0.0, radius_km=1.0)
    add_branch(db, partner, "Wide", _lat_for_km(5.0), 0.0, radius_km=20.0)

    assert find_nearest_branch(db, 0.0, 0.0, category_id=category.id) is None


def test_filters_category_partner_and_inactive():
    db = make_session()
    wash = add_category(db, "Car Wash")
    tyres = add_category(db, "Tyres")
    washer = add_partner(db, "Washer", category_ids=[wash.id])
    tyre_shop = add_partner(db, "Tyre Shop", category_ids=[tyres.id])
    closed_partner = add_partner(db, "Closed", category_ids=[wash.id], is_active=False)
    wash_branch = add_branch(db, washer, "Wash 1", _lat_for_km(3.0), 0.0)
    tyre_branch = add_branch(db, tyre_shop, "Tyre 1", _lat_for_km(1.0), 0.0)
    add_branch(db, closed_partner, "Closed 1", _lat_for_km(0.5), 0.0)
    inactive = add_branch(db, washer, "Wash inactive", _lat_for_km(0.2), 0.0)
    inactive.is_active = False
    db.commit()

    assert find_nearest_branch(db, 0.0, 0.0, category_id=wash.id).branch.id == wash_branch.id
    assert find_nearest_branch(db, 0.0, 0.0, category_id=tyres.id).branch.id == tyre_branch.id
    assert find_nearest_branch(db, 0.0, 0.0, partner_id=washer.id).branch.id == wash_branch.id
    ranked_ids = {m.branch.id for m in rank_branches(db, 0.0, 0.0)}
    assert inactive.id not in ranked_ids
    assert len(ranked_ids) == 2


def test_missing_radius_uses_default():
    db = make_session()
    partner = add_partner(db, "Defaults")
    branch = add_branch(db, partner, "No radius", _lat_for_km(9.0), 0.0, radius_km=0.0)
    assert db.get(Branch, branch.id).radius_km == 0.0

    assert find_nearest_branch(db, 0.0, 0.0) is not None
    assert find_nearest_branch(db, -_lat_for_km(2.0), 0.0) is None


def test_no_branches_returns_none():
    db = make_session()
    assert find_nearest_branch(db, 10.0, 10.0) is None


@pytest.mark.parametrize(
    "lat,lng",
    [(91.0, 0.0), (-90.5, 0.0), (0.0, 180.5), (float("nan"), 0.0), ("abc", 0.0)],
)
def test_invalid_coordinates_raise(lat, lng):
    with pytest.raises(ValidationError):
        validate_coordinate(lat, lng)
    db = make_session()
    with pytest.raises(ValidationError):
        find_nearest_branch(db, lat, lng)
