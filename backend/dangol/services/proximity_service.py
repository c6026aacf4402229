# Overview: Bounding-box "near point" queries shared by discovery and notification targeting.

"""
Proximity queries over merchant locations.

The query predicate is an axis-aligned latitude/longitude box, not a circle:

    lat_delta = radius / 111000
    lng_delta = radius / (111000 * cos(lat))

Merchants near the box corners (up to ~41% further than the radius) are
included. Clients display haversine_m() distance alongside results; it is
never used to filter.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..errors import ValidationError
from ..extensions import db
from ..models import Claim, Deal, Merchant
from .expiry_service import is_deal_expired


METERS_PER_DEGREE = 111000
EARTH_RADIUS_M = 6371000.0


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        """Boundary-inclusive, matching SQL BETWEEN."""
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


def _validate_point(lat, lng) -> tuple[float, float]:
    for name, value, limit in (("lat", lat, 90), ("lng", lng, 180)):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
            raise ValidationError(f"{name} must be a number")
        if not -limit <= value <= limit:
            raise ValidationError(f"{name} must be between -{limit} and {limit}")
    return float(lat), float(lng)


def _validate_radius(radius_m) -> float:
    if isinstance(radius_m, bool) or not isinstance(radius_m, (int, float)) or math.isnan(radius_m):
        raise ValidationError("radius must be a number")
    if radius_m <= 0:
        raise ValidationError("radius must be positive")
    return float(radius_m)


def bounding_box(lat: float, lng: float, radius_m: float) -> BoundingBox:
    lat, lng = _validate_point(lat, lng)
    radius_m = _validate_radius(radius_m)

    lat_delta = radius_m / METERS_PER_DEGREE
    lng_delta = radius_m / (METERS_PER_DEGREE * math.cos(math.radians(lat)))
    return BoundingBox(
        min_lat=lat - lat_delta,
        max_lat=lat + lat_delta,
        min_lng=lng - lng_delta,
        max_lng=lng + lng_delta,
    )


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters (display only)."""
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlng / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.asin(math.sqrt(a))


def _merchant_in_box(box: BoundingBox):
    return db.and_(
        Merchant.latitude.between(box.min_lat, box.max_lat),
        Merchant.longitude.between(box.min_lng, box.max_lng),
    )


def deals_near(lat: float, lng: float, radius_m: float, *, now: Optional[datetime] = None) -> list[Deal]:
    """
    Unexpired deals with remaining capacity whose merchant is inside the box,
    nearest first.

    Capacity is filtered in SQL; expiry is resolved per row because the stored
    deadline's frame depends on the deal id.
    """
    box = bounding_box(lat, lng, radius_m)
    candidates = (
        db.session.query(Deal)
        .join(Merchant, Deal.merchant_id == Merchant.id)
        .filter(_merchant_in_box(box))
        .filter(Deal.current_claims < Deal.max_claims)
        .order_by(Deal.id.asc())
        .all()
    )
    deals = [deal for deal in candidates if not is_deal_expired(deal, now)]
    deals.sort(key=lambda d: haversine_m(lat, lng, d.merchant.latitude, d.merchant.longitude))
    return deals


def devices_near(lat: float, lng: float, radius_m: float) -> list[str]:
    """Distinct devices holding a claim on any deal of a merchant inside the box."""
    box = bounding_box(lat, lng, radius_m)
    rows = (
        db.session.query(Claim.device_id)
        .join(Deal, Claim.deal_id == Deal.id)
        .join(Merchant, Deal.merchant_id == Merchant.id)
        .filter(_merchant_in_box(box))
        .distinct()
        .order_by(Claim.device_id.asc())
        .all()
    )
    return [r[0] for r in rows]


def devices_of_merchant(merchant_id: int) -> list[str]:
    """Distinct devices with any claim against any of the merchant's deals."""
    rows = (
        db.session.query(Claim.device_id)
        .join(Deal, Claim.deal_id == Deal.id)
        .filter(Deal.merchant_id == merchant_id)
        .distinct()
        .order_by(Claim.device_id.asc())
        .all()
    )
    return [r[0] for r in rows]
