# Overview: Merchant directory; registration, location and address labels.

from __future__ import annotations

import re

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Claim, Deal, Merchant
from ..validation import (
    ModelValidationPolicy,
    coerce_int,
    enforce_rules_coordinates,
    validate_payload,
)
from .concurrency import lock_for_update, run_with_retry


MERCHANT_POLICY = ModelValidationPolicy(
    writable_fields={"business_name", "address", "phone", "email", "latitude", "longitude"},
    required_on_create={"business_name", "address", "email", "latitude", "longitude"},
)

STREET_SUFFIXES = ("로", "길", "대로", "거리", "번길")
_LOT_NUMBER = re.compile(r"^\d+(-\d+)?$")


def create_merchant(
    business_name: str,
    address: str,
    latitude: float,
    longitude: float,
    email: str,
    phone: str | None = None,
) -> Merchant:
    payload = {
        "business_name": business_name,
        "address": address,
        "latitude": latitude,
        "longitude": longitude,
        "email": email,
    }
    if phone is not None:
        payload["phone"] = phone
    data = validate_payload(model=Merchant, payload=payload, policy=MERCHANT_POLICY, partial=False)
    enforce_rules_coordinates(data["latitude"], data["longitude"])
    data["email"] = data["email"].lower()

    if db.session.query(Merchant.id).filter_by(email=data["email"]).first():
        raise ConflictError(f"Merchant with email {data['email']} already exists")

    merchant = Merchant(**data)
    db.session.add(merchant)
    db.session.commit()
    return merchant


def get_merchant(merchant_id: int) -> Merchant:
    merchant = db.session.get(Merchant, merchant_id)
    if merchant is None:
        raise NotFoundError(f"Merchant {merchant_id} not found")
    return merchant


def list_merchants() -> list[Merchant]:
    return db.session.query(Merchant).order_by(Merchant.id.asc()).all()


def merchant_has_claims(merchant_id: int) -> bool:
    row = (
        db.session.query(Claim.id)
        .join(Deal, Claim.deal_id == Deal.id)
        .filter(Deal.merchant_id == merchant_id)
        .first()
    )
    return row is not None


def update_merchant_location(merchant_id: int, latitude: float, longitude: float) -> Merchant:
    """
    Move a merchant.

    Refused once any claim exists: moving would silently relocate every live
    deal that customers already claimed by distance.
    """
    data = validate_payload(
        model=Merchant,
        payload={"latitude": latitude, "longitude": longitude},
        policy=MERCHANT_POLICY,
        partial=True,
    )
    enforce_rules_coordinates(data["latitude"], data["longitude"])

    def _op():
        merchant = lock_for_update(db.session.query(Merchant).filter_by(id=merchant_id)).first()
        if merchant is None:
            raise NotFoundError(f"Merchant {merchant_id} not found")
        if merchant_has_claims(merchant_id):
            raise ConflictError("Location is fixed once customers have claimed this merchant's deals")
        merchant.latitude = data["latitude"]
        merchant.longitude = data["longitude"]
        db.session.commit()
        return merchant

    return run_with_retry(_op)


def _is_street(token: str) -> bool:
    return token.endswith(STREET_SUFFIXES)


def summarize_address(address: str | None) -> str:
    """
    Short "dong + street" label for a Korean address.

    "서울시 서초구 서초동 서초대로 123" -> "서초동 서초대로"
    "서울특별시 강남구 역삼동 123-45"   -> "역삼동"
    "대구광역시 중구 동성로 123"        -> "동성로"
    """
    if not address or not address.strip():
        return ""
    parts = address.split()

    dong_index = next((i for i, part in enumerate(parts) if part.endswith("동")), None)
    if dong_index is None:
        street = next((part for part in parts if _is_street(part)), None)
        if street:
            return street
        meaningful = next(
            (part for part in reversed(parts) if not _LOT_NUMBER.match(part) and len(part) > 1),
            None,
        )
        return meaningful or parts[0]

    dong = parts[dong_index]
    street = next((part for part in parts[dong_index + 1:] if _is_street(part)), None)
    if street:
        return f"{dong} {street}"
    return dong


def validate_merchant_id(value) -> int:
    merchant_id = coerce_int("merchant_id", value)
    if merchant_id <= 0:
        raise ValidationError("merchant_id must be positive")
    return merchant_id
