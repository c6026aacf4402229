# Overview: Flask API routes for merchant deal management and code redemption.

# backend/dangol/routes/merchants.py
"""
Merchant API Routes

DESIGN:
- Deals are created as drafts and confirmed explicitly
- Confirmed deals accept quantity changes only
- Every mutating call names the acting merchant; the service checks ownership
- Redemption is scoped to the merchant's own deals

Merchant authentication lives in front of this API; merchant_id is trusted.
"""

from flask import Blueprint, request, jsonify

from ..errors import DealEngineError, ValidationError
from ..responses import error_response, json_body, server_error
from ..services import claim_service, deal_service
from ..services.deal_service import ValidityWindow
from ..services.merchant_service import get_merchant, validate_merchant_id
from ..validation import coerce_datetime


merchants_bp = Blueprint("merchants", __name__, url_prefix="/api/merchants")


def _validity_window(data: dict) -> ValidityWindow:
    """Explicit expires_at wins; otherwise hours/minutes from now."""
    if data.get("expires_at") is not None:
        starts_at = data.get("starts_at")
        return ValidityWindow.between(
            coerce_datetime("starts_at", starts_at) if starts_at is not None else None,
            coerce_datetime("expires_at", data["expires_at"]),
        )
    if data.get("hours") is None and data.get("minutes") is None:
        raise ValidationError("Provide expires_at or a duration (hours/minutes)")
    return ValidityWindow.from_duration(data.get("hours"), data.get("minutes"))


# =============================================================================
# DEALS
# =============================================================================

@merchants_bp.post("/deals")
def create_deal_route():
    """
    Create a draft deal.

    Request body:
    {
        "merchant_id": 1,
        "title": "Americano 50% off",
        "description": "Today only",
        "max_claims": 20,                      (optional, default 999)
        "starts_at": "2025-01-01T12:00",       (optional, local time)
        "expires_at": "2025-01-01T18:00",      (or hours/minutes)
        "hours": 2, "minutes": 30
    }

    Returns:
        201: Deal created
        400: Invalid input
        404: Unknown merchant
    """
    try:
        data = json_body()
        merchant_id = validate_merchant_id(data.get("merchant_id"))
        deal = deal_service.create_deal(
            merchant_id,
            data.get("title"),
            data.get("description"),
            _validity_window(data),
            data.get("max_claims"),
        )
        return jsonify({"success": True, "deal": deal_service.serialize_deal(deal)}), 201

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to create deal")


@merchants_bp.get("/deals")
def list_deals_route():
    """List a merchant's deals, newest first, with derived state."""
    try:
        merchant_id = validate_merchant_id(request.args.get("merchant_id"))
        get_merchant(merchant_id)
        deals = deal_service.list_merchant_deals(merchant_id)
        return jsonify({
            "success": True,
            "deals": [deal_service.serialize_deal(d) for d in deals],
        })

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to list deals")


@merchants_bp.put("/deals/<int:deal_id>")
def update_deal_route(deal_id: int):
    """
    Edit a deal.

    Request body: merchant_id plus any of title, description, starts_at,
    expires_at, max_claims. Confirmed deals accept max_claims only;
    max_claims = 0 cancels the deal.

    Returns:
        200: Deal updated
        400: Invalid change
        403: Not the owner
        404: Unknown deal
    """
    try:
        data = json_body()
        merchant_id = validate_merchant_id(data.pop("merchant_id", None))
        deal = deal_service.update_deal(deal_id, merchant_id, data)
        return jsonify({"success": True, "deal": deal_service.serialize_deal(deal)})

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to update deal")


@merchants_bp.post("/deals/<int:deal_id>/confirm")
def confirm_deal_route(deal_id: int):
    """Confirm a draft deal. Confirming twice is a 409."""
    try:
        data = json_body()
        merchant_id = validate_merchant_id(data.get("merchant_id"))
        deal = deal_service.confirm_deal(deal_id, merchant_id)
        return jsonify({"success": True, "deal": deal_service.serialize_deal(deal)})

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to confirm deal")


# =============================================================================
# REDEMPTION
# =============================================================================

@merchants_bp.post("/redeem")
def redeem_route():
    """
    Redeem a customer's claim code at the counter.

    Request body:
    {
        "claim_code": "ab12cd",   (case-insensitive)
        "merchant_id": 1          (optional; restricts to own deals)
    }

    Returns:
        200: Redeemed
        400: Malformed code
        403: Code belongs to another merchant
        404: Unknown code
        409: Already redeemed
        410: Code expired
    """
    try:
        data = json_body()
        merchant_id = data.get("merchant_id")
        if merchant_id is not None:
            merchant_id = validate_merchant_id(merchant_id)
        claim = claim_service.redeem_claim(data.get("claim_code"), merchant_id=merchant_id)
        return jsonify({"success": True, "claim": claim_service.serialize_claim(claim)})

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to redeem claim")
