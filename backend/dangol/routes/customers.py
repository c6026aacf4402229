# Overview: Flask API routes for customer discovery, claims and push subscriptions.

# backend/dangol/routes/customers.py
"""
Customer API Routes

Customers are identified only by an opaque device_id generated on the device.
Nothing here authenticates them.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import DealEngineError, ValidationError
from ..responses import error_response, json_body, server_error
from ..services import claim_service, deal_service, notification_service
from ..services.proximity_service import deals_near, haversine_m
from ..validation import coerce_float, coerce_int


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


# =============================================================================
# DISCOVERY
# =============================================================================

@customers_bp.get("/deals")
def deals_near_route():
    """
    Deals near a point, nearest first.

    Query params:
    - lat, lng: required
    - radius: meters (default 200)
    """
    try:
        if request.args.get("lat") is None or request.args.get("lng") is None:
            raise ValidationError("lat and lng are required")
        lat = coerce_float("lat", request.args.get("lat"))
        lng = coerce_float("lng", request.args.get("lng"))
        radius = request.args.get("radius")
        if radius is None:
            radius = current_app.config.get("DEFAULT_SEARCH_RADIUS_M", 200)
        radius = coerce_float("radius", radius)

        results = []
        for deal in deals_near(lat, lng, radius):
            merchant = deal.merchant
            payload = deal_service.serialize_deal(deal)
            payload["merchant"] = {
                "id": merchant.id,
                "business_name": merchant.business_name,
                "address": merchant.address,
                "latitude": merchant.latitude,
                "longitude": merchant.longitude,
            }
            payload["distance_m"] = round(haversine_m(lat, lng, merchant.latitude, merchant.longitude))
            results.append(payload)

        return jsonify({"success": True, "radius": radius, "deals": results})

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to search deals")


# =============================================================================
# CLAIMS
# =============================================================================

@customers_bp.post("/claims")
def issue_claim_route():
    """
    Claim a deal for a device.

    Request body:
    {
        "deal_id": 12,
        "device_id": "opaque-device-id"
    }

    Returns:
        201: Claim issued with its 6-character code
        404: Unknown deal
        409: Sold out / already claimed
        410: Deal expired
    """
    try:
        data = json_body()
        deal_id = coerce_int("deal_id", data.get("deal_id"))
        claim = claim_service.issue_claim(deal_id, data.get("device_id"))
        return jsonify({"success": True, "claim": claim_service.serialize_claim(claim)}), 201

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to issue claim")


@customers_bp.get("/claims/device/<device_id>")
def device_claims_route(device_id: str):
    """
    A device's claims, newest first.

    Query params:
    - include_inactive: include redeemed and expired claims (default: false)
    """
    try:
        include_inactive = request.args.get("include_inactive", "false").lower() == "true"
        claims = claim_service.claims_for_device(device_id, include_inactive=include_inactive)
        return jsonify({
            "success": True,
            "claims": [claim_service.serialize_claim(c) for c in claims],
        })

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to load device claims")


# =============================================================================
# PUSH SUBSCRIPTIONS
# =============================================================================

@customers_bp.post("/subscriptions")
def save_subscription_route():
    """
    Register a web-push subscription.

    Request body:
    {
        "device_id": "opaque-device-id",
        "subscription": {"endpoint": "...", "keys": {"p256dh": "...", "auth": "..."}}
    }
    """
    try:
        data = json_body()
        subscription = data.get("subscription") or {}
        if not isinstance(subscription, dict):
            raise ValidationError("subscription must be an object")
        keys = subscription.get("keys") or {}
        saved = notification_service.save_subscription(
            device_id=data.get("device_id"),
            endpoint=subscription.get("endpoint"),
            p256dh_key=keys.get("p256dh"),
            auth_key=keys.get("auth"),
            user_agent=request.headers.get("User-Agent"),
        )
        return jsonify({"success": True, "subscription": saved.to_dict()}), 201

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to save subscription")


@customers_bp.delete("/subscriptions/<device_id>")
def delete_subscription_route(device_id: str):
    try:
        if not notification_service.delete_subscription(device_id):
            return jsonify({"success": False, "error": "not_found", "message": "Subscription not found"}), 404
        return jsonify({"success": True})

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to delete subscription")
