# Overview: Flask API routes for sending targeted notifications and reading their outcomes.

# backend/dangol/routes/admin.py
"""
Admin Notification Routes

Access control for the admin console sits in front of this API.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import DealEngineError, ValidationError
from ..responses import error_response, json_body, server_error
from ..services import notification_service
from ..services.notification_service import TargetRule
from ..validation import coerce_float, coerce_int


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _target_rule(data: dict) -> TargetRule:
    target_type = data.get("target_type", notification_service.TARGET_ALL)
    if target_type == notification_service.TARGET_ALL:
        return TargetRule.all()
    if target_type == notification_service.TARGET_RADIUS:
        for key in ("lat", "lng", "radius"):
            if data.get(key) is None:
                raise ValidationError(f"{key} is required for radius targeting")
        return TargetRule.radius(
            coerce_float("lat", data["lat"]),
            coerce_float("lng", data["lng"]),
            coerce_float("radius", data["radius"]),
        )
    if target_type == notification_service.TARGET_MERCHANT_CUSTOMERS:
        if data.get("merchant_id") is None:
            raise ValidationError("merchant_id is required for merchant_customers targeting")
        return TargetRule.merchant_customers(coerce_int("merchant_id", data["merchant_id"]))
    if target_type == notification_service.TARGET_DEVICE:
        return TargetRule.device(data.get("device_id"))
    raise ValidationError(
        f"Invalid target_type: {target_type}. Must be one of {notification_service.VALID_TARGET_TYPES}"
    )


@admin_bp.post("/notifications/send")
def send_notification_route():
    """
    Create and dispatch a notification.

    Request body:
    {
        "title": "...",
        "body": "...",
        "target_type": "all" | "radius" | "merchant_customers" | "device",
        "lat": 37.5, "lng": 127.0, "radius": 500,   (radius)
        "merchant_id": 1,                           (merchant_customers)
        "device_id": "...",                         (device)
        "data": {...}                               (optional)
    }

    Returns:
        200: Notification sent, with delivery totals
        400: Invalid targeting
    """
    try:
        data = json_body()
        rule = _target_rule(data)
        extra = data.get("data")
        if extra is not None and not isinstance(extra, dict):
            raise ValidationError("data must be an object")

        notification = notification_service.create_notification(
            title=data.get("title"),
            body=data.get("body"),
            rule=rule,
            data=extra,
            created_by="admin",
        )
        sender = current_app.extensions["push_sender"]
        try:
            notification = notification_service.dispatch_notification(notification.id, sender)
        except Exception:
            notification_service.mark_notification_failed(notification.id)
            raise
        return jsonify({"success": True, "notification": notification.to_dict()})

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to send notification")


@admin_bp.post("/notifications/track")
def track_notification_route():
    """
    Record a click or delivery report sent back by a device.

    Request body:
    {
        "notification_id": 1,
        "status": "delivered" | "clicked" | "failed",
        "device_id": "...",          (required unless status is clicked)
        "error_message": "..."       (optional, failed)
    }

    Returns:
        200: Updated notification totals
        400: Invalid status or missing device_id
        404: Unknown notification or device
    """
    try:
        data = json_body()
        if data.get("notification_id") is None:
            raise ValidationError("notification_id is required")
        notification = notification_service.track_notification(
            coerce_int("notification_id", data["notification_id"]),
            data.get("status"),
            device_id=data.get("device_id"),
            error_message=data.get("error_message"),
        )
        return jsonify({"success": True, "notification": notification.to_dict()})

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to track notification")


@admin_bp.get("/notifications")
def list_notifications_route():
    try:
        limit = coerce_int("limit", request.args.get("limit", "50"))
        if not 1 <= limit <= 500:
            raise ValidationError("limit must be between 1 and 500")
        notifications = notification_service.list_notifications(limit=limit)
        return jsonify({"success": True, "notifications": [n.to_dict() for n in notifications]})

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to list notifications")


@admin_bp.get("/notifications/<int:notification_id>/deliveries")
def notification_deliveries_route(notification_id: int):
    try:
        deliveries = notification_service.notification_deliveries(notification_id)
        return jsonify({"success": True, "deliveries": [d.to_dict() for d in deliveries]})

    except DealEngineError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to load deliveries")
