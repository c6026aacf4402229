# Overview: Notification targeting, dispatch bookkeeping and the new-deal auto-notification.

"""
Notification Service

WHY: The engine decides *which* devices hear about something; the PushSender
collaborator does the actual delivery. Every per-device outcome is recorded so
partial delivery is visible. Devices report clicks and delivery back through
track_notification.

TARGET RULES:
- all                -> every device with a push subscription
- radius             -> devices that claimed a deal of a merchant inside the box
- merchant_customers -> devices that claimed any deal of the merchant
- device             -> the single given device

Target resolution is read-only. Dispatch only ever runs after the deal/claim
transaction that triggered it has committed, and a dispatch failure never
touches that transaction.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy import update

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Deal, Notification, NotificationDelivery, PushSubscription
from ..push import PushDeliveryError, PushSender
from ..time_utils import local_now, utcnow
from .concurrency import lock_for_update, run_with_retry
from .merchant_service import summarize_address
from .proximity_service import bounding_box, devices_near, devices_of_merchant


TARGET_ALL = "all"
TARGET_RADIUS = "radius"
TARGET_DEVICE = "device"
TARGET_MERCHANT_CUSTOMERS = "merchant_customers"

VALID_TARGET_TYPES = [TARGET_ALL, TARGET_RADIUS, TARGET_DEVICE, TARGET_MERCHANT_CUSTOMERS]

STATUS_PENDING = "pending"
STATUS_SENDING = "sending"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"

DELIVERY_DELIVERED = "delivered"
DELIVERY_FAILED = "failed"

TRACK_DELIVERED = "delivered"
TRACK_CLICKED = "clicked"
TRACK_FAILED = "failed"

VALID_TRACK_STATUSES = [TRACK_DELIVERED, TRACK_CLICKED, TRACK_FAILED]

NO_SUBSCRIPTION_ERROR = "No subscription found for device"

DEFAULT_ICON = "/icon-192x192.png"
DEFAULT_BADGE = "/badge-72x72.png"

AUTO_NOTIFICATION_CREATOR = "system_auto"
AUTO_NOTIFICATION_TYPE = "auto_deal_notification"


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

def save_subscription(
    device_id: str,
    endpoint: str,
    p256dh_key: str,
    auth_key: str,
    user_agent: str | None = None,
) -> PushSubscription:
    """Register or refresh a device's push subscription (one row per device)."""
    for name, value in (
        ("device_id", device_id),
        ("endpoint", endpoint),
        ("p256dh", p256dh_key),
        ("auth", auth_key),
    ):
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{name} is required")

    subscription = db.session.query(PushSubscription).filter_by(device_id=device_id).first()
    if subscription is None:
        subscription = PushSubscription(device_id=device_id)
        db.session.add(subscription)
    subscription.endpoint = endpoint
    subscription.p256dh_key = p256dh_key
    subscription.auth_key = auth_key
    subscription.user_agent = user_agent
    db.session.commit()
    return subscription


def delete_subscription(device_id: str) -> bool:
    deleted = db.session.query(PushSubscription).filter_by(device_id=device_id).delete()
    db.session.commit()
    return deleted > 0


def active_device_ids() -> list[str]:
    rows = db.session.query(PushSubscription.device_id).order_by(PushSubscription.id.asc()).all()
    return [r[0] for r in rows]


# =============================================================================
# TARGETING
# =============================================================================

@dataclass(frozen=True)
class TargetRule:
    target_type: str
    device_id: Optional[str] = None
    merchant_id: Optional[int] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_m: Optional[float] = None

    @classmethod
    def all(cls) -> "TargetRule":
        return cls(TARGET_ALL)

    @classmethod
    def radius(cls, lat: float, lng: float, radius_m: float) -> "TargetRule":
        # Validates the point and radius up front.
        bounding_box(lat, lng, radius_m)
        return cls(TARGET_RADIUS, lat=lat, lng=lng, radius_m=radius_m)

    @classmethod
    def merchant_customers(cls, merchant_id: int) -> "TargetRule":
        if merchant_id is None:
            raise ValidationError("merchant_id is required for merchant_customers targeting")
        return cls(TARGET_MERCHANT_CUSTOMERS, merchant_id=merchant_id)

    @classmethod
    def device(cls, device_id: str) -> "TargetRule":
        if not device_id:
            raise ValidationError("device_id is required for device targeting")
        return cls(TARGET_DEVICE, device_id=device_id)

    @classmethod
    def from_notification(cls, notification: Notification) -> "TargetRule":
        if notification.target_type == TARGET_RADIUS:
            return cls.radius(notification.radius_lat, notification.radius_lng, notification.radius_meters)
        if notification.target_type == TARGET_MERCHANT_CUSTOMERS:
            return cls.merchant_customers(notification.merchant_id)
        if notification.target_type == TARGET_DEVICE:
            return cls.device(notification.target_value)
        return cls.all()


def resolve_targets(rule: TargetRule) -> list[str]:
    """Concrete, de-duplicated device list for a rule. No side effects."""
    if rule.target_type == TARGET_ALL:
        devices = active_device_ids()
    elif rule.target_type == TARGET_RADIUS:
        devices = devices_near(rule.lat, rule.lng, rule.radius_m)
    elif rule.target_type == TARGET_MERCHANT_CUSTOMERS:
        devices = devices_of_merchant(rule.merchant_id)
    elif rule.target_type == TARGET_DEVICE:
        devices = [rule.device_id]
    else:
        raise ValidationError(f"Invalid target type: {rule.target_type}. Must be one of {VALID_TARGET_TYPES}")
    return list(dict.fromkeys(devices))


# =============================================================================
# NOTIFICATIONS
# =============================================================================

def create_notification(
    *,
    title: str,
    body: str,
    rule: TargetRule,
    data: dict | None = None,
    icon: str | None = DEFAULT_ICON,
    badge: str | None = DEFAULT_BADGE,
    created_by: str = "admin",
    merchant_id: int | None = None,
) -> Notification:
    if not title or not title.strip():
        raise ValidationError("title is required")
    if not body or not body.strip():
        raise ValidationError("body is required")

    notification = Notification(
        title=title.strip(),
        body=body.strip(),
        icon=icon,
        badge=badge,
        data=json.dumps(data, ensure_ascii=False) if data else None,
        target_type=rule.target_type,
        target_value=rule.device_id,
        merchant_id=rule.merchant_id if rule.merchant_id is not None else merchant_id,
        radius_lat=rule.lat,
        radius_lng=rule.lng,
        radius_meters=int(rule.radius_m) if rule.radius_m is not None else None,
        created_by=created_by,
        status=STATUS_PENDING,
    )
    db.session.add(notification)
    db.session.commit()
    return notification


def _push_payload(notification: Notification) -> dict:
    return {
        "title": notification.title,
        "body": notification.body,
        "icon": notification.icon,
        "badge": notification.badge,
        "data": {**notification.payload_data(), "notificationId": notification.id},
    }


def _delivered_count(notification_id: int) -> int:
    return (
        db.session.query(NotificationDelivery)
        .filter_by(notification_id=notification_id, status=DELIVERY_DELIVERED)
        .count()
    )


def dispatch_notification(notification_id: int, sender: PushSender) -> Notification:
    """
    Resolve recipients and send a notification, one delivery row per device.

    A device without a subscription, or whose send raises, is recorded as
    failed; the rest of the batch continues. Each row is committed as it is
    written, and dispatching the same notification again skips devices that
    already have a delivered row.
    """
    notification = db.session.get(Notification, notification_id)
    if notification is None:
        raise NotFoundError(f"Notification {notification_id} not found")

    devices = resolve_targets(TargetRule.from_notification(notification))
    notification.status = STATUS_SENDING
    notification.total_recipients = len(devices)
    db.session.commit()

    subscriptions = {
        s.device_id: s
        for s in db.session.query(PushSubscription).filter(PushSubscription.device_id.in_(devices)).all()
    } if devices else {}
    previous = {d.device_id: d for d in notification.deliveries}

    payload = _push_payload(notification)
    for device_id in devices:
        delivery = previous.get(device_id)
        if delivery is not None and delivery.status == DELIVERY_DELIVERED:
            continue
        if delivery is None:
            delivery = NotificationDelivery(notification_id=notification.id, device_id=device_id)
            db.session.add(delivery)

        subscription = subscriptions.get(device_id)
        stamp = utcnow()
        delivery.subscription_endpoint = subscription.endpoint if subscription else None
        delivery.sent_at = stamp
        delivery.delivered_at = None
        delivery.failed_at = None
        delivery.error_message = None

        if subscription is None:
            delivery.status = DELIVERY_FAILED
            delivery.failed_at = stamp
            delivery.error_message = NO_SUBSCRIPTION_ERROR
        else:
            try:
                sender.send(
                    endpoint=subscription.endpoint,
                    p256dh_key=subscription.p256dh_key,
                    auth_key=subscription.auth_key,
                    payload=payload,
                )
            except PushDeliveryError as exc:
                current_app.logger.warning(
                    "Push to device %s failed for notification %s: %s", device_id, notification.id, exc
                )
                delivery.status = DELIVERY_FAILED
                delivery.failed_at = utcnow()
                delivery.error_message = str(exc)
            except Exception as exc:
                current_app.logger.exception(
                    "Push transport error for device %s, notification %s", device_id, notification.id
                )
                delivery.status = DELIVERY_FAILED
                delivery.failed_at = utcnow()
                delivery.error_message = f"{type(exc).__name__}: {exc}"
            else:
                delivery.status = DELIVERY_DELIVERED
                delivery.delivered_at = utcnow()
        db.session.commit()

    delivered = _delivered_count(notification.id)
    notification.status = STATUS_SENT
    notification.total_delivered = delivered
    notification.sent_at = utcnow()
    db.session.commit()

    current_app.logger.info(
        "Notification %s sent: %s/%s delivered", notification.id, delivered, len(devices)
    )
    return notification


def mark_notification_failed(notification_id: int) -> None:
    db.session.rollback()
    notification = db.session.get(Notification, notification_id)
    if notification is not None:
        notification.status = STATUS_FAILED
        db.session.commit()


def track_notification(
    notification_id: int,
    status: str,
    *,
    device_id: str | None = None,
    error_message: str | None = None,
) -> Notification:
    """
    Record what a device reported back about a notification.

    clicked   -> total_clicked + 1, and the device's row counts as delivered
    delivered -> the device's row is confirmed delivered
    failed    -> the device's row is marked failed with the reported error

    Without a device_id only the click counter can move.

    Raises:
        NotFoundError: unknown notification, or no delivery row for the device
        ValidationError: unknown status, or a device report without device_id
    """
    if status not in VALID_TRACK_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_TRACK_STATUSES}")
    if status != TRACK_CLICKED and not device_id:
        raise ValidationError("device_id is required to track delivery")

    def _op():
        notification = lock_for_update(db.session.query(Notification).filter_by(id=notification_id)).first()
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")

        if status == TRACK_CLICKED:
            db.session.execute(
                update(Notification)
                .where(Notification.id == notification_id)
                .values(total_clicked=Notification.total_clicked + 1)
                .execution_options(synchronize_session=False)
            )

        if device_id:
            delivery = (
                db.session.query(NotificationDelivery)
                .filter_by(notification_id=notification_id, device_id=device_id)
                .first()
            )
            if delivery is None:
                raise NotFoundError(f"Device {device_id} was not a recipient of notification {notification_id}")
            stamp = utcnow()
            if status == TRACK_FAILED:
                delivery.status = DELIVERY_FAILED
                delivery.failed_at = stamp
                delivery.delivered_at = None
                delivery.error_message = error_message or "Reported failed by device"
            elif delivery.status != DELIVERY_DELIVERED:
                delivery.status = DELIVERY_DELIVERED
                delivery.delivered_at = stamp
                delivery.failed_at = None
                delivery.error_message = None
            db.session.flush()
            notification.total_delivered = _delivered_count(notification_id)

        db.session.commit()
        db.session.refresh(notification)
        return notification

    return run_with_retry(_op)


def list_notifications(limit: int = 50) -> list[Notification]:
    return (
        db.session.query(Notification)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )


def notification_deliveries(notification_id: int) -> list[NotificationDelivery]:
    if db.session.get(Notification, notification_id) is None:
        raise NotFoundError(f"Notification {notification_id} not found")
    return (
        db.session.query(NotificationDelivery)
        .filter_by(notification_id=notification_id)
        .order_by(NotificationDelivery.id.asc())
        .all()
    )


# =============================================================================
# NEW-DEAL AUTO-NOTIFICATION
# =============================================================================

def is_business_hours(now: Optional[datetime] = None) -> bool:
    """Local hour in [start, end) of NOTIFY_BUSINESS_HOURS, deal timezone."""
    start_hour, end_hour = current_app.config.get("NOTIFY_BUSINESS_HOURS", (9, 20))
    return start_hour <= local_now(now).hour < end_hour


def schedule_new_deal_notification(deal_id: int, *, now: Optional[datetime] = None) -> bool:
    """
    Hand the new-deal announcement to the task queue.

    Outside business hours this is a no-op, not a deferred send. Enqueue
    failures are logged and never reach the caller.
    """
    if not current_app.config.get("AUTO_NOTIFY_NEW_DEALS", True):
        return False
    if not is_business_hours(now):
        current_app.logger.info("Skipping new-deal notification for deal %s: outside business hours", deal_id)
        return False

    from ..tasks import notify_new_deal
    try:
        notify_new_deal.delay(deal_id)
    except Exception:
        current_app.logger.exception("Failed to enqueue new-deal notification for deal %s", deal_id)
        return False
    return True


def build_new_deal_notification(deal_id: int) -> Optional[Notification]:
    """Record the pending 'new deal' message for every subscriber."""
    deal = db.session.get(Deal, deal_id)
    if deal is None:
        current_app.logger.error("New-deal notification skipped: deal %s not found", deal_id)
        return None

    merchant = deal.merchant
    return create_notification(
        title=f"{merchant.business_name} posted a new deal",
        body=f"{deal.title} - {summarize_address(merchant.address)}",
        rule=TargetRule.all(),
        data={
            "dealId": deal.id,
            "merchantId": merchant.id,
            "type": AUTO_NOTIFICATION_TYPE,
        },
        created_by=AUTO_NOTIFICATION_CREATOR,
        merchant_id=merchant.id,
    )


def announce_new_deal(
    deal_id: int,
    sender: PushSender,
    *,
    notification_id: Optional[int] = None,
) -> Optional[Notification]:
    """
    Dispatch the 'new deal' message, recording it first unless notification_id
    names one from an earlier attempt.
    """
    if notification_id is None:
        notification = build_new_deal_notification(deal_id)
        if notification is None:
            return None
        notification_id = notification.id

    try:
        return dispatch_notification(notification_id, sender)
    except Exception:
        current_app.logger.exception("Dispatch failed for notification %s", notification_id)
        mark_notification_failed(notification_id)
        raise
