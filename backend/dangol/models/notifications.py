from __future__ import annotations

import json

from ..extensions import db
from dangol.time_utils import to_utc_z


class PushSubscription(db.Model):
    """Web-push endpoint and key material registered by a customer device."""
    __tablename__ = "push_subscriptions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    endpoint = db.Column(db.Text, nullable=False)
    p256dh_key = db.Column(db.Text, nullable=False)
    auth_key = db.Column(db.Text, nullable=False)
    user_agent = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "device_id": self.device_id,
            "endpoint": self.endpoint,
            "user_agent": self.user_agent,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Notification(db.Model):
    """
    A push notification and the targeting rule that selected its recipients.

    Aggregate counters are written once dispatch finishes; per-device outcomes
    live in NotificationDelivery.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.CheckConstraint(
            "target_type IN ('all', 'radius', 'device', 'merchant_customers')",
            name="ck_notifications_target_type",
        ),
        db.CheckConstraint(
            "status IN ('pending', 'sending', 'sent', 'failed')",
            name="ck_notifications_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    body = db.Column(db.Text, nullable=False)
    icon = db.Column(db.String(255), nullable=True)
    badge = db.Column(db.String(255), nullable=True)
    data = db.Column(db.Text, nullable=True)  # JSON object

    target_type = db.Column(db.String(32), nullable=False, index=True)
    target_value = db.Column(db.String(255), nullable=True)  # device id for target_type=device
    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=True, index=True)
    radius_lat = db.Column(db.Float, nullable=True)
    radius_lng = db.Column(db.Float, nullable=True)
    radius_meters = db.Column(db.Integer, nullable=True)

    created_by = db.Column(db.String(64), nullable=False, default="admin")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    sent_at = db.Column(db.DateTime, nullable=True)

    total_recipients = db.Column(db.Integer, nullable=False, default=0)
    total_delivered = db.Column(db.Integer, nullable=False, default=0)
    total_clicked = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="pending")

    deliveries = db.relationship("NotificationDelivery", back_populates="notification", lazy="dynamic")

    def payload_data(self) -> dict:
        if not self.data:
            return {}
        return json.loads(self.data)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "data": self.payload_data(),
            "target_type": self.target_type,
            "target_value": self.target_value,
            "merchant_id": self.merchant_id,
            "radius_lat": self.radius_lat,
            "radius_lng": self.radius_lng,
            "radius_meters": self.radius_meters,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "sent_at": to_utc_z(self.sent_at),
            "total_recipients": self.total_recipients,
            "total_delivered": self.total_delivered,
            "total_clicked": self.total_clicked,
            "status": self.status,
        }


class NotificationDelivery(db.Model):
    """Outcome of sending one notification to one device."""
    __tablename__ = "notification_deliveries"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('sent', 'delivered', 'failed')",
            name="ck_notification_deliveries_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    notification_id = db.Column(db.Integer, db.ForeignKey("notifications.id"), nullable=False, index=True)
    device_id = db.Column(db.String(255), nullable=False, index=True)
    subscription_endpoint = db.Column(db.Text, nullable=True)

    sent_at = db.Column(db.DateTime, nullable=False)
    delivered_at = db.Column(db.DateTime, nullable=True)
    failed_at = db.Column(db.DateTime, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="sent", index=True)

    notification = db.relationship("Notification", back_populates="deliveries")

    def to_dict(self):
        return {
            "id": self.id,
            "notification_id": self.notification_id,
            "device_id": self.device_id,
            "subscription_endpoint": self.subscription_endpoint,
            "sent_at": to_utc_z(self.sent_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "failed_at": to_utc_z(self.failed_at),
            "error_message": self.error_message,
            "status": self.status,
        }
