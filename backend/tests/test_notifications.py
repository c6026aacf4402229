"""Notification targeting, dispatch bookkeeping and the new-deal announcement."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, SEOUL_CITY_HALL
from dangol.errors import NotFoundError, StorageUnavailableError, ValidationError
from dangol.models import Notification, NotificationDelivery
from dangol.push import LoggingPushSender
from dangol.services import claim_service, notification_service
from dangol.services.notification_service import (
    TargetRule,
    dispatch_notification,
    is_business_hours,
    resolve_targets,
    save_subscription,
    schedule_new_deal_notification,
    track_notification,
)


LAT, LNG = SEOUL_CITY_HALL
KST = timezone(timedelta(hours=9))


def _subscribe(device_id):
    return save_subscription(
        device_id,
        f"https://push.example/{device_id}",
        "p256dh-key",
        "auth-key",
        user_agent="pytest",
    )


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

def test_subscription_upsert_by_device(db_session):
    first = _subscribe("device-a")
    again = save_subscription("device-a", "https://push.example/new", "k2", "a2")

    assert again.id == first.id
    assert again.endpoint == "https://push.example/new"
    assert notification_service.active_device_ids() == ["device-a"]


def test_subscription_delete(db_session):
    _subscribe("device-a")

    assert notification_service.delete_subscription("device-a") is True
    assert notification_service.delete_subscription("device-a") is False
    assert notification_service.active_device_ids() == []


def test_subscription_requires_keys(db_session):
    with pytest.raises(ValidationError):
        save_subscription("device-a", "https://push.example/a", "", "auth")


# =============================================================================
# TARGETING
# =============================================================================

def test_all_targets_every_subscription(db_session):
    for device in ("device-a", "device-b"):
        _subscribe(device)

    assert resolve_targets(TargetRule.all()) == ["device-a", "device-b"]


def test_radius_and_merchant_targets_use_claim_history(db_session, make_merchant, make_deal):
    near = make_merchant(lat=LAT, lng=LNG)
    far = make_merchant(lat=LAT + 0.2, lng=LNG)
    claim_service.issue_claim(make_deal(near).id, "device-near", now=NOW)
    claim_service.issue_claim(make_deal(far).id, "device-far", now=NOW)

    assert resolve_targets(TargetRule.radius(LAT, LNG, 500)) == ["device-near"]
    assert resolve_targets(TargetRule.merchant_customers(far.id)) == ["device-far"]


def test_device_target(db_session):
    assert resolve_targets(TargetRule.device("device-x")) == ["device-x"]


def test_invalid_rules(db_session):
    with pytest.raises(ValidationError):
        TargetRule.radius(LAT, LNG, 0)
    with pytest.raises(ValidationError):
        TargetRule.device("")
    with pytest.raises(ValidationError):
        resolve_targets(TargetRule("everyone"))


# =============================================================================
# DISPATCH
# =============================================================================

def test_dispatch_records_each_device(db_session, merchant, make_deal, push_sender):
    deal = make_deal(merchant)
    for device in ("device-ok", "device-gone", "device-unsubscribed"):
        claim_service.issue_claim(deal.id, device, now=NOW)
    _subscribe("device-ok")
    _subscribe("device-gone")
    push_sender.failing_endpoints.add("https://push.example/device-gone")

    notification = notification_service.create_notification(
        title="Thanks for visiting",
        body="Come back tomorrow",
        rule=TargetRule.merchant_customers(merchant.id),
    )
    sent = dispatch_notification(notification.id, push_sender)

    assert sent.status == "sent"
    assert sent.total_recipients == 3
    assert sent.total_delivered == 1
    assert sent.sent_at is not None

    deliveries = {d.device_id: d for d in notification_service.notification_deliveries(notification.id)}
    assert deliveries["device-ok"].status == "delivered"
    assert deliveries["device-gone"].status == "failed"
    assert deliveries["device-gone"].error_message == "410 Gone"
    assert deliveries["device-unsubscribed"].status == "failed"
    assert deliveries["device-unsubscribed"].error_message == "No subscription found for device"

    endpoint, payload = push_sender.sent[0]
    assert endpoint == "https://push.example/device-ok"
    assert payload["title"] == "Thanks for visiting"
    assert payload["data"]["notificationId"] == notification.id


def test_dispatch_with_no_recipients(db_session, push_sender):
    notification = notification_service.create_notification(title="Hello", body="Nobody", rule=TargetRule.all())

    sent = dispatch_notification(notification.id, push_sender)

    assert sent.status == "sent"
    assert sent.total_recipients == 0
    assert push_sender.sent == []


def test_transport_error_is_recorded_and_batch_continues(db_session, push_sender):
    for device in ("device-a", "device-b", "device-c"):
        _subscribe(device)
    push_sender.transport_errors["https://push.example/device-b"] = ConnectionError("connection reset")

    notification = notification_service.create_notification(title="Hello", body="Lunch deals", rule=TargetRule.all())
    sent = dispatch_notification(notification.id, push_sender)

    assert sent.status == "sent"
    assert sent.total_recipients == 3
    assert sent.total_delivered == 2
    assert [endpoint for endpoint, _ in push_sender.sent] == [
        "https://push.example/device-a",
        "https://push.example/device-c",
    ]

    deliveries = {d.device_id: d for d in notification_service.notification_deliveries(notification.id)}
    assert len(deliveries) == 3
    assert deliveries["device-a"].status == "delivered"
    assert deliveries["device-b"].status == "failed"
    assert deliveries["device-b"].error_message == "ConnectionError: connection reset"
    assert deliveries["device-c"].status == "delivered"


def test_dispatching_again_only_reaches_undelivered_devices(db_session, push_sender):
    _subscribe("device-a")
    _subscribe("device-b")
    push_sender.failing_endpoints.add("https://push.example/device-b")
    notification = notification_service.create_notification(title="Hello", body="Lunch deals", rule=TargetRule.all())
    dispatch_notification(notification.id, push_sender)

    push_sender.failing_endpoints.clear()
    push_sender.sent.clear()
    again = dispatch_notification(notification.id, push_sender)

    assert [endpoint for endpoint, _ in push_sender.sent] == ["https://push.example/device-b"]
    assert again.total_delivered == 2
    assert db_session.query(NotificationDelivery).count() == 2


def test_logging_sender_writes_to_app_log(app, caplog):
    with caplog.at_level(logging.INFO, logger=app.logger.name):
        LoggingPushSender().send(
            endpoint="https://push.example/device-a",
            p256dh_key="k",
            auth_key="a",
            payload={"title": "새 딜"},
        )

    assert "[PUSH] https://push.example/device-a" in caplog.text
    assert "새 딜" in caplog.text


# =============================================================================
# TRACKING
# =============================================================================

def test_track_clicks_and_delivery_reports(db_session, push_sender):
    _subscribe("device-a")
    _subscribe("device-b")
    push_sender.failing_endpoints.add("https://push.example/device-b")
    notification = notification_service.create_notification(title="Hello", body="Lunch deals", rule=TargetRule.all())
    dispatch_notification(notification.id, push_sender)

    clicked = track_notification(notification.id, "clicked", device_id="device-b")
    assert clicked.total_clicked == 1
    assert clicked.total_delivered == 2

    assert track_notification(notification.id, "clicked").total_clicked == 2

    failed = track_notification(
        notification.id, "failed", device_id="device-a", error_message="Permission revoked"
    )
    assert failed.total_delivered == 1
    assert failed.total_clicked == 2

    deliveries = {d.device_id: d for d in notification_service.notification_deliveries(notification.id)}
    assert deliveries["device-a"].status == "failed"
    assert deliveries["device-a"].error_message == "Permission revoked"
    assert deliveries["device-b"].status == "delivered"
    assert deliveries["device-b"].error_message is None


def test_track_rejects_bad_reports(db_session, push_sender):
    _subscribe("device-a")
    notification = notification_service.create_notification(title="Hello", body="Lunch deals", rule=TargetRule.all())
    dispatch_notification(notification.id, push_sender)

    with pytest.raises(ValidationError):
        track_notification(notification.id, "opened", device_id="device-a")
    with pytest.raises(ValidationError):
        track_notification(notification.id, "delivered")
    with pytest.raises(NotFoundError):
        track_notification(999999, "clicked")
    with pytest.raises(NotFoundError):
        track_notification(notification.id, "delivered", device_id="stranger")

    assert db_session.get(Notification, notification.id).total_clicked == 0


# =============================================================================
# NEW-DEAL AUTO-NOTIFICATION
# =============================================================================

@pytest.mark.parametrize("local_time,expected", [
    (datetime(2026, 3, 2, 8, 59, tzinfo=KST), False),
    (datetime(2026, 3, 2, 9, 0, tzinfo=KST), True),
    (datetime(2026, 3, 2, 19, 59, tzinfo=KST), True),
    (datetime(2026, 3, 2, 20, 0, tzinfo=KST), False),
    (datetime(2026, 3, 2, 2, 0, tzinfo=timezone.utc), True),
])
def test_business_hours_window(app, local_time, expected):
    with app.app_context():
        assert is_business_hours(local_time) is expected


def test_new_deal_announced_during_business_hours(app, db_session, merchant, make_deal, push_sender, monkeypatch):
    monkeypatch.setitem(app.config, "AUTO_NOTIFY_NEW_DEALS", True)
    _subscribe("device-a")

    deal = make_deal(merchant, title="Croissant 1+1")

    notification = db_session.query(Notification).one()
    assert notification.created_by == "system_auto"
    assert notification.target_type == "all"
    assert notification.merchant_id == merchant.id
    assert notification.title == "Dangol Cafe posted a new deal"
    assert notification.body == "Croissant 1+1 - 세종대로"
    assert notification.payload_data()["dealId"] == deal.id
    assert notification.status == "sent"
    assert len(push_sender.sent) == 1


def test_new_deal_outside_business_hours_is_dropped(app, db_session, merchant, make_deal, push_sender, monkeypatch):
    monkeypatch.setitem(app.config, "AUTO_NOTIFY_NEW_DEALS", True)
    _subscribe("device-a")
    night = datetime(2026, 3, 2, 23, 30, tzinfo=KST)

    make_deal(merchant, now=night)

    assert db_session.query(Notification).count() == 0
    assert push_sender.sent == []


def test_auto_notify_can_be_disabled(app, db_session, merchant, push_sender):
    assert app.config["AUTO_NOTIFY_NEW_DEALS"] is False
    assert schedule_new_deal_notification(1, now=NOW) is False


def test_enqueue_failure_does_not_fail_deal_creation(app, db_session, merchant, make_deal, monkeypatch):
    from dangol import tasks

    def _broken_delay(*args, **kwargs):
        raise ConnectionError("broker down")

    monkeypatch.setitem(app.config, "AUTO_NOTIFY_NEW_DEALS", True)
    monkeypatch.setattr(tasks.notify_new_deal, "delay", _broken_delay)

    deal = make_deal(merchant)

    assert deal.id is not None
    assert db_session.query(Notification).count() == 0


def test_dispatch_failure_marks_notification_failed(app, db_session, merchant, make_deal, push_sender, monkeypatch):
    deal = make_deal(merchant)
    _subscribe("device-a")

    def _explode(rule):
        raise RuntimeError("targeting crashed")

    monkeypatch.setattr(notification_service, "resolve_targets", _explode)

    with pytest.raises(RuntimeError):
        notification_service.announce_new_deal(deal.id, push_sender)

    notification = db_session.query(Notification).one()
    assert notification.status == "failed"
    assert db_session.query(NotificationDelivery).count() == 0
    assert push_sender.sent == []


def test_task_resumes_existing_notification(app, db_session, merchant, make_deal, push_sender):
    from dangol import tasks

    deal = make_deal(merchant)
    _subscribe("device-a")
    _subscribe("device-b")
    push_sender.failing_endpoints.add("https://push.example/device-b")
    first = notification_service.announce_new_deal(deal.id, push_sender)

    push_sender.failing_endpoints.clear()
    push_sender.sent.clear()
    tasks.notify_new_deal(deal.id, notification_id=first.id)

    assert db_session.query(Notification).count() == 1
    assert [endpoint for endpoint, _ in push_sender.sent] == ["https://push.example/device-b"]
    assert db_session.get(Notification, first.id).total_delivered == 2


def test_task_retry_keeps_notification_id(app, db_session, merchant, make_deal, push_sender, monkeypatch):
    from dangol import tasks

    deal = make_deal(merchant)
    _subscribe("device-a")
    retries = []

    def _storage_down(*args, **kwargs):
        raise StorageUnavailableError("Database is busy, try again")

    def _record_retry(exc=None, kwargs=None, **options):
        retries.append(kwargs)
        return RuntimeError("retry scheduled")

    monkeypatch.setattr(tasks, "announce_new_deal", _storage_down)
    monkeypatch.setattr(tasks.notify_new_deal, "retry", _record_retry)

    with pytest.raises(RuntimeError):
        tasks.notify_new_deal(deal.id)

    notification = db_session.query(Notification).one()
    assert retries == [{"deal_id": deal.id, "notification_id": notification.id}]
