# Overview: Background tasks; run by a Celery worker inside the Flask app context.

from __future__ import annotations

from typing import Optional

from celery import shared_task
from flask import current_app
from sqlalchemy.exc import OperationalError

from .errors import StorageUnavailableError
from .services.notification_service import announce_new_deal, build_new_deal_notification


@shared_task(name="dangol.notify_new_deal", bind=True, max_retries=3, default_retry_delay=30, ignore_result=True)
def notify_new_deal(self, deal_id: int, notification_id: Optional[int] = None) -> None:
    """
    Announce a freshly created deal to every subscribed device.

    Retries carry the notification id so a resumed dispatch reuses the same
    record and skips devices that were already reached.
    """
    sender = current_app.extensions["push_sender"]
    try:
        if notification_id is None:
            notification = build_new_deal_notification(deal_id)
            if notification is None:
                return
            notification_id = notification.id
        announce_new_deal(deal_id, sender, notification_id=notification_id)
    except (StorageUnavailableError, OperationalError) as exc:
        current_app.logger.warning("New-deal notification for deal %s deferred: %s", deal_id, exc)
        raise self.retry(exc=exc, kwargs={"deal_id": deal_id, "notification_id": notification_id})
