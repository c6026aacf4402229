# Overview: Push transport seam; the engine decides recipients, a PushSender delivers.

from __future__ import annotations

import json
from abc import ABC, abstractmethod

from flask import Flask, current_app


class PushDeliveryError(Exception):
    """Raised by a sender when one device could not be reached."""


class PushSender(ABC):
    """Abstract push transport"""

    @abstractmethod
    def send(self, *, endpoint: str, p256dh_key: str, auth_key: str, payload: dict) -> None:
        """
        Deliver one payload to one subscription.

        Raises:
            PushDeliveryError: the device rejected or could not receive the push
        """
        pass


class LoggingPushSender(PushSender):
    """Development transport: writes the payload to the log instead of sending it."""

    def send(self, *, endpoint: str, p256dh_key: str, auth_key: str, payload: dict) -> None:
        current_app.logger.info("[PUSH] %s <- %s", endpoint, json.dumps(payload, ensure_ascii=False))


def build_push_sender(app: Flask) -> PushSender:
    """Create the sender named by PUSH_SENDER. Hosts may replace app.extensions["push_sender"]."""
    kind = app.config.get("PUSH_SENDER", "log")
    if kind == "log":
        return LoggingPushSender()
    raise ValueError(f"Unknown PUSH_SENDER: {kind}")
