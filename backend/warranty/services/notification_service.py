# Overview: Fire-and-forget domain event publishing to a pluggable notification sink.

"""
Notification sink.

Events: ClaimValidated, ShipmentCreated, ClaimCompleted, BarcodeActivated.

DELIVERY: at most once, after the originating transaction committed.
A missing sink is not an error; a failing sink is logged and the event is
dropped. Callers never wait on or depend on delivery.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from flask import current_app

from warranty.time_utils import to_utc_z, utcnow


EVENT_TYPES = {"ClaimValidated", "ShipmentCreated", "ClaimCompleted", "BarcodeActivated"}

EXTENSION_KEY = "warranty_notification_sink"


@dataclass(frozen=True)
class NotificationEvent:
    event_type: str
    storefront_id: int
    payload: dict = field(default_factory=dict)
    occurred_at: Any = None

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "storefront_id": self.storefront_id,
            "payload": dict(self.payload),
            "occurred_at": to_utc_z(self.occurred_at),
        }


class NotificationSink(Protocol):
    def publish(self, event: NotificationEvent) -> None: ...


class LoggingSink:
    """Default sink: writes each event to the application log."""

    def publish(self, event: NotificationEvent) -> None:
        current_app.logger.info("Notification %s: %s", event.event_type, event.to_dict())


def set_sink(app, sink: NotificationSink | None) -> None:
    app.extensions[EXTENSION_KEY] = sink


def get_sink() -> NotificationSink | None:
    return current_app.extensions.get(EXTENSION_KEY)


def publish(event_type: str, *, storefront_id: int, now=None, **payload) -> None:
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown notification event: {event_type}")

    sink = get_sink()
    if sink is None:
        return

    event = NotificationEvent(
        event_type=event_type,
        storefront_id=storefront_id,
        payload=payload,
        occurred_at=now or utcnow(),
    )
    try:
        sink.publish(event)
    except Exception:
        current_app.logger.warning("Dropped notification %s", event_type, exc_info=True)
