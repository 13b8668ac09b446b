"""Notification events emitted by the reservation engine.

Each event kind is its own frozen dataclass carrying only what that event
needs. Delivery is fire-and-forget: a failing sink is logged and never undoes
the state change that produced the event.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol, TypeVar
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ReservationCreated:
    reservation_id: str
    zone_id: str
    requester_id: str
    reference: str
    date: date
    start: str
    duration_hours: int
    amount: Decimal
    created_at: datetime
    payment_deadline: datetime | None


@dataclass(frozen=True)
class PaymentSucceeded:
    reservation_id: str
    zone_id: str
    requester_id: str
    external_ref: str
    paid_at: datetime


@dataclass(frozen=True)
class PaymentFailed:
    reservation_id: str
    zone_id: str
    requester_id: str
    external_ref: str
    reason: str | None
    failed_at: datetime


@dataclass(frozen=True)
class ReservationCancelled:
    reservation_id: str
    zone_id: str
    requester_id: str
    actor_id: str
    reason: str | None
    cancelled_at: datetime
    refund_due: bool


@dataclass(frozen=True)
class ReservationConfirmed:
    reservation_id: str
    zone_id: str
    requester_id: str
    actor_id: str
    confirmed_at: datetime


@dataclass(frozen=True)
class ReservationDeclined:
    reservation_id: str
    zone_id: str
    requester_id: str
    actor_id: str
    reason: str
    declined_at: datetime


@dataclass(frozen=True)
class ReservationExpired:
    reservation_id: str
    zone_id: str
    requester_id: str
    reference: str
    payment_deadline: datetime
    expired_at: datetime


NotificationEvent = (
    ReservationCreated
    | PaymentSucceeded
    | PaymentFailed
    | ReservationCancelled
    | ReservationConfirmed
    | ReservationDeclined
    | ReservationExpired
)


class NotificationSink(Protocol):
    def publish(self, event: NotificationEvent) -> None: ...


class LoggingNotificationSink:
    def publish(self, event: NotificationEvent) -> None:
        logger.info("%s for reservation %s", type(event).__name__, event.reservation_id)


class RecordingNotificationSink:
    """Keeps every published event in memory, in order."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def publish(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[T]) -> list[T]:
        return [event for event in self.events if isinstance(event, event_type)]


def deliver(sink: NotificationSink, event: NotificationEvent) -> bool:
    """Publish without letting a sink failure reach the caller."""
    try:
        sink.publish(event)
    except Exception:
        logger.exception("Notification %s for reservation %s was not delivered", type(event).__name__, event.reservation_id)
        return False
    return True
