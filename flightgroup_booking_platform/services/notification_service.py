"""
Booking event publishing.

Events are collected while a unit of work runs and published only after it
commits. Delivery (email, SMS) happens in another service; the booking
engine just drops a message on the Celery queue and never waits for it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from ..config import get_settings
from ..utils.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class BookingEvent:
    """Something that happened to a booking and may interest the agency."""
    event_type: str
    booking_id: UUID
    agency_id: UUID
    to_status: str
    from_status: Optional[str] = None
    reservation_code: Optional[str] = None
    reason: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> Dict[str, Any]:
        """JSON-safe representation for the task queue."""
        return {
            "event_type": self.event_type,
            "booking_id": str(self.booking_id),
            "agency_id": str(self.agency_id),
            "from_status": self.from_status,
            "to_status": self.to_status,
            "reservation_code": self.reservation_code,
            "reason": self.reason,
            "occurred_at": self.occurred_at.isoformat(),
        }


class NotificationPublisher:
    """Base publisher; subclasses decide where events go."""

    def publish(self, event: BookingEvent) -> None:
        raise NotImplementedError

    def publish_all(self, events: Iterable[BookingEvent]) -> None:
        for event in events:
            self.publish(event)


class CeleryNotificationPublisher(NotificationPublisher):
    """Queue booking events for the notification worker."""

    def __init__(self, enabled: Optional[bool] = None):
        self.enabled = get_settings().notifications_enabled if enabled is None else enabled

    def publish(self, event: BookingEvent) -> None:
        if not self.enabled:
            logger.debug(f"Notifications disabled; dropping {event.event_type} for booking {event.booking_id}")
            return

        # Broker trouble must never surface to the caller; the booking is already committed
        try:
            from ..tasks.notification_tasks import notify_booking_event_task
            notify_booking_event_task.apply_async(args=[event.to_payload()], retry=False)
            logger.info(f"Queued {event.event_type} notification for booking {event.booking_id}")
        except Exception as e:
            logger.warning(f"Failed to queue {event.event_type} notification for booking {event.booking_id}: {e}")


def get_notification_publisher() -> NotificationPublisher:
    """FastAPI dependency returning the default publisher."""
    return CeleryNotificationPublisher()
