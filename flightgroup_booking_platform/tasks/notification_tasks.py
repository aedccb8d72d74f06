"""
Celery tasks for booking notifications.

Delivery belongs to the messaging service. This worker is the hand-off
point: it turns a booking event into an outbound message and logs it.
"""

import logging
from typing import Any, Dict

from .celery_app import celery_app

logger = logging.getLogger(__name__)

SUBJECTS = {
    "booking.requested": "Booking request received",
    "booking.approved": "Booking approved",
    "booking.rejected": "Booking rejected",
    "booking.payment_pending": "Payment requested",
    "booking.paid": "Payment confirmed",
    "booking.issued": "Tickets issued",
    "booking.cancelled": "Booking cancelled",
    "booking.expired": "Booking expired",
}


def build_message(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Outbound message for a booking event payload."""
    event_type = payload["event_type"]
    body = f"Booking {payload['booking_id']} is now {payload['to_status']}."
    if payload.get("reservation_code"):
        body += f" Reservation code: {payload['reservation_code']}."
    if payload.get("reason"):
        body += f" Reason: {payload['reason']}."

    return {
        "recipient_agency_id": payload["agency_id"],
        "subject": SUBJECTS.get(event_type, "Booking update"),
        "body": body,
        "event_type": event_type,
    }


@celery_app.task(bind=True, name="notify_booking_event_task")
def notify_booking_event_task(self, payload: Dict[str, Any]):
    """
    Hand a booking event to the messaging service.

    Args:
        payload: ``BookingEvent.to_payload()`` output
    """
    try:
        message = build_message(payload)
    except KeyError as e:
        logger.error(f"Malformed booking event payload, missing {e}")
        return {"status": "rejected", "error": f"missing {e}"}

    logger.info(
        f"Dispatching '{message['subject']}' to agency {message['recipient_agency_id']}",
        extra={"notification": message},
    )
    return {"booking_id": payload["booking_id"], "status": "dispatched"}
