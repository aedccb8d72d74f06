"""
FastAPI routes for the booking request lifecycle.

Errors raised by the services propagate to ErrorHandlerMiddleware, which
maps them onto HTTP status codes.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.booking import BookingStatus
from ..schemas.booking import (
    AllowedTransitionsResponse,
    BookingApproveRequest,
    BookingCancelRequest,
    BookingCreateRequest,
    BookingHistoryListResponse,
    BookingHistoryResponse,
    BookingListResponse,
    BookingRejectRequest,
    BookingRemarksUpdate,
    BookingResponse,
    MarkPaidRequest,
    PaymentRequest,
)
from ..services.booking_service import BookingService
from ..services.notification_service import NotificationPublisher, get_notification_publisher
from ..services.status_machine import is_terminal
from ..utils.auth import Actor
from ..utils.dependencies import get_current_actor, get_current_admin

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"])


def get_booking_service(
    db: AsyncSession = Depends(get_db),
    notifier: NotificationPublisher = Depends(get_notification_publisher),
) -> BookingService:
    return BookingService(db, notifier=notifier)


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: BookingCreateRequest,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """
    Request seats on a flight group.

    The seats are held immediately; the hold lapses unless an admin acts
    before ``hold_expires_at``.
    """
    booking = await service.create_booking(
        actor,
        request.flight_group_id,
        adults=request.adults,
        children=request.children,
        infants=request.infants,
        hold_hours=request.hold_hours,
        passengers=[p.model_dump(mode="json") for p in request.passengers] if request.passengers else None,
        remarks=request.remarks,
    )
    return BookingResponse.model_validate(booking)


@router.get("/", response_model=BookingListResponse)
async def list_bookings(
    agency_id: Optional[UUID] = None,
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """List bookings. Agents only ever see their own agency."""
    bookings = await service.list_agency_bookings(
        actor,
        agency_id=agency_id,
        status=booking_status,
        limit=limit,
        offset=offset,
    )
    total = await service.count_agency_bookings(actor, agency_id=agency_id, status=booking_status)
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(booking) for booking in bookings],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.get_booking(booking_id, actor)
    return BookingResponse.model_validate(booking)


@router.patch("/{booking_id}", response_model=BookingResponse)
async def update_booking_remarks(
    booking_id: UUID,
    request: BookingRemarksUpdate,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Edit the remarks of an open booking. Status changes go through the action routes."""
    booking = await service.update_remarks(booking_id, actor, request.remarks)
    return BookingResponse.model_validate(booking)


@router.get("/{booking_id}/history", response_model=BookingHistoryListResponse)
async def get_booking_history(
    booking_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Get the audit trail of a booking."""
    history = await service.get_booking_history(booking_id, actor)
    return BookingHistoryListResponse(
        history=[BookingHistoryResponse.model_validate(entry) for entry in history],
        total=len(history),
    )


@router.get("/{booking_id}/transitions", response_model=AllowedTransitionsResponse)
async def get_allowed_transitions(
    booking_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    booking, targets = await service.get_allowed_transitions(booking_id, actor)
    return AllowedTransitionsResponse(
        booking_id=booking.id,
        status=booking.status,
        is_terminal=is_terminal(booking.status),
        allowed_transitions=targets,
    )


@router.post("/{booking_id}/approve", response_model=BookingResponse)
async def approve_booking(
    booking_id: UUID,
    request: Optional[BookingApproveRequest] = None,
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    """Approve a requested booking (Admin only)."""
    booking = await service.approve_booking(booking_id, admin, remarks=request.remarks if request else None)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: UUID,
    request: BookingRejectRequest,
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    """Reject a booking and release its seats (Admin only)."""
    booking = await service.reject_booking(booking_id, admin, request.reason)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/request-payment", response_model=BookingResponse)
async def request_payment(
    booking_id: UUID,
    request: Optional[PaymentRequest] = None,
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    """Ask the agency for payment (Admin only)."""
    booking = await service.request_payment(
        booking_id,
        admin,
        payment_deadline=request.payment_deadline if request else None,
    )
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/mark-paid", response_model=BookingResponse)
async def mark_paid(
    booking_id: UUID,
    request: MarkPaidRequest,
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    """Record the agency's payment (Admin only)."""
    booking = await service.mark_paid(
        booking_id,
        admin,
        payment_proof_url=request.payment_proof_url,
        payment_reference=request.payment_reference,
        payment_amount=request.payment_amount,
    )
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/issue", response_model=BookingResponse)
async def issue_tickets(
    booking_id: UUID,
    admin: Actor = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    """Issue tickets for a paid booking (Admin only)."""
    booking = await service.issue_tickets(booking_id, admin)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    request: Optional[BookingCancelRequest] = None,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """
    Cancel a booking and release its seats back to inventory.

    Agents may cancel their own agency's bookings; admins may cancel any.
    """
    request = request or BookingCancelRequest()
    booking = await service.cancel_booking(
        booking_id,
        actor,
        reason=request.reason,
        refund_initiated=request.refund_initiated,
    )
    return BookingResponse.model_validate(booking)
