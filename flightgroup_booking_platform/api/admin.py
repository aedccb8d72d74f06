"""
Administrative routes.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import get_session_factory
from ..schemas.common import SweepReportResponse
from ..services.expiry_service import ExpirySweeper
from ..services.notification_service import NotificationPublisher, get_notification_publisher
from ..utils.auth import Actor
from ..utils.dependencies import get_current_admin

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/expiry-sweep", response_model=SweepReportResponse)
async def run_expiry_sweep(
    admin: Actor = Depends(get_current_admin),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: NotificationPublisher = Depends(get_notification_publisher),
):
    """
    Run the expiry sweep now instead of waiting for the scheduled run (Admin only).

    Each booking is expired in its own transaction, so the report may list
    failures next to successful expirations.
    """
    logger.info(f"Manual expiry sweep requested by {admin.label}")
    report = await ExpirySweeper(session_factory, notifier=notifier).run()
    return SweepReportResponse(**report.to_dict())
