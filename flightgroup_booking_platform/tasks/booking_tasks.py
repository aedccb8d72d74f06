"""
Celery tasks for booking expiry.
"""

import asyncio
import logging

from .celery_app import celery_app
from ..database import create_database_engine, create_session_factory
from ..services.expiry_service import ExpirySweeper

logger = logging.getLogger(__name__)


async def run_expiry_sweep() -> dict:
    """Run one sweep against a dedicated engine and return the report."""
    engine = create_database_engine()
    try:
        sweeper = ExpirySweeper(create_session_factory(engine))
        report = await sweeper.run()
        return report.to_dict()
    finally:
        await engine.dispose()


@celery_app.task(bind=True, name="expire_bookings_task")
def expire_bookings_task(self):
    """
    Periodic task that expires stale holds, missed payment deadlines and
    issued bookings whose flight has departed.

    Each run gets its own event loop and engine; pooled asyncpg connections
    cannot be shared across loops.
    """
    logger.info("Starting booking expiration task")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(run_expiry_sweep())
    except Exception as e:
        logger.error(f"Error in booking expiration task: {e}")
        raise
    finally:
        loop.close()

    logger.info(f"Booking expiration task expired {result['total_expired']} bookings")
    return result
