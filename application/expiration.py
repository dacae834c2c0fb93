"""Periodic sweep that cancels bookings nobody started in time"""
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from application.services import ReservationService

logger = logging.getLogger(__name__)

EXPIRATION_JOB_ID = "cancel_expired_reservations"


async def cancel_expired_reservations_job(service: ReservationService) -> int:
    """Expire overdue reservations once"""
    try:
        cancelled = await service.cancel_expired_reservations()
        if cancelled > 0:
            logger.info(f"Cancelled {cancelled} expired reservations")
        return cancelled
    except Exception as e:
        logger.error(f"Expiration sweep failed: {e}", exc_info=True)
        return 0


def start_expiration_scheduler(service: ReservationService, interval_seconds: int = 60) -> AsyncIOScheduler:
    """Start the background scheduler; must run inside an event loop"""
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        cancel_expired_reservations_job,
        trigger=IntervalTrigger(seconds=interval_seconds),
        args=[service],
        id=EXPIRATION_JOB_ID,
        name="Cancel expired reservations",
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"Expiration scheduler started (every {interval_seconds}s)")

    return scheduler
