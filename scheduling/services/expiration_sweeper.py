"""
Expiration sweeper.

Periodically removes slots that are still available after their session
ended (plus a grace period). Booked, cancelled and blocked slots are never
touched, so the sweep needs no coordination with booking transitions.

``run_expiration_sweep`` is the single idempotent entry point for the
scheduler. The asyncio loop runs it in a worker thread on a fixed cadence
from the FastAPI lifespan, followed by the activity log retention cleanup.
"""

import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session, sessionmaker

from scheduling.core import config
from scheduling.core.clock import utc_now
from scheduling.database import SessionLocal, store_errors
from scheduling.errors import SchedulingError
from scheduling.models.availability_slot import SLOT_AVAILABLE, AvailabilitySlot
from scheduling.services.activity_logger import run_activity_cleanup

logger = logging.getLogger(__name__)


def sweep_expired_slots(db: Session, grace_period: timedelta, now: datetime | None = None) -> int:
    """Delete available slots whose end time is older than ``now - grace_period``."""
    now = now or utc_now()
    cutoff = now - grace_period

    with store_errors(db, 'sweep expired slots'):
        removed = db.query(AvailabilitySlot).filter(
            AvailabilitySlot.status == SLOT_AVAILABLE,
            AvailabilitySlot.end_time < cutoff,
        ).delete(synchronize_session=False)
        db.commit()

    return removed


def run_expiration_sweep(
    session_factory: sessionmaker | None = None,
    grace_period: timedelta | None = None,
    now: datetime | None = None,
) -> int | None:
    """Run one sweep. Failures are logged and reported as ``None``; the next tick retries."""
    session_factory = session_factory or SessionLocal
    if grace_period is None:
        grace_period = timedelta(minutes=config.SWEEP_GRACE_MINUTES)

    logger.info('Starting cleanup of expired availability slots')
    db = session_factory()
    try:
        removed = sweep_expired_slots(db, grace_period, now)
    except SchedulingError:
        logger.exception('Expired availability cleanup failed')
        return None
    finally:
        db.close()

    logger.info('Cleaned up %s expired availability slots', removed)
    return removed


async def expiration_sweeper_loop(interval_seconds: int | None = None) -> None:
    interval_seconds = interval_seconds or config.SWEEP_INTERVAL_SECONDS
    logger.info('expiration_sweeper_loop started (every %ss)', interval_seconds)

    try:
        while True:
            try:
                await asyncio.to_thread(run_expiration_sweep)
                await asyncio.to_thread(run_activity_cleanup)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception('expiration_sweeper_loop error')

            await asyncio.sleep(interval_seconds)
    except asyncio.CancelledError:
        logger.info('expiration_sweeper_loop cancelled')
