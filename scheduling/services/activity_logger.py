import logging
from datetime import datetime, timedelta

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session, sessionmaker

from scheduling.core import config
from scheduling.core.clock import utc_now
from scheduling.database import SessionLocal, store_errors
from scheduling.errors import SchedulingError
from scheduling.models.provider_activity import ProviderActivity

logger = logging.getLogger(__name__)


def log_activity(
    provider_id: int,
    activity_type: str,
    description: str,
    metadata: dict | None = None,
    session_factory: sessionmaker | None = None,
) -> None:
    """Record a provider activity in its own session.

    Fire-and-forget: a failure here is logged and never propagates to the
    operation that triggered it.
    """
    session_factory = session_factory or SessionLocal
    db = session_factory()
    try:
        db.add(
            ProviderActivity(
                provider_id=provider_id,
                activity_type=activity_type,
                activity_description=description,
                details=jsonable_encoder(metadata or {}),
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception('Error logging provider activity %s for provider %s', activity_type, provider_id)
    finally:
        db.close()


def clean_old_activities(db: Session, days_to_keep: int = 365, now: datetime | None = None) -> int:
    """Delete activity entries older than ``days_to_keep`` days."""
    now = now or utc_now()
    cutoff = now - timedelta(days=days_to_keep)

    with store_errors(db, 'clean old activities'):
        removed = db.query(ProviderActivity).filter(
            ProviderActivity.created_at < cutoff,
        ).delete(synchronize_session=False)
        db.commit()

    return removed


def run_activity_cleanup(
    session_factory: sessionmaker | None = None,
    days_to_keep: int | None = None,
    now: datetime | None = None,
) -> int | None:
    session_factory = session_factory or SessionLocal
    days_to_keep = days_to_keep or config.ACTIVITY_RETENTION_DAYS

    db = session_factory()
    try:
        removed = clean_old_activities(db, days_to_keep, now)
    except SchedulingError:
        logger.exception('Activity log cleanup failed')
        return None
    finally:
        db.close()

    if removed:
        logger.info('Cleaned up %s activity entries older than %s days', removed, days_to_keep)
    return removed
