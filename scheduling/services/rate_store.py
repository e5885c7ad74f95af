"""Per-provider session pricing.

Bookings read the provider's current rate at booking time; clients never
supply a price.
"""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scheduling.database import store_errors
from scheduling.errors import NotFound, ValidationError
from scheduling.models.provider_rate import ProviderRate
from scheduling.schemas.bookings import ProviderRateUpdate

logger = logging.getLogger(__name__)


def find_provider_rate(db: Session, provider_id: int) -> ProviderRate | None:
    return db.query(ProviderRate).filter(
        ProviderRate.provider_id == provider_id,
    ).populate_existing().first()


def get_provider_rate(db: Session, provider_id: int) -> ProviderRate:
    with store_errors(db, 'load provider rate'):
        rate = find_provider_rate(db, provider_id)

    if rate is None:
        raise NotFound('No session rate has been set for this provider.', entity='provider_rate', entity_id=provider_id)

    return rate


def set_provider_rate(db: Session, provider_id: int, data: ProviderRateUpdate) -> ProviderRate:
    with store_errors(db, 'set provider rate'):
        rate = find_provider_rate(db, provider_id)
        if rate is None:
            rate = ProviderRate(provider_id=provider_id)
            db.add(rate)

        rate.session_rate = data.session_rate
        rate.currency = data.currency

        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ValidationError(
                'The session rate could not be saved.',
                entity='provider_rate',
                entity_id=provider_id,
                transition='set',
            ) from exc

        db.refresh(rate)

    logger.info('Provider %s set session rate %s %s', provider_id, rate.session_rate, rate.currency)
    return rate
