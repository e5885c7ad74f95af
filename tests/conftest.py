import os
from datetime import datetime, timedelta

import pytest

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('SWEEP_ENABLED', 'false')

from sqlalchemy.orm import sessionmaker  # noqa: E402

from scheduling.database import Base, build_engine  # noqa: E402
from scheduling.models.availability_slot import AvailabilitySlot  # noqa: E402
from scheduling.models.availability_template import AvailabilityTemplate  # noqa: E402
from scheduling.models.provider_activity import ProviderActivity  # noqa: E402
from scheduling.models.provider_rate import ProviderRate  # noqa: E402
from scheduling.models.session_booking import SessionBooking  # noqa: E402

SCHEDULING_TABLES = [
    AvailabilityTemplate.__table__,
    AvailabilitySlot.__table__,
    SessionBooking.__table__,
    ProviderActivity.__table__,
    ProviderRate.__table__,
]

# 2026-01-05 is a Monday.
FIXED_NOW = datetime(2026, 1, 5, 8, 0)


@pytest.fixture
def session_factory():
    engine = build_engine('sqlite://')
    Base.metadata.create_all(bind=engine, tables=SCHEDULING_TABLES)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine, tables=list(reversed(SCHEDULING_TABLES)))
        engine.dispose()


@pytest.fixture
def scheduling_db(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def make_slot(scheduling_db):
    def _make_slot(
        start_time: datetime,
        minutes: int = 60,
        provider_id: int = 1,
        status: str = 'available',
        session_type: str = 'individual',
    ) -> AvailabilitySlot:
        slot = AvailabilitySlot(
            provider_id=provider_id,
            start_time=start_time,
            end_time=start_time + timedelta(minutes=minutes),
            duration_minutes=minutes,
            status=status,
            session_type=session_type,
        )
        scheduling_db.add(slot)
        scheduling_db.commit()
        scheduling_db.refresh(slot)
        return slot

    return _make_slot
