from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi import HTTPException

from scheduling.auth.dependencies import Principal
from scheduling.routes.booking_routes import (
    book_availability_slot,
    build_cancellation_actor,
    cancel_availability_slot,
    complete_session_booking,
    list_my_bookings,
)
from scheduling.schemas.bookings import BookingRequest, CancelRequest, ProviderRateUpdate
from scheduling.services import rate_store

PROVIDER = Principal(user_id=1, role='provider')
CLIENT = Principal(user_id=42, role='client')
OTHER_CLIENT = Principal(user_id=43, role='client')
ADMIN = Principal(user_id=99, role='admin')


@pytest.fixture
def recorded_activities(monkeypatch: pytest.MonkeyPatch) -> list[tuple]:
    activities: list[tuple] = []
    monkeypatch.setattr('scheduling.routes.booking_routes.ensure_database_ready', lambda: None)
    monkeypatch.setattr(
        'scheduling.routes.booking_routes.log_activity',
        lambda *args, **kwargs: activities.append(args),
    )
    return activities


@pytest.fixture
def upcoming_slot(make_slot):
    return make_slot(datetime.now() + timedelta(days=1))


def test_build_cancellation_actor_maps_roles() -> None:
    assert build_cancellation_actor(CLIENT).role == 'client'
    assert build_cancellation_actor(PROVIDER).actor_id == PROVIDER.user_id
    system_actor = build_cancellation_actor(ADMIN)
    assert system_actor.role == 'system'
    assert system_actor.actor_id is None


def test_book_twice_returns_conflict(scheduling_db, upcoming_slot, recorded_activities) -> None:
    result = book_availability_slot(upcoming_slot.id, BookingRequest(), principal=CLIENT, db=scheduling_db)

    assert result.slot.status == 'booked'
    assert result.booking.user_id == CLIENT.user_id
    assert recorded_activities[0][0] == upcoming_slot.provider_id

    with pytest.raises(HTTPException) as exception_info:
        book_availability_slot(upcoming_slot.id, BookingRequest(), principal=OTHER_CLIENT, db=scheduling_db)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['transition'] == 'booked->booked'


def test_book_missing_slot_returns_not_found(scheduling_db, recorded_activities) -> None:
    with pytest.raises(HTTPException) as exception_info:
        book_availability_slot(999, BookingRequest(), principal=CLIENT, db=scheduling_db)

    assert exception_info.value.status_code == 404


def test_client_cancel_then_rebook(scheduling_db, upcoming_slot, recorded_activities) -> None:
    book_availability_slot(upcoming_slot.id, BookingRequest(), principal=CLIENT, db=scheduling_db)

    cancellation = cancel_availability_slot(
        upcoming_slot.id,
        CancelRequest(reason='  travelling  '),
        principal=CLIENT,
        db=scheduling_db,
    )

    assert cancellation.slot.status == 'available'
    assert cancellation.booking.cancel_reason == 'travelling'

    rebooked = book_availability_slot(upcoming_slot.id, BookingRequest(), principal=OTHER_CLIENT, db=scheduling_db)
    assert rebooked.booking.user_id == OTHER_CLIENT.user_id


def test_other_client_cannot_cancel(scheduling_db, upcoming_slot, recorded_activities) -> None:
    book_availability_slot(upcoming_slot.id, BookingRequest(), principal=CLIENT, db=scheduling_db)

    with pytest.raises(HTTPException) as exception_info:
        cancel_availability_slot(upcoming_slot.id, CancelRequest(), principal=OTHER_CLIENT, db=scheduling_db)

    assert exception_info.value.status_code == 404


def test_complete_before_session_end_returns_bad_request(scheduling_db, upcoming_slot, recorded_activities) -> None:
    result = book_availability_slot(upcoming_slot.id, BookingRequest(), principal=CLIENT, db=scheduling_db)

    with pytest.raises(HTTPException) as exception_info:
        complete_session_booking(result.booking.id, principal=PROVIDER, db=scheduling_db)

    assert exception_info.value.status_code == 400


def test_list_my_bookings_returns_only_own(scheduling_db, make_slot, recorded_activities) -> None:
    first = make_slot(datetime.now() + timedelta(days=1))
    second = make_slot(datetime.now() + timedelta(days=2))
    book_availability_slot(first.id, BookingRequest(), principal=CLIENT, db=scheduling_db)
    book_availability_slot(second.id, BookingRequest(), principal=OTHER_CLIENT, db=scheduling_db)

    bookings = list_my_bookings(principal=CLIENT, db=scheduling_db)

    assert [booking.availability_slot_id for booking in bookings] == [first.id]


def test_booking_copies_provider_rate(scheduling_db, upcoming_slot, recorded_activities) -> None:
    rate_store.set_provider_rate(scheduling_db, PROVIDER.user_id, ProviderRateUpdate(session_rate=Decimal('80.00')))

    result = book_availability_slot(upcoming_slot.id, BookingRequest(), principal=CLIENT, db=scheduling_db)

    assert result.booking.session_rate == Decimal('80.00')
    assert result.booking.currency == 'USD'
