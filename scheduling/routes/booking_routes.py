from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from scheduling.auth.dependencies import (
    ROLE_ADMIN,
    ROLE_CLIENT,
    ROLE_PROVIDER,
    Principal,
    get_current_principal,
    require_client,
    require_provider,
)
from scheduling.database import get_db
from scheduling.errors import SchedulingError, to_http_exception
from scheduling.routes.availability_routes import ensure_database_ready
from scheduling.schemas.availability import SlotResponse
from scheduling.schemas.bookings import (
    BookingRequest,
    BookingResponse,
    BookingResultResponse,
    CancellationResponse,
    CancelRequest,
)
from scheduling.services import booking_coordinator
from scheduling.services.activity_logger import log_activity
from scheduling.services.booking_coordinator import (
    ACTOR_CLIENT,
    ACTOR_PROVIDER,
    ACTOR_SYSTEM,
    CancellationActor,
)

router = APIRouter(tags=['bookings'])

_ACTOR_BY_ROLE = {
    ROLE_CLIENT: ACTOR_CLIENT,
    ROLE_PROVIDER: ACTOR_PROVIDER,
    ROLE_ADMIN: ACTOR_SYSTEM,
}


def build_cancellation_actor(principal: Principal) -> CancellationActor:
    actor_role = _ACTOR_BY_ROLE.get(principal.role)
    if actor_role is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='This role cannot cancel bookings.',
        )

    actor_id = None if actor_role == ACTOR_SYSTEM else principal.user_id
    return CancellationActor(role=actor_role, actor_id=actor_id)


@router.post('/slots/{slot_id}', response_model=BookingResultResponse, status_code=status.HTTP_201_CREATED)
def book_availability_slot(
    slot_id: int,
    data: BookingRequest,
    principal: Principal = Depends(require_client),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slot, booking = booking_coordinator.book_slot(db, slot_id, principal.user_id, data)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    log_activity(slot.provider_id, 'slot_booked', 'Availability slot booked', {
        'slot_id': slot.id,
        'booking_id': booking.id,
        'client_id': principal.user_id,
    })
    return BookingResultResponse(
        slot=SlotResponse.model_validate(slot),
        booking=BookingResponse.model_validate(booking),
    )


@router.post('/slots/{slot_id}/cancel', response_model=CancellationResponse)
def cancel_availability_slot(
    slot_id: int,
    data: CancelRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    actor = build_cancellation_actor(principal)
    ensure_database_ready()

    try:
        slot, booking = booking_coordinator.cancel_booking(db, slot_id, actor, data.reason)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    log_activity(slot.provider_id, 'slot_cancelled', 'Availability slot cancelled', {
        'slot_id': slot.id,
        'booking_id': booking.id if booking is not None else None,
        'cancelled_by': actor.role,
        'reason': data.reason,
    })
    return CancellationResponse(
        slot=SlotResponse.model_validate(slot),
        booking=BookingResponse.model_validate(booking) if booking is not None else None,
    )


@router.post('/{booking_id}/complete', response_model=BookingResponse)
def complete_session_booking(
    booking_id: int,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking = booking_coordinator.complete_booking(db, booking_id, provider_id=principal.user_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    log_activity(principal.user_id, 'booking_completed', 'Session booking completed', {'booking_id': booking_id})
    return booking


@router.get('/mine', response_model=list[BookingResponse])
def list_my_bookings(
    principal: Principal = Depends(require_client),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_coordinator.list_client_bookings(db, principal.user_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get('', response_model=list[BookingResponse])
def list_provider_bookings(
    booking_status: Literal['scheduled', 'completed', 'cancelled'] | None = Query(default=None, alias='status'),
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_coordinator.list_provider_bookings(db, principal.user_id, booking_status)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
