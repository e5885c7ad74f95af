"""Slot and booking state machine.

Slot:     available -> booked -> (available | cancelled)
          available -> blocked -> available
          available -> cancelled | (deleted)
Booking:  scheduled -> completed | cancelled

Every transition is a single conditional UPDATE keyed on the expected current
state. When the update matches zero rows the precondition no longer holds and
the caller gets an error; nothing here retries.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scheduling.core import config
from scheduling.core.clock import utc_now
from scheduling.database import store_errors
from scheduling.errors import NotFound, OverlapError, SlotUnavailable, ValidationError
from scheduling.models.availability_slot import (
    SLOT_AVAILABLE,
    SLOT_BLOCKED,
    SLOT_BOOKED,
    SLOT_CANCELLED,
    AvailabilitySlot,
)
from scheduling.models.session_booking import (
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    BOOKING_SCHEDULED,
    SessionBooking,
)
from scheduling.schemas.bookings import BookingRequest
from scheduling.services.rate_store import find_provider_rate
from scheduling.services.slot_repository import find_overlapping_slot, get_slot, lock_provider_slots

logger = logging.getLogger(__name__)

ACTOR_CLIENT = 'client'
ACTOR_PROVIDER = 'provider'
ACTOR_SYSTEM = 'system'
ACTOR_ROLES = (ACTOR_CLIENT, ACTOR_PROVIDER, ACTOR_SYSTEM)


@dataclass(frozen=True)
class CancellationActor:
    role: str
    actor_id: int | None = None

    def __post_init__(self) -> None:
        if self.role not in ACTOR_ROLES:
            raise ValueError(f'Unknown cancellation actor role: {self.role}')
        if self.role != ACTOR_SYSTEM and self.actor_id is None:
            raise ValueError(f'A {self.role} cancellation requires an actor id.')


def get_active_booking(db: Session, slot_id: int) -> SessionBooking | None:
    return db.query(SessionBooking).filter(
        SessionBooking.availability_slot_id == slot_id,
        SessionBooking.status == BOOKING_SCHEDULED,
    ).populate_existing().first()


def book_slot(
    db: Session,
    slot_id: int,
    client_id: int,
    data: BookingRequest,
    now: datetime | None = None,
) -> tuple[AvailabilitySlot, SessionBooking]:
    """Atomically move a slot from available to booked and record the booking.

    Exactly one of any number of concurrent callers wins; the rest get
    ``SlotUnavailable``. The booking copies the provider's current rate.
    """
    now = now or utc_now()

    with store_errors(db, 'book slot'):
        claimed = db.query(AvailabilitySlot).filter(
            AvailabilitySlot.id == slot_id,
            AvailabilitySlot.status == SLOT_AVAILABLE,
            AvailabilitySlot.start_time > now,
        ).update({AvailabilitySlot.status: SLOT_BOOKED}, synchronize_session=False)

        if claimed != 1:
            db.rollback()
            slot = get_slot(db, slot_id)
            db.rollback()
            raise SlotUnavailable(
                'This slot is no longer available.',
                entity='slot',
                entity_id=slot_id,
                transition=f'{slot.status}->booked',
            )

        slot = get_slot(db, slot_id)
        rate = find_provider_rate(db, slot.provider_id)
        booking = SessionBooking(
            availability_slot_id=slot.id,
            provider_id=slot.provider_id,
            user_id=client_id,
            session_type=data.session_type or slot.session_type,
            status=BOOKING_SCHEDULED,
            start_time=slot.start_time,
            end_time=slot.end_time,
            session_rate=rate.session_rate if rate is not None else None,
            currency=rate.currency if rate is not None else config.DEFAULT_CURRENCY,
            notes=data.notes,
        )
        db.add(booking)

        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise SlotUnavailable(
                'This slot already has an active booking.',
                entity='slot',
                entity_id=slot_id,
                transition='available->booked',
            ) from exc

        db.refresh(slot)
        db.refresh(booking)

    logger.info('Client %s booked slot %s (booking %s)', client_id, slot_id, booking.id)
    return slot, booking


def cancel_booking(
    db: Session,
    slot_id: int,
    actor: CancellationActor,
    reason: str | None = None,
    now: datetime | None = None,
) -> tuple[AvailabilitySlot, SessionBooking | None]:
    """Cancel the active booking on a slot.

    Client and system cancellations release the slot back to available. A
    provider cancellation retires the slot itself (status cancelled), with or
    without a booking on it.
    """
    now = now or utc_now()

    with store_errors(db, 'cancel booking'):
        booking = get_active_booking(db, slot_id)

        if actor.role == ACTOR_PROVIDER:
            slot = get_slot(db, slot_id, actor.actor_id)
            # A booked slot is only cancellable through its scheduled booking.
            if booking is None and slot.status != SLOT_AVAILABLE:
                raise SlotUnavailable(
                    'Only open slots or slots with a scheduled booking can be cancelled.',
                    entity='slot',
                    entity_id=slot_id,
                    transition=f'{slot.status}->cancelled',
                )
            target_status = SLOT_CANCELLED
            expected_statuses = (SLOT_BOOKED,) if booking is not None else (SLOT_AVAILABLE,)
        else:
            if booking is None or (actor.role == ACTOR_CLIENT and booking.user_id != actor.actor_id):
                raise NotFound(
                    'No active booking found for this slot.',
                    entity='slot',
                    entity_id=slot_id,
                    transition='booked->available',
                )
            target_status = SLOT_AVAILABLE
            expected_statuses = (SLOT_BOOKED,)

        if booking is not None:
            cancelled = db.query(SessionBooking).filter(
                SessionBooking.id == booking.id,
                SessionBooking.status == BOOKING_SCHEDULED,
            ).update(
                {
                    SessionBooking.status: BOOKING_CANCELLED,
                    SessionBooking.cancel_reason: reason,
                    SessionBooking.cancelled_by: actor.role,
                    SessionBooking.cancelled_at: now,
                },
                synchronize_session=False,
            )
            if cancelled != 1:
                raise NotFound(
                    'No active booking found for this slot.',
                    entity='booking',
                    entity_id=booking.id,
                    transition='scheduled->cancelled',
                )

        slot_values = {AvailabilitySlot.status: target_status}
        if target_status == SLOT_CANCELLED and reason is not None:
            slot_values[AvailabilitySlot.notes] = reason

        slot_query = db.query(AvailabilitySlot).filter(
            AvailabilitySlot.id == slot_id,
            AvailabilitySlot.status.in_(expected_statuses),
        )
        if actor.role == ACTOR_PROVIDER:
            slot_query = slot_query.filter(AvailabilitySlot.provider_id == actor.actor_id)

        if slot_query.update(slot_values, synchronize_session=False) != 1:
            raise NotFound(
                'No cancellable slot found.',
                entity='slot',
                entity_id=slot_id,
                transition=f'->{target_status}',
            )

        db.commit()

        slot = get_slot(db, slot_id)
        if booking is not None:
            db.refresh(booking)

    logger.info('Slot %s cancelled by %s; slot is now %s', slot_id, actor.role, target_status)
    return slot, booking


def complete_booking(
    db: Session,
    booking_id: int,
    now: datetime | None = None,
    provider_id: int | None = None,
) -> SessionBooking:
    """Mark a scheduled booking completed once its session has ended."""
    now = now or utc_now()

    with store_errors(db, 'complete booking'):
        query = db.query(SessionBooking).filter(
            SessionBooking.id == booking_id,
            SessionBooking.status == BOOKING_SCHEDULED,
        )
        if provider_id is not None:
            query = query.filter(SessionBooking.provider_id == provider_id)
        booking = query.populate_existing().first()

        if booking is None:
            raise NotFound(
                'No scheduled booking found.',
                entity='booking',
                entity_id=booking_id,
                transition='scheduled->completed',
            )

        if booking.end_time > now:
            raise ValidationError(
                'The session has not ended yet.',
                entity='booking',
                entity_id=booking_id,
                transition='scheduled->completed',
            )

        completed = db.query(SessionBooking).filter(
            SessionBooking.id == booking_id,
            SessionBooking.status == BOOKING_SCHEDULED,
        ).update(
            {SessionBooking.status: BOOKING_COMPLETED, SessionBooking.completed_at: now},
            synchronize_session=False,
        )
        if completed != 1:
            raise NotFound(
                'No scheduled booking found.',
                entity='booking',
                entity_id=booking_id,
                transition='scheduled->completed',
            )

        db.commit()
        db.refresh(booking)

    return booking


def complete_elapsed_bookings(db: Session, now: datetime | None = None) -> int:
    """Lazily complete every scheduled booking whose session has ended."""
    now = now or utc_now()

    with store_errors(db, 'complete elapsed bookings'):
        completed = db.query(SessionBooking).filter(
            SessionBooking.status == BOOKING_SCHEDULED,
            SessionBooking.end_time <= now,
        ).update(
            {SessionBooking.status: BOOKING_COMPLETED, SessionBooking.completed_at: now},
            synchronize_session=False,
        )
        db.commit()

    if completed:
        logger.info('Completed %s elapsed bookings', completed)
    return completed


def list_client_bookings(db: Session, client_id: int, now: datetime | None = None) -> list[SessionBooking]:
    complete_elapsed_bookings(db, now)

    with store_errors(db, 'list bookings'):
        return db.query(SessionBooking).filter(
            SessionBooking.user_id == client_id,
        ).order_by(SessionBooking.start_time.asc()).all()


def list_provider_bookings(
    db: Session,
    provider_id: int,
    status: str | None = None,
    now: datetime | None = None,
) -> list[SessionBooking]:
    complete_elapsed_bookings(db, now)

    with store_errors(db, 'list bookings'):
        query = db.query(SessionBooking).filter(SessionBooking.provider_id == provider_id)
        if status is not None:
            query = query.filter(SessionBooking.status == status)
        return query.order_by(SessionBooking.start_time.asc()).all()


def block_slot(db: Session, slot_id: int, provider_id: int) -> AvailabilitySlot:
    with store_errors(db, 'block slot'):
        blocked = db.query(AvailabilitySlot).filter(
            AvailabilitySlot.id == slot_id,
            AvailabilitySlot.provider_id == provider_id,
            AvailabilitySlot.status == SLOT_AVAILABLE,
        ).update({AvailabilitySlot.status: SLOT_BLOCKED}, synchronize_session=False)

        if blocked != 1:
            slot = get_slot(db, slot_id, provider_id)
            raise SlotUnavailable(
                'Only available slots can be blocked.',
                entity='slot',
                entity_id=slot_id,
                transition=f'{slot.status}->blocked',
            )

        db.commit()

    return get_slot(db, slot_id, provider_id)


def unblock_slot(db: Session, slot_id: int, provider_id: int) -> AvailabilitySlot:
    with store_errors(db, 'unblock slot'):
        lock_provider_slots(db, provider_id)
        slot = get_slot(db, slot_id, provider_id)

        if slot.status != SLOT_BLOCKED:
            raise SlotUnavailable(
                'Only blocked slots can be unblocked.',
                entity='slot',
                entity_id=slot_id,
                transition=f'{slot.status}->available',
            )

        conflicting = find_overlapping_slot(db, provider_id, slot.start_time, slot.end_time, exclude_slot_id=slot_id)
        if conflicting is not None:
            raise OverlapError(
                'Unblocking this slot would overlap existing availability.',
                conflicting_slot_id=conflicting.id,
                entity='slot',
                entity_id=slot_id,
                transition='blocked->available',
            )

        try:
            unblocked = db.query(AvailabilitySlot).filter(
                AvailabilitySlot.id == slot_id,
                AvailabilitySlot.status == SLOT_BLOCKED,
            ).update({AvailabilitySlot.status: SLOT_AVAILABLE}, synchronize_session=False)
        except IntegrityError as exc:
            db.rollback()
            raise OverlapError(
                'Unblocking this slot would overlap existing availability.',
                entity='slot',
                entity_id=slot_id,
                transition='blocked->available',
            ) from exc

        if unblocked != 1:
            raise SlotUnavailable(
                'Only blocked slots can be unblocked.',
                entity='slot',
                entity_id=slot_id,
                transition='blocked->available',
            )

        db.commit()

    return get_slot(db, slot_id, provider_id)
