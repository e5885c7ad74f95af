"""Persistence of concrete availability slots.

The non-overlap invariant is enforced here for every path that puts a slot
into an active state: manual creation, template generation, edits and
unblocking. Two layers back it up: an explicit overlap query inside the
write transaction (serialised per provider on PostgreSQL with an advisory
lock) and a partial unique index on the active interval.
"""

import logging
import math
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scheduling.core.clock import to_naive_utc, utc_now
from scheduling.database import is_postgresql, store_errors
from scheduling.errors import NotFound, OverlapError, ValidationError
from scheduling.models.availability_slot import (
    ACTIVE_SLOT_STATUSES,
    DEFAULT_SESSION_TYPE,
    SLOT_AVAILABLE,
    SLOT_BLOCKED,
    SLOT_BOOKED,
    SLOT_CANCELLED,
    AvailabilitySlot,
)
from scheduling.schemas.availability import SlotCreate, SlotSearchFilters, SlotUpdate
from scheduling.services.slot_generator import Interval

logger = logging.getLogger(__name__)


def slot_duration_minutes(start_time: datetime, end_time: datetime) -> int:
    return int((end_time - start_time).total_seconds() // 60)


def lock_provider_slots(db: Session, provider_id: int) -> None:
    """Serialise overlap-check-then-write per provider for the current transaction."""
    if is_postgresql(db):
        db.execute(text('SELECT pg_advisory_xact_lock(:key)'), {'key': provider_id})


def find_overlapping_slot(
    db: Session,
    provider_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_slot_id: int | None = None,
) -> AvailabilitySlot | None:
    query = db.query(AvailabilitySlot).filter(
        AvailabilitySlot.provider_id == provider_id,
        AvailabilitySlot.status.in_(ACTIVE_SLOT_STATUSES),
        AvailabilitySlot.start_time < end_time,
        AvailabilitySlot.end_time > start_time,
    )
    if exclude_slot_id is not None:
        query = query.filter(AvailabilitySlot.id != exclude_slot_id)

    return query.order_by(AvailabilitySlot.start_time.asc()).first()


def _overlap_error(provider_id: int, conflicting: AvailabilitySlot | None, transition: str, slot_id=None) -> OverlapError:
    return OverlapError(
        f'Provider {provider_id} already has availability overlapping this interval.',
        conflicting_slot_id=conflicting.id if conflicting is not None else None,
        entity='slot',
        entity_id=slot_id,
        transition=transition,
    )


def _add_slot(
    db: Session,
    provider_id: int,
    start_time: datetime,
    end_time: datetime,
    *,
    status: str = SLOT_AVAILABLE,
    session_type: str = DEFAULT_SESSION_TYPE,
    notes: str | None = None,
    template_id: int | None = None,
) -> AvailabilitySlot:
    slot = AvailabilitySlot(
        provider_id=provider_id,
        template_id=template_id,
        start_time=start_time,
        end_time=end_time,
        duration_minutes=slot_duration_minutes(start_time, end_time),
        status=status,
        session_type=session_type,
        notes=notes,
    )
    db.add(slot)
    db.flush()
    return slot


def create_slot(db: Session, provider_id: int, data: SlotCreate) -> AvailabilitySlot:
    """Create an ad hoc slot. Fails with ``OverlapError`` on any active overlap."""
    with store_errors(db, 'create slot'):
        lock_provider_slots(db, provider_id)

        conflicting = find_overlapping_slot(db, provider_id, data.start_time, data.end_time)
        if conflicting is not None:
            raise _overlap_error(provider_id, conflicting, 'create')

        try:
            slot = _add_slot(
                db,
                provider_id,
                data.start_time,
                data.end_time,
                status=data.status,
                session_type=data.session_type,
                notes=data.notes,
            )
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise _overlap_error(provider_id, None, 'create') from exc

        db.refresh(slot)

    return slot


def create_generated_slots(
    db: Session,
    provider_id: int,
    intervals: Iterable[Interval],
    *,
    template_id: int | None = None,
    session_type: str = DEFAULT_SESSION_TYPE,
) -> tuple[list[AvailabilitySlot], int]:
    """Persist generated intervals, silently skipping any that overlap.

    Returns the created slots and the number of intervals skipped, so running
    the same generation twice creates nothing the second time.
    """
    created: list[AvailabilitySlot] = []
    skipped = 0

    with store_errors(db, 'generate slots'):
        lock_provider_slots(db, provider_id)

        try:
            for start_time, end_time in intervals:
                if find_overlapping_slot(db, provider_id, start_time, end_time) is not None:
                    skipped += 1
                    continue
                created.append(
                    _add_slot(
                        db,
                        provider_id,
                        start_time,
                        end_time,
                        session_type=session_type,
                        template_id=template_id,
                    )
                )
            db.commit()
        except IntegrityError as exc:
            # A concurrent generation won the race for one of these intervals.
            db.rollback()
            raise _overlap_error(provider_id, None, 'generate') from exc

        for slot in created:
            db.refresh(slot)

    return created, skipped


def get_slot(db: Session, slot_id: int, provider_id: int | None = None) -> AvailabilitySlot:
    with store_errors(db, 'load slot'):
        query = db.query(AvailabilitySlot).filter(AvailabilitySlot.id == slot_id)
        if provider_id is not None:
            query = query.filter(AvailabilitySlot.provider_id == provider_id)
        slot = query.populate_existing().first()

    if slot is None:
        raise NotFound('Availability slot not found.', entity='slot', entity_id=slot_id)

    return slot


def list_slots(
    db: Session,
    provider_id: int,
    start_time: datetime,
    end_time: datetime,
    status: str | None = None,
) -> list[AvailabilitySlot]:
    """Slots of a provider lying entirely inside ``[start_time, end_time]``, by start."""
    start_time, end_time = to_naive_utc(start_time), to_naive_utc(end_time)

    with store_errors(db, 'list slots'):
        query = db.query(AvailabilitySlot).filter(
            AvailabilitySlot.provider_id == provider_id,
            AvailabilitySlot.start_time >= start_time,
            AvailabilitySlot.end_time <= end_time,
        )
        if status is not None:
            query = query.filter(AvailabilitySlot.status == status)

        return query.order_by(AvailabilitySlot.start_time.asc(), AvailabilitySlot.id.asc()).all()


def update_slot(db: Session, slot_id: int, provider_id: int, data: SlotUpdate) -> AvailabilitySlot:
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError('No fields to update.', entity='slot', entity_id=slot_id, transition='update')

    with store_errors(db, 'update slot'):
        lock_provider_slots(db, provider_id)
        slot = get_slot(db, slot_id, provider_id)

        if slot.status != SLOT_AVAILABLE:
            raise ValidationError(
                'Only available slots can be edited.',
                entity='slot',
                entity_id=slot_id,
                transition=f'{slot.status}->update',
            )

        start_time = changes.get('start_time', slot.start_time)
        end_time = changes.get('end_time', slot.end_time)
        if start_time >= end_time:
            raise ValidationError(
                'Start time must be before end time.',
                entity='slot',
                entity_id=slot_id,
                transition='update',
            )

        if 'start_time' in changes or 'end_time' in changes:
            conflicting = find_overlapping_slot(db, provider_id, start_time, end_time, exclude_slot_id=slot_id)
            if conflicting is not None:
                raise _overlap_error(provider_id, conflicting, 'update', slot_id)
            changes['duration_minutes'] = slot_duration_minutes(start_time, end_time)

        values = {getattr(AvailabilitySlot, field_name): value for field_name, value in changes.items()}
        try:
            updated = db.query(AvailabilitySlot).filter(
                AvailabilitySlot.id == slot_id,
                AvailabilitySlot.provider_id == provider_id,
                AvailabilitySlot.status == SLOT_AVAILABLE,
            ).update(values, synchronize_session=False)
        except IntegrityError as exc:
            db.rollback()
            raise _overlap_error(provider_id, None, 'update', slot_id) from exc

        if updated != 1:
            raise ValidationError(
                'Only available slots can be edited.',
                entity='slot',
                entity_id=slot_id,
                transition='update',
            )

        db.commit()

    return get_slot(db, slot_id, provider_id)


def delete_slot(db: Session, slot_id: int, provider_id: int) -> None:
    """Delete a slot, permitted only while it is still available."""
    with store_errors(db, 'delete slot'):
        deleted = db.query(AvailabilitySlot).filter(
            AvailabilitySlot.id == slot_id,
            AvailabilitySlot.provider_id == provider_id,
            AvailabilitySlot.status == SLOT_AVAILABLE,
        ).delete(synchronize_session=False)

        if deleted == 1:
            db.commit()
            return

        slot = get_slot(db, slot_id, provider_id)
        raise ValidationError(
            'Only available slots can be deleted.',
            entity='slot',
            entity_id=slot_id,
            transition=f'{slot.status}->deleted',
        )


def find_available(
    db: Session,
    filters: SlotSearchFilters,
    now: datetime | None = None,
) -> tuple[list[AvailabilitySlot], int]:
    """Public browsing of bookable slots. Returns one page of slots and the total count."""
    now = now or utc_now()

    with store_errors(db, 'search slots'):
        query = db.query(AvailabilitySlot).filter(
            AvailabilitySlot.status == SLOT_AVAILABLE,
            AvailabilitySlot.start_time > now,
        )

        if filters.provider_id is not None:
            query = query.filter(AvailabilitySlot.provider_id == filters.provider_id)
        if filters.start_date is not None:
            query = query.filter(AvailabilitySlot.start_time >= filters.start_date)
        if filters.end_date is not None:
            query = query.filter(AvailabilitySlot.end_time <= filters.end_date)
        if filters.session_type is not None:
            query = query.filter(AvailabilitySlot.session_type == filters.session_type)
        if filters.min_duration_minutes is not None:
            query = query.filter(AvailabilitySlot.duration_minutes >= filters.min_duration_minutes)

        total = query.count()
        slots = query.order_by(
            AvailabilitySlot.start_time.asc(),
            AvailabilitySlot.id.asc(),
        ).offset((filters.page - 1) * filters.limit).limit(filters.limit).all()

    return slots, total


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


def build_calendar(db: Session, provider_id: int, start_time: datetime, end_time: datetime) -> dict:
    """Provider calendar view: slots grouped by status plus utilisation summary."""
    slots = list_slots(db, provider_id, start_time, end_time)

    calendar = {status: [] for status in (SLOT_AVAILABLE, SLOT_BOOKED, SLOT_CANCELLED, SLOT_BLOCKED)}
    for slot in slots:
        calendar.setdefault(slot.status, []).append(slot)

    available_count = len(calendar[SLOT_AVAILABLE])
    booked_count = len(calendar[SLOT_BOOKED])
    bookable_count = available_count + booked_count

    calendar['summary'] = {
        'total_slots': len(slots),
        'available_slots': available_count,
        'booked_slots': booked_count,
        'cancelled_slots': len(calendar[SLOT_CANCELLED]),
        'blocked_slots': len(calendar[SLOT_BLOCKED]),
        'utilization_rate': round(booked_count / bookable_count * 100) if bookable_count else 0,
    }
    return calendar
