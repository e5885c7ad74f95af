import threading
from datetime import date, datetime, time, timedelta, timezone

import pytest
from pydantic import ValidationError as PayloadValidationError
from sqlalchemy.orm import sessionmaker

from scheduling.database import Base, build_engine
from scheduling.errors import NotFound, OverlapError, ValidationError
from scheduling.models.availability_slot import AvailabilitySlot
from scheduling.schemas.availability import SlotCreate, SlotSearchFilters, SlotUpdate, TemplateCreate
from scheduling.services import slot_repository, template_store
from scheduling.services.slot_generator import generate_slot_intervals


def _slot(start: datetime, minutes: int = 60, **fields) -> SlotCreate:
    return SlotCreate(start_time=start, end_time=start + timedelta(minutes=minutes), **fields)


def test_create_slot_records_duration(scheduling_db) -> None:
    slot = slot_repository.create_slot(scheduling_db, 1, _slot(datetime(2026, 1, 6, 9, 0), 50, session_type='couples'))

    assert slot.status == 'available'
    assert slot.duration_minutes == 50
    assert slot.session_type == 'couples'


def test_create_slot_rejects_overlap_with_available_slot(scheduling_db, make_slot) -> None:
    existing = make_slot(datetime(2026, 1, 6, 9, 0))

    with pytest.raises(OverlapError) as exception_info:
        slot_repository.create_slot(scheduling_db, 1, _slot(datetime(2026, 1, 6, 9, 30)))

    assert exception_info.value.conflicting_slot_id == existing.id


def test_create_slot_rejects_overlap_with_booked_slot(scheduling_db, make_slot) -> None:
    make_slot(datetime(2026, 1, 6, 9, 0), status='booked')

    with pytest.raises(OverlapError):
        slot_repository.create_slot(scheduling_db, 1, _slot(datetime(2026, 1, 6, 8, 30)))


def test_create_slot_allows_adjacent_and_other_provider_and_cancelled(scheduling_db, make_slot) -> None:
    make_slot(datetime(2026, 1, 6, 9, 0))
    make_slot(datetime(2026, 1, 6, 11, 0), status='cancelled')

    adjacent = slot_repository.create_slot(scheduling_db, 1, _slot(datetime(2026, 1, 6, 10, 0)))
    other_provider = slot_repository.create_slot(scheduling_db, 2, _slot(datetime(2026, 1, 6, 9, 0)))
    over_cancelled = slot_repository.create_slot(scheduling_db, 1, _slot(datetime(2026, 1, 6, 11, 0)))

    assert {adjacent.provider_id, other_provider.provider_id, over_cancelled.provider_id} == {1, 2}


def test_slot_create_rejects_inverted_interval() -> None:
    with pytest.raises(PayloadValidationError):
        SlotCreate(start_time=datetime(2026, 1, 6, 10, 0), end_time=datetime(2026, 1, 6, 9, 0))


def test_list_slots_is_ordered_and_filters_status(scheduling_db, make_slot) -> None:
    late = make_slot(datetime(2026, 1, 6, 15, 0))
    early = make_slot(datetime(2026, 1, 6, 9, 0), status='booked')
    make_slot(datetime(2026, 1, 8, 9, 0))
    make_slot(datetime(2026, 1, 6, 12, 0), provider_id=2)

    day_start = datetime(2026, 1, 6, 0, 0)
    day_end = datetime(2026, 1, 7, 0, 0)

    assert [slot.id for slot in slot_repository.list_slots(scheduling_db, 1, day_start, day_end)] == [early.id, late.id]
    assert [slot.id for slot in slot_repository.list_slots(scheduling_db, 1, day_start, day_end, 'available')] == [late.id]


def test_update_slot_applies_partial_fields(scheduling_db, make_slot) -> None:
    slot = make_slot(datetime(2026, 1, 6, 9, 0))

    updated = slot_repository.update_slot(
        scheduling_db,
        slot.id,
        1,
        SlotUpdate(end_time=datetime(2026, 1, 6, 9, 45), notes='  bring forms  '),
    )

    assert updated.start_time == datetime(2026, 1, 6, 9, 0)
    assert updated.end_time == datetime(2026, 1, 6, 9, 45)
    assert updated.duration_minutes == 45
    assert updated.notes == 'bring forms'
    assert updated.session_type == 'individual'


def test_update_slot_rejects_overlapping_move(scheduling_db, make_slot) -> None:
    make_slot(datetime(2026, 1, 6, 9, 0))
    slot = make_slot(datetime(2026, 1, 6, 11, 0))

    with pytest.raises(OverlapError):
        slot_repository.update_slot(scheduling_db, slot.id, 1, SlotUpdate(start_time=datetime(2026, 1, 6, 9, 30)))


def test_update_slot_rejects_non_available_slot(scheduling_db, make_slot) -> None:
    slot = make_slot(datetime(2026, 1, 6, 9, 0), status='booked')

    with pytest.raises(ValidationError):
        slot_repository.update_slot(scheduling_db, slot.id, 1, SlotUpdate(notes='moved'))


def test_update_slot_of_another_provider_is_not_found(scheduling_db, make_slot) -> None:
    slot = make_slot(datetime(2026, 1, 6, 9, 0))

    with pytest.raises(NotFound):
        slot_repository.update_slot(scheduling_db, slot.id, 2, SlotUpdate(notes='mine now'))


def test_delete_slot_only_while_available(scheduling_db, make_slot) -> None:
    available = make_slot(datetime(2026, 1, 6, 9, 0))
    booked = make_slot(datetime(2026, 1, 6, 11, 0), status='booked')

    slot_repository.delete_slot(scheduling_db, available.id, 1)

    assert scheduling_db.get(AvailabilitySlot, available.id) is None
    with pytest.raises(ValidationError):
        slot_repository.delete_slot(scheduling_db, booked.id, 1)
    with pytest.raises(NotFound):
        slot_repository.delete_slot(scheduling_db, 999, 1)


def test_find_available_excludes_past_and_applies_filters(scheduling_db, make_slot, fixed_now) -> None:
    make_slot(fixed_now - timedelta(hours=2))
    short = make_slot(fixed_now + timedelta(hours=1), minutes=30)
    group = make_slot(fixed_now + timedelta(hours=3), session_type='group')
    make_slot(fixed_now + timedelta(hours=5), status='booked')
    other = make_slot(fixed_now + timedelta(hours=2), provider_id=2)

    slots, total = slot_repository.find_available(scheduling_db, SlotSearchFilters(), now=fixed_now)
    assert total == 3
    assert [slot.id for slot in slots] == [short.id, other.id, group.id]

    slots, _ = slot_repository.find_available(scheduling_db, SlotSearchFilters(min_duration_minutes=45), now=fixed_now)
    assert [slot.id for slot in slots] == [other.id, group.id]

    slots, _ = slot_repository.find_available(scheduling_db, SlotSearchFilters(session_type='group'), now=fixed_now)
    assert [slot.id for slot in slots] == [group.id]

    slots, _ = slot_repository.find_available(scheduling_db, SlotSearchFilters(provider_id=2), now=fixed_now)
    assert [slot.id for slot in slots] == [other.id]

    slots, _ = slot_repository.find_available(
        scheduling_db,
        SlotSearchFilters(end_date=fixed_now + timedelta(hours=2)),
        now=fixed_now,
    )
    assert [slot.id for slot in slots] == [short.id]


def test_find_available_paginates(scheduling_db, make_slot, fixed_now) -> None:
    created = [make_slot(fixed_now + timedelta(hours=offset)) for offset in range(1, 6)]

    slots, total = slot_repository.find_available(scheduling_db, SlotSearchFilters(page=2, limit=2), now=fixed_now)

    assert total == 5
    assert [slot.id for slot in slots] == [created[2].id, created[3].id]
    assert slot_repository.page_count(total, 2) == 3


def test_regenerating_same_template_range_is_idempotent(scheduling_db) -> None:
    template = template_store.create_template(
        scheduling_db,
        1,
        TemplateCreate(day_of_week=1, start_time=time(9, 0), end_time=time(17, 0)),
    )
    intervals = generate_slot_intervals(template, date(2026, 1, 5), date(2026, 1, 18))

    first_created, first_skipped = slot_repository.create_generated_slots(
        scheduling_db, 1, intervals, template_id=template.id,
    )
    second_created, second_skipped = slot_repository.create_generated_slots(
        scheduling_db, 1, intervals, template_id=template.id,
    )

    assert (len(first_created), first_skipped) == (12, 0)
    assert (len(second_created), second_skipped) == (0, 12)
    assert scheduling_db.query(AvailabilitySlot).count() == 12


def test_generation_skips_intervals_overlapping_manual_slots(scheduling_db, make_slot) -> None:
    make_slot(datetime(2026, 1, 5, 10, 30), minutes=30)
    intervals = [
        (datetime(2026, 1, 5, 9, 0), datetime(2026, 1, 5, 10, 0)),
        (datetime(2026, 1, 5, 10, 15), datetime(2026, 1, 5, 11, 15)),
    ]

    created, skipped = slot_repository.create_generated_slots(scheduling_db, 1, intervals)

    assert [slot.start_time for slot in created] == [datetime(2026, 1, 5, 9, 0)]
    assert skipped == 1


def test_build_calendar_groups_by_status(scheduling_db, make_slot) -> None:
    make_slot(datetime(2026, 1, 6, 9, 0))
    make_slot(datetime(2026, 1, 6, 10, 0), status='booked')
    make_slot(datetime(2026, 1, 6, 11, 0), status='booked')
    make_slot(datetime(2026, 1, 6, 12, 0), status='blocked')
    make_slot(datetime(2026, 1, 6, 13, 0), status='cancelled')

    calendar = slot_repository.build_calendar(
        scheduling_db,
        1,
        datetime(2026, 1, 6, 0, 0),
        datetime(2026, 1, 6, 23, 59),
    )

    assert calendar['summary'] == {
        'total_slots': 5,
        'available_slots': 1,
        'booked_slots': 2,
        'cancelled_slots': 1,
        'blocked_slots': 1,
        'utilization_rate': 67,
    }
    assert len(calendar['booked']) == 2


def test_build_calendar_of_empty_range_has_zero_utilization(scheduling_db) -> None:
    calendar = slot_repository.build_calendar(
        scheduling_db,
        1,
        datetime(2026, 1, 6, 0, 0),
        datetime(2026, 1, 6, 23, 59),
    )

    assert calendar['summary']['utilization_rate'] == 0
    assert calendar['summary']['total_slots'] == 0


def test_offset_aware_search_and_listing_match_stored_utc_slots(scheduling_db, fixed_now) -> None:
    plus_two = timezone(timedelta(hours=2))
    created = slot_repository.create_slot(
        scheduling_db,
        1,
        _slot(datetime(2026, 1, 6, 11, 0, tzinfo=plus_two)),
    )
    window_start = datetime(2026, 1, 6, 10, 0, tzinfo=plus_two)
    window_end = datetime(2026, 1, 6, 13, 0, tzinfo=plus_two)

    found, total = slot_repository.find_available(
        scheduling_db,
        SlotSearchFilters(start_date=window_start, end_date=window_end),
        now=fixed_now,
    )
    listed = slot_repository.list_slots(scheduling_db, 1, window_start, window_end)

    assert created.start_time == datetime(2026, 1, 6, 9, 0)
    assert total == 1
    assert [slot.id for slot in found] == [created.id]
    assert [slot.id for slot in listed] == [created.id]


def test_concurrent_generations_over_overlapping_ranges_converge(tmp_path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'generation.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    rule = TemplateCreate(day_of_week=1, start_time=time(9, 0), end_time=time(17, 0))
    ranges = [(date(2026, 1, 5), date(2026, 1, 18)), (date(2026, 1, 12), date(2026, 1, 25))]

    barrier = threading.Barrier(len(ranges))
    results: list[tuple[int, int]] = []
    failures: list[Exception] = []
    results_lock = threading.Lock()

    def generate(start_date: date, end_date: date) -> None:
        db = factory()
        try:
            intervals = generate_slot_intervals(rule, start_date, end_date)
            barrier.wait()
            created, skipped = slot_repository.create_generated_slots(db, 1, intervals)
            with results_lock:
                results.append((len(created), skipped))
        except Exception as exc:
            with results_lock:
                failures.append(exc)
        finally:
            db.close()

    threads = [threading.Thread(target=generate, args=date_range) for date_range in ranges]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert failures == []
    assert sum(created for created, _ in results) == 18
    assert sum(skipped for _, skipped in results) == 6

    check = factory()
    try:
        slots = check.query(AvailabilitySlot).order_by(AvailabilitySlot.start_time.asc()).all()
    finally:
        check.close()
        engine.dispose()

    assert len(slots) == 18
    assert len({slot.start_time for slot in slots}) == 18
    for earlier, later in zip(slots, slots[1:]):
        assert earlier.end_time <= later.start_time
