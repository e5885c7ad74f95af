from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduling.auth.dependencies import ROLE_PROVIDER, Principal, get_current_principal, require_provider
from scheduling.core import config
from scheduling.core.clock import to_naive_utc
from scheduling.database import ensure_scheduling_schema, get_db
from scheduling.errors import SchedulingError, to_http_exception
from scheduling.schemas.availability import (
    CalendarResponse,
    GenerateSlotsRequest,
    GenerateSlotsResponse,
    PaginationResponse,
    SessionType,
    SlotCreate,
    SlotResponse,
    SlotSearchFilters,
    SlotSearchResponse,
    SlotStatus,
    SlotUpdate,
    TemplateCreate,
    TemplateResponse,
    TemplateUpdate,
)
from scheduling.schemas.bookings import ProviderRateResponse, ProviderRateUpdate
from scheduling.services import booking_coordinator, rate_store, slot_repository, template_store
from scheduling.services.activity_logger import log_activity
from scheduling.services.slot_generator import generate_slot_intervals

router = APIRouter(tags=['availability'])


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and credentials.',
        ) from exc


def _require_range(start_date: datetime, end_date: datetime) -> None:
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='End date must not be before start date.',
        )


@router.get('/search', response_model=SlotSearchResponse)
def search_available_slots(
    provider_id: int | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    session_type: SessionType | None = Query(default=None),
    duration: int | None = Query(default=None, ge=1),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=config.SEARCH_DEFAULT_LIMIT, ge=1, le=config.SEARCH_MAX_LIMIT),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    filters = SlotSearchFilters(
        provider_id=provider_id,
        start_date=start_date,
        end_date=end_date,
        session_type=session_type,
        min_duration_minutes=duration,
        page=page,
        limit=limit,
    )
    try:
        slots, total = slot_repository.find_available(db, filters)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return SlotSearchResponse(
        slots=[SlotResponse.model_validate(slot) for slot in slots],
        pagination=PaginationResponse(
            page=page,
            limit=limit,
            total=total,
            pages=slot_repository.page_count(total, limit),
        ),
    )


@router.get('/templates', response_model=list[TemplateResponse])
def list_availability_templates(
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return template_store.list_templates(db, principal.user_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/templates', response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
def create_availability_template(
    data: TemplateCreate,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        template = template_store.create_template(db, principal.user_id, data)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    log_activity(principal.user_id, 'template_created', 'Availability template created', {
        'template_id': template.id,
        'day_of_week': template.day_of_week,
        'start_time': template.start_time,
        'end_time': template.end_time,
    })
    return template


@router.patch('/templates/{template_id}', response_model=TemplateResponse)
def update_availability_template(
    template_id: int,
    data: TemplateUpdate,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        template = template_store.update_template(db, template_id, principal.user_id, data)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    log_activity(principal.user_id, 'template_updated', 'Availability template updated', {
        'template_id': template_id,
        'updated_fields': sorted(data.model_fields_set),
    })
    return template


@router.delete('/templates/{template_id}', response_model=TemplateResponse)
def deactivate_availability_template(
    template_id: int,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        template = template_store.deactivate_template(db, template_id, principal.user_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    log_activity(principal.user_id, 'template_deactivated', 'Availability template deactivated', {
        'template_id': template_id,
    })
    return template


@router.post('/generate', response_model=GenerateSlotsResponse, status_code=status.HTTP_201_CREATED)
def generate_slots_from_template(
    data: GenerateSlotsRequest,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        template = template_store.get_template(db, data.template_id, principal.user_id, active_only=True)
        intervals = generate_slot_intervals(template, data.start_date, data.end_date, data.exclude_dates)
        slots, skipped = slot_repository.create_generated_slots(
            db,
            principal.user_id,
            intervals,
            template_id=template.id,
            session_type=data.session_type,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    log_activity(principal.user_id, 'slots_generated', 'Availability slots generated from template', {
        'template_id': data.template_id,
        'start_date': data.start_date,
        'end_date': data.end_date,
        'slots_created': len(slots),
        'slots_skipped': skipped,
    })
    return GenerateSlotsResponse(
        template_id=data.template_id,
        created=len(slots),
        skipped=skipped,
        slots=[SlotResponse.model_validate(slot) for slot in slots],
    )


@router.get('/slots', response_model=list[SlotResponse])
def list_availability_slots(
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    slot_status: SlotStatus | None = Query(default=None, alias='status'),
    provider_id: int | None = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    if principal.role == ROLE_PROVIDER:
        provider_id = principal.user_id
    elif provider_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Provider ID is required.',
        )

    start_date, end_date = to_naive_utc(start_date), to_naive_utc(end_date)
    _require_range(start_date, end_date)
    ensure_database_ready()

    try:
        return slot_repository.list_slots(db, provider_id, start_date, end_date, slot_status)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/slots', response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
def create_availability_slot(
    data: SlotCreate,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slot = slot_repository.create_slot(db, principal.user_id, data)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    log_activity(principal.user_id, 'slot_created', 'Availability slot created', {
        'slot_id': slot.id,
        'start_time': slot.start_time,
        'end_time': slot.end_time,
    })
    return slot


@router.patch('/slots/{slot_id}', response_model=SlotResponse)
def update_availability_slot(
    slot_id: int,
    data: SlotUpdate,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slot = slot_repository.update_slot(db, slot_id, principal.user_id, data)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    log_activity(principal.user_id, 'slot_updated', 'Availability slot updated', {
        'slot_id': slot_id,
        'updated_fields': sorted(data.model_fields_set),
    })
    return slot


@router.delete('/slots/{slot_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_availability_slot(
    slot_id: int,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slot_repository.delete_slot(db, slot_id, principal.user_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    log_activity(principal.user_id, 'slot_deleted', 'Availability slot deleted', {'slot_id': slot_id})


@router.post('/slots/{slot_id}/block', response_model=SlotResponse)
def block_availability_slot(
    slot_id: int,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slot = booking_coordinator.block_slot(db, slot_id, principal.user_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    log_activity(principal.user_id, 'slot_blocked', 'Availability slot blocked', {'slot_id': slot_id})
    return slot


@router.post('/slots/{slot_id}/unblock', response_model=SlotResponse)
def unblock_availability_slot(
    slot_id: int,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slot = booking_coordinator.unblock_slot(db, slot_id, principal.user_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    log_activity(principal.user_id, 'slot_unblocked', 'Availability slot unblocked', {'slot_id': slot_id})
    return slot


@router.get('/calendar', response_model=CalendarResponse)
def get_provider_calendar(
    start_date: date = Query(...),
    end_date: date = Query(...),
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    range_start = datetime.combine(start_date, datetime.min.time())
    range_end = datetime.combine(end_date, datetime.max.time())
    _require_range(range_start, range_end)
    ensure_database_ready()

    try:
        calendar = slot_repository.build_calendar(db, principal.user_id, range_start, range_end)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return CalendarResponse(
        start_date=range_start,
        end_date=range_end,
        available=[SlotResponse.model_validate(slot) for slot in calendar['available']],
        booked=[SlotResponse.model_validate(slot) for slot in calendar['booked']],
        cancelled=[SlotResponse.model_validate(slot) for slot in calendar['cancelled']],
        blocked=[SlotResponse.model_validate(slot) for slot in calendar['blocked']],
        summary=calendar['summary'],
    )


@router.get('/rate', response_model=ProviderRateResponse)
def get_session_rate(
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return rate_store.get_provider_rate(db, principal.user_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.put('/rate', response_model=ProviderRateResponse)
def set_session_rate(
    data: ProviderRateUpdate,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        rate = rate_store.set_provider_rate(db, principal.user_id, data)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    log_activity(principal.user_id, 'rate_updated', 'Session rate updated', {
        'session_rate': rate.session_rate,
        'currency': rate.currency,
    })
    return rate
