from datetime import date, datetime, time, timedelta
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from scheduling.core import config
from scheduling.core.clock import to_naive_utc
from scheduling.models.availability_slot import MAX_NOTES_LENGTH
from scheduling.models.availability_template import (
    DEFAULT_BREAK_MINUTES,
    DEFAULT_SESSION_DURATION_MINUTES,
    MAX_BREAK_MINUTES,
    MAX_SESSION_DURATION_MINUTES,
    MIN_SESSION_DURATION_MINUTES,
)

SessionType = Literal['individual', 'group', 'couples', 'family']
SlotStatus = Literal['available', 'booked', 'cancelled', 'blocked']


def normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_NOTES_LENGTH} characters or fewer.')

    return normalized


def check_template_window(start_time: time, end_time: time, session_duration: int) -> None:
    if start_time >= end_time:
        raise ValueError('Start time must be before end time.')
    first_session_end = datetime.combine(date.min, start_time) + timedelta(minutes=session_duration)
    if first_session_end > datetime.combine(date.min, end_time):
        raise ValueError('The time window is too short for a single session.')


class TemplateCreate(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    session_duration: int = Field(
        default=DEFAULT_SESSION_DURATION_MINUTES,
        ge=MIN_SESSION_DURATION_MINUTES,
        le=MAX_SESSION_DURATION_MINUTES,
    )
    break_between_sessions: int = Field(default=DEFAULT_BREAK_MINUTES, ge=0, le=MAX_BREAK_MINUTES)
    is_active: bool = True

    @model_validator(mode='after')
    def validate_window(self) -> 'TemplateCreate':
        check_template_window(self.start_time, self.end_time, self.session_duration)
        return self


class TemplateUpdate(BaseModel):
    """Partial template update: only fields present in the payload are applied."""

    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    session_duration: Optional[int] = Field(
        default=None,
        ge=MIN_SESSION_DURATION_MINUTES,
        le=MAX_SESSION_DURATION_MINUTES,
    )
    break_between_sessions: Optional[int] = Field(default=None, ge=0, le=MAX_BREAK_MINUTES)
    is_active: Optional[bool] = None

    @model_validator(mode='after')
    def reject_explicit_nulls(self) -> 'TemplateUpdate':
        for field_name in self.model_fields_set:
            if getattr(self, field_name) is None:
                raise ValueError(f'{field_name} cannot be null.')
        return self


class TemplateResponse(BaseModel):
    id: int
    provider_id: int
    day_of_week: int
    start_time: time
    end_time: time
    session_duration: int
    break_between_sessions: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class GenerateSlotsRequest(BaseModel):
    template_id: int = Field(gt=0)
    start_date: date
    end_date: date
    exclude_dates: list[date] = Field(default_factory=list)
    session_type: SessionType = 'individual'

    @model_validator(mode='after')
    def validate_range(self) -> 'GenerateSlotsRequest':
        if self.end_date < self.start_date:
            raise ValueError('End date must not be before start date.')
        if (self.end_date - self.start_date).days >= config.GENERATION_MAX_RANGE_DAYS:
            raise ValueError(f'Slots can be generated for at most {config.GENERATION_MAX_RANGE_DAYS} days at once.')
        return self


class SlotCreate(BaseModel):
    start_time: datetime
    end_time: datetime
    status: Literal['available', 'blocked'] = 'available'
    session_type: SessionType = 'individual'
    notes: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_timestamp(cls, value: datetime) -> datetime:
        return to_naive_utc(value).replace(microsecond=0)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_notes(value)

    @model_validator(mode='after')
    def validate_interval(self) -> 'SlotCreate':
        if self.start_time >= self.end_time:
            raise ValueError('Start time must be before end time.')
        return self


class SlotUpdate(BaseModel):
    """Partial slot update: only fields present in the payload are applied."""

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    session_type: Optional[SessionType] = None
    notes: Optional[str] = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_timestamp(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return to_naive_utc(value).replace(microsecond=0)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_notes(value)

    @model_validator(mode='after')
    def reject_explicit_nulls(self) -> 'SlotUpdate':
        for field_name in ('start_time', 'end_time', 'session_type'):
            if field_name in self.model_fields_set and getattr(self, field_name) is None:
                raise ValueError(f'{field_name} cannot be null.')
        return self


class SlotResponse(BaseModel):
    id: int
    provider_id: int
    template_id: int | None = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: str
    session_type: str
    notes: str | None = None

    model_config = ConfigDict(from_attributes=True)


class SlotSearchFilters(BaseModel):
    provider_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    session_type: SessionType | None = None
    min_duration_minutes: int | None = Field(default=None, ge=1)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=config.SEARCH_DEFAULT_LIMIT, ge=1, le=config.SEARCH_MAX_LIMIT)

    @field_validator('start_date', 'end_date')
    @classmethod
    def validate_timestamp(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return to_naive_utc(value)


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class SlotSearchResponse(BaseModel):
    slots: list[SlotResponse]
    pagination: PaginationResponse


class GenerateSlotsResponse(BaseModel):
    template_id: int
    created: int
    skipped: int
    slots: list[SlotResponse]


class CalendarSummaryResponse(BaseModel):
    total_slots: int
    available_slots: int
    booked_slots: int
    cancelled_slots: int
    blocked_slots: int
    utilization_rate: int


class CalendarResponse(BaseModel):
    start_date: datetime
    end_date: datetime
    available: list[SlotResponse]
    booked: list[SlotResponse]
    cancelled: list[SlotResponse]
    blocked: list[SlotResponse]
    summary: CalendarSummaryResponse
