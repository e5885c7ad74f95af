from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scheduling.core import config
from scheduling.schemas.availability import SessionType, SlotResponse, normalize_notes


class BookingRequest(BaseModel):
    session_type: SessionType | None = None
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_notes(value)


class ProviderRateUpdate(BaseModel):
    session_rate: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    currency: str = config.DEFAULT_CURRENCY

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, value: str) -> str:
        normalized = value.strip().upper()
        if len(normalized) != 3 or not normalized.isalpha():
            raise ValueError('Currency must be a three-letter ISO code.')
        return normalized


class ProviderRateResponse(BaseModel):
    provider_id: int
    session_rate: Decimal
    currency: str
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class CancelRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return normalize_notes(value)


class BookingResponse(BaseModel):
    id: int
    availability_slot_id: int | None = None
    provider_id: int
    user_id: int
    session_type: str
    status: Literal['scheduled', 'completed', 'cancelled']
    start_time: datetime
    end_time: datetime
    session_rate: Decimal | None = None
    currency: str
    notes: str | None = None
    cancel_reason: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class BookingResultResponse(BaseModel):
    slot: SlotResponse
    booking: BookingResponse


class CancellationResponse(BaseModel):
    slot: SlotResponse
    booking: BookingResponse | None = None
