"""Error taxonomy for the scheduling engine.

Every error carries the entity it concerns and, where relevant, the state
transition that was attempted so the HTTP layer can render a precise message.
"""

from fastapi import HTTPException, status


class SchedulingError(Exception):
    """Base class for every scheduling failure surfaced to callers."""

    def __init__(
        self,
        message: str,
        *,
        entity: str | None = None,
        entity_id: int | None = None,
        transition: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = entity_id
        self.transition = transition

    def context(self) -> dict:
        return {
            'entity': self.entity,
            'entity_id': self.entity_id,
            'transition': self.transition,
        }


class ValidationError(SchedulingError):
    """Malformed template or slot fields. Never retried."""


class OverlapError(SchedulingError):
    """The interval would overlap existing available or booked availability."""

    def __init__(self, message: str, *, conflicting_slot_id: int | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.conflicting_slot_id = conflicting_slot_id

    def context(self) -> dict:
        context = super().context()
        context['conflicting_slot_id'] = self.conflicting_slot_id
        return context


class SlotUnavailable(SchedulingError):
    """Lost a booking race or the slot is no longer in the expected state."""


class NotFound(SchedulingError):
    """Referenced template, slot or booking is absent or not owned by the caller."""


class TransientStoreError(SchedulingError):
    """Connectivity or timeout failure talking to the store. Safe to retry."""


HTTP_STATUS_BY_ERROR: dict[type[SchedulingError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
    OverlapError: status.HTTP_409_CONFLICT,
    SlotUnavailable: status.HTTP_409_CONFLICT,
    TransientStoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def to_http_exception(exc: SchedulingError) -> HTTPException:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, mapped_status in HTTP_STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            status_code = mapped_status
            break

    detail = {'message': exc.message, **{key: value for key, value in exc.context().items() if value is not None}}
    return HTTPException(status_code=status_code, detail=detail)
