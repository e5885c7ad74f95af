"""Availability slot model definitions."""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, func, text
from scheduling.database import Base

SLOT_AVAILABLE = "available"
SLOT_BOOKED = "booked"
SLOT_CANCELLED = "cancelled"
SLOT_BLOCKED = "blocked"
SLOT_STATUSES = (SLOT_AVAILABLE, SLOT_BOOKED, SLOT_CANCELLED, SLOT_BLOCKED)

# Slots in these states take part in the non-overlap invariant.
ACTIVE_SLOT_STATUSES = (SLOT_AVAILABLE, SLOT_BOOKED)

SESSION_TYPES = ("individual", "group", "couples", "family")
DEFAULT_SESSION_TYPE = "individual"
MAX_NOTES_LENGTH = 500

_ACTIVE_INTERVAL_PREDICATE = text("status IN ('available', 'booked')")


class AvailabilitySlot(Base):
    """A concrete, date-stamped bookable interval owned by a provider."""
    __tablename__ = "availability_slots"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_slot_time_order"),
        CheckConstraint(
            "status IN ('available', 'booked', 'cancelled', 'blocked')",
            name="ck_slot_status",
        ),
        Index(
            "uq_slots_provider_active_interval",
            "provider_id",
            "start_time",
            "end_time",
            unique=True,
            sqlite_where=_ACTIVE_INTERVAL_PREDICATE,
            postgresql_where=_ACTIVE_INTERVAL_PREDICATE,
        ),
        Index("idx_slots_provider_start", "provider_id", "start_time"),
        Index("idx_slots_status_end", "status", "end_time"),
        Index("idx_slots_status_start", "status", "start_time"),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, nullable=False, index=True)
    template_id = Column(Integer, ForeignKey("availability_templates.id"), nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=SLOT_AVAILABLE)
    session_type = Column(String, nullable=False, default=DEFAULT_SESSION_TYPE)
    notes = Column(String(MAX_NOTES_LENGTH), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
