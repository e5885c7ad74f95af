"""Session booking model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, func, text
from scheduling.database import Base

BOOKING_SCHEDULED = "scheduled"
BOOKING_COMPLETED = "completed"
BOOKING_CANCELLED = "cancelled"
BOOKING_STATUSES = (BOOKING_SCHEDULED, BOOKING_COMPLETED, BOOKING_CANCELLED)

_NOT_CANCELLED_PREDICATE = text("status != 'cancelled'")


class SessionBooking(Base):
    """A client's reservation of exactly one availability slot.

    Start, end, rate and currency are snapshotted at booking time so the
    booking keeps its history after the slot is swept or deleted.
    """
    __tablename__ = "session_bookings"
    __table_args__ = (
        Index(
            "uq_bookings_one_active_per_slot",
            "availability_slot_id",
            unique=True,
            sqlite_where=_NOT_CANCELLED_PREDICATE,
            postgresql_where=_NOT_CANCELLED_PREDICATE,
        ),
        Index("idx_bookings_user_start", "user_id", "start_time"),
        Index("idx_bookings_provider_start", "provider_id", "start_time"),
        Index("idx_bookings_status_end", "status", "end_time"),
    )

    id = Column(Integer, primary_key=True)
    availability_slot_id = Column(
        Integer,
        ForeignKey("availability_slots.id", ondelete="SET NULL"),
        nullable=True,
    )
    provider_id = Column(Integer, nullable=False)
    user_id = Column(Integer, nullable=False)
    session_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default=BOOKING_SCHEDULED)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    session_rate = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=False)
    notes = Column(String(500), nullable=True)
    cancel_reason = Column(String(500), nullable=True)
    cancelled_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    cancelled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
