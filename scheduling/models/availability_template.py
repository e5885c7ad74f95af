"""Availability template model definitions."""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Index, Integer, Time, func
from scheduling.database import Base

MIN_SESSION_DURATION_MINUTES = 15
MAX_SESSION_DURATION_MINUTES = 240
MAX_BREAK_MINUTES = 60
DEFAULT_SESSION_DURATION_MINUTES = 60
DEFAULT_BREAK_MINUTES = 15


class AvailabilityTemplate(Base):
    """Recurring weekly availability rule for a provider.

    ``day_of_week`` counts from Sunday (0) to Saturday (6).
    """
    __tablename__ = "availability_templates"
    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_template_day_of_week"),
        CheckConstraint("start_time < end_time", name="ck_template_time_order"),
        CheckConstraint(
            f"session_duration BETWEEN {MIN_SESSION_DURATION_MINUTES} AND {MAX_SESSION_DURATION_MINUTES}",
            name="ck_template_session_duration",
        ),
        CheckConstraint(
            f"break_between_sessions BETWEEN 0 AND {MAX_BREAK_MINUTES}",
            name="ck_template_break",
        ),
        Index("idx_templates_provider_day", "provider_id", "day_of_week", "start_time"),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    session_duration = Column(Integer, nullable=False, default=DEFAULT_SESSION_DURATION_MINUTES)
    break_between_sessions = Column(Integer, nullable=False, default=DEFAULT_BREAK_MINUTES)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
