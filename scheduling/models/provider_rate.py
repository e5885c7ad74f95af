"""Provider session rate model definitions."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Numeric, String, func
from scheduling.database import Base


class ProviderRate(Base):
    """Current price a provider charges per session.

    Bookings copy the rate and currency at booking time, so later changes
    here never rewrite existing bookings.
    """
    __tablename__ = "provider_rates"
    __table_args__ = (
        CheckConstraint("session_rate >= 0", name="ck_provider_rate_non_negative"),
    )

    provider_id = Column(Integer, primary_key=True, autoincrement=False)
    session_rate = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
