"""Provider activity model definitions."""

from sqlalchemy import JSON, Column, DateTime, Integer, String, func
from scheduling.database import Base


class ProviderActivity(Base):
    """Audit trail entry for a template, slot or booking mutation."""
    __tablename__ = "provider_activities"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, nullable=False, index=True)
    activity_type = Column(String, nullable=False)
    activity_description = Column(String, nullable=False)
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
