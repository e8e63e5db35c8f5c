"""Availability model definitions."""

from sqlalchemy import JSON, Boolean, Column, Date, Integer, Time
from portal.database import Base


class AvailabilityTemplate(Base):
    """A recurring weekly working block. day_of_week: 0 = Sunday ... 6 = Saturday."""
    __tablename__ = "availability_templates"

    id = Column(Integer, primary_key=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class AvailabilityOverride(Base):
    """Replaces the weekly template for a single calendar date."""
    __tablename__ = "availability_overrides"

    id = Column(Integer, primary_key=True)
    date = Column(Date, nullable=False, unique=True)
    is_unavailable = Column(Boolean, nullable=False, default=False)
    slots = Column(JSON, nullable=False, default=list)  # [{"start_time": "09:00", "end_time": "12:00"}]
