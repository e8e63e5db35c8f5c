"""Appointment model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from portal.database import Base, utcnow


class Appointment(Base):
    """A booked session with the practitioner. Cancelled rather than deleted."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    appointment_type = Column(String, nullable=False)
    status = Column(String, nullable=False)
    notes = Column(String)
    external_event_id = Column(String)
    cancellation_reason = Column(String)
    cancelled_by = Column(String)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    patient = relationship("Profile", lazy="joined", innerjoin=True)
