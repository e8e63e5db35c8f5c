"""Integration job model definitions."""

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
from portal.database import Base, utcnow


class IntegrationJob(Base):
    """
    Outbox row for a calendar or email side effect.

    Written in the same transaction as the appointment change that caused it
    and executed later by the worker.
    """
    __tablename__ = "integration_jobs"

    id = Column(Integer, primary_key=True)
    job_type = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    idempotency_key = Column(String(200), nullable=False)
    status = Column(String(20), nullable=False, default='pending')
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    run_at = Column(DateTime, nullable=False, default=utcnow)
    claimed_at = Column(DateTime)
    last_error = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime)
