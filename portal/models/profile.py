"""Profile model definitions."""

from sqlalchemy import Column, Integer, String
from portal.database import Base


class Profile(Base):
    """Contact details for a patient or the practitioner."""
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False, default='')
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String)
    role = Column(String, nullable=False, default='patient')  # patient/psychologist
