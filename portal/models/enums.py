"""Enumerations stored as plain strings on the models."""

from enum import Enum


class AppointmentStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'


class AppointmentType(str, Enum):
    VIRTUAL = 'virtual'
    IN_PERSON = 'in_person'


class CancelledBy(str, Enum):
    PATIENT = 'patient'
    PSYCHOLOGIST = 'psychologist'


class JobType(str, Enum):
    CALENDAR_CREATE = 'calendar_create'
    CALENDAR_UPDATE = 'calendar_update'
    CALENDAR_DELETE = 'calendar_delete'
    SEND_EMAIL = 'send_email'


class JobStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'
