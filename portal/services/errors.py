"""Errors raised by the scheduling engine."""

from datetime import datetime


class SchedulingError(Exception):
    """Base class for engine errors surfaced to callers."""


class BookingValidationError(SchedulingError, ValueError):
    """Malformed interval, duration, date range or missing required field."""


class NotFoundError(SchedulingError):
    def __init__(self, entity: str, entity_id: object):
        super().__init__(f'{entity} {entity_id} not found.')
        self.entity = entity
        self.entity_id = entity_id


class BookingConflictError(SchedulingError):
    """The requested interval overlaps a non-cancelled appointment."""

    def __init__(
        self,
        start_time: datetime,
        end_time: datetime,
        conflicting_ids: list[int] | None = None,
    ):
        super().__init__('This time overlaps an existing appointment.')
        self.start_time = start_time
        self.end_time = end_time
        self.conflicting_ids = conflicting_ids or []


class InvalidTransitionError(SchedulingError):
    def __init__(self, appointment_id: int, current_status: str, action: str):
        super().__init__(f'Cannot {action} appointment {appointment_id} while it is {current_status}.')
        self.appointment_id = appointment_id
        self.current_status = current_status
        self.action = action


class IntegrationError(Exception):
    """A calendar or email call failed. Never propagated to lifecycle callers."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
