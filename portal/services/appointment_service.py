"""
Appointment lifecycle.

This module is the only writer of appointments. Each transition flushes the
appointment change and stages its integration jobs on the same session, then
commits once, so a job exists only for a change that was actually stored.
"""

import logging
from datetime import date, datetime

from sqlalchemy.orm import Session

from portal.core import config
from portal.integrations import dispatcher, email_templates
from portal.models.appointment import Appointment
from portal.models.enums import AppointmentStatus, AppointmentType, CancelledBy
from portal.services import store
from portal.services.errors import (
    BookingConflictError,
    BookingValidationError,
    InvalidTransitionError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

MAX_APPOINTMENT_NOTES_LENGTH = 600

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING.value: {AppointmentStatus.CONFIRMED.value, AppointmentStatus.CANCELLED.value},
    AppointmentStatus.CONFIRMED.value: {AppointmentStatus.CANCELLED.value, AppointmentStatus.COMPLETED.value},
    AppointmentStatus.CANCELLED.value: set(),
    AppointmentStatus.COMPLETED.value: set(),
}


def validate_interval(start_time: datetime | None, end_time: datetime | None) -> None:
    if start_time is None or end_time is None:
        raise BookingValidationError('Start and end time are required.')
    if start_time >= end_time:
        raise BookingValidationError('Start time must be before end time.')


def normalize_appointment_type(value: str | None) -> str:
    normalized = (value or '').strip().lower()
    if normalized not in {member.value for member in AppointmentType}:
        raise BookingValidationError('Invalid appointment type.')
    return normalized


def normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
        raise BookingValidationError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


def can_transition(current_status: str, target_status: str) -> bool:
    return target_status in ALLOWED_TRANSITIONS.get(current_status, set())


def _require_appointment(db: Session, appointment_id: int, *, for_update: bool = False) -> Appointment:
    appointment = store.get_appointment(db, appointment_id, for_update=for_update)
    if appointment is None:
        raise NotFoundError('Appointment', appointment_id)
    return appointment


def _check_transition(appointment: Appointment, target_status: str, action: str) -> None:
    if not can_transition(appointment.status, target_status):
        raise InvalidTransitionError(appointment.id, appointment.status, action)


def _raise_on_conflicts(
    db: Session,
    start_time: datetime,
    end_time: datetime,
    exclude_id: int | None = None,
) -> None:
    conflicts = store.find_conflicts(db, start_time, end_time, exclude_id=exclude_id)
    if conflicts:
        raise BookingConflictError(start_time, end_time, [appointment.id for appointment in conflicts])


def _enqueue_patient_email(db: Session, kind: str, appointment: Appointment, rendered) -> None:
    patient = appointment.patient
    if patient is None or not patient.email:
        logger.warning('Appointment %s has no patient email, skipping %s email', appointment.id, kind)
        return
    dispatcher.enqueue_email(db, kind, appointment, patient.email, rendered)


def _enqueue_confirmation(db: Session, appointment: Appointment) -> None:
    if appointment.external_event_id:
        dispatcher.enqueue_calendar_update(db, appointment)
    else:
        dispatcher.enqueue_calendar_create(db, appointment)
    _enqueue_patient_email(db, 'confirmation', appointment, email_templates.confirmation_email(appointment))


def _commit(db: Session, appointment: Appointment) -> Appointment:
    db.commit()
    db.refresh(appointment)
    return appointment


# =============================================================================
# Transitions
# =============================================================================

def create_appointment(
    db: Session,
    patient_id: int,
    start_time: datetime,
    end_time: datetime,
    appointment_type: str,
    notes: str | None = None,
    status: str | None = None,
) -> Appointment:
    """
    Book a new appointment.

    New bookings are confirmed unless AUTO_CONFIRM_BOOKINGS is off or the
    caller explicitly asks for pending. Raises BookingConflictError with the
    ids of the overlapping appointments when the interval is taken.
    """
    validate_interval(start_time, end_time)
    appointment_type = normalize_appointment_type(appointment_type)
    notes = normalize_notes(notes)

    if status is None:
        status = AppointmentStatus.CONFIRMED.value if config.AUTO_CONFIRM_BOOKINGS else AppointmentStatus.PENDING.value
    if status not in (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value):
        raise BookingValidationError('New appointments must be pending or confirmed.')

    try:
        if store.get_profile(db, patient_id) is None:
            raise NotFoundError('Patient', patient_id)

        _raise_on_conflicts(db, start_time, end_time)
        appointment = store.insert_appointment(
            db,
            patient_id=patient_id,
            start_time=start_time,
            end_time=end_time,
            appointment_type=appointment_type,
            status=status,
            notes=notes,
        )

        if status == AppointmentStatus.CONFIRMED.value:
            _enqueue_confirmation(db, appointment)

        _commit(db, appointment)
    except Exception:
        db.rollback()
        raise

    logger.info(
        'Appointment %s created for patient %s (%s - %s, %s)',
        appointment.id,
        patient_id,
        start_time.isoformat(),
        end_time.isoformat(),
        status,
    )
    return appointment


def confirm_appointment(db: Session, appointment_id: int) -> Appointment:
    try:
        appointment = _require_appointment(db, appointment_id, for_update=True)
        _check_transition(appointment, AppointmentStatus.CONFIRMED.value, 'confirm')

        store.update_appointment_status(db, appointment, AppointmentStatus.CONFIRMED.value)
        _enqueue_confirmation(db, appointment)
        _commit(db, appointment)
    except Exception:
        db.rollback()
        raise

    logger.info('Appointment %s confirmed', appointment_id)
    return appointment


def cancel_appointment(
    db: Session,
    appointment_id: int,
    reason: str | None = None,
    cancelled_by: str = CancelledBy.PATIENT.value,
) -> Appointment:
    normalized_by = (cancelled_by or '').strip().lower()
    if normalized_by not in {member.value for member in CancelledBy}:
        raise BookingValidationError('cancelled_by must be patient or psychologist.')
    reason = normalize_notes(reason)

    try:
        appointment = _require_appointment(db, appointment_id, for_update=True)
        _check_transition(appointment, AppointmentStatus.CANCELLED.value, 'cancel')

        store.update_appointment_status(
            db,
            appointment,
            AppointmentStatus.CANCELLED.value,
            cancellation_reason=reason,
            cancelled_by=normalized_by,
        )

        if appointment.external_event_id:
            dispatcher.enqueue_calendar_delete(db, appointment)

        _enqueue_patient_email(db, 'cancellation', appointment, email_templates.cancellation_email(appointment))
        if config.PSYCHOLOGIST_EMAIL:
            dispatcher.enqueue_email(
                db,
                'practitioner_cancellation',
                appointment,
                config.PSYCHOLOGIST_EMAIL,
                email_templates.practitioner_cancellation_notice(appointment),
            )
        else:
            logger.warning('PSYCHOLOGIST_EMAIL is not set, no cancellation notice for appointment %s', appointment_id)

        _commit(db, appointment)
    except Exception:
        db.rollback()
        raise

    logger.info('Appointment %s cancelled by %s', appointment_id, normalized_by)
    return appointment


def complete_appointment(db: Session, appointment_id: int) -> Appointment:
    try:
        appointment = _require_appointment(db, appointment_id, for_update=True)
        _check_transition(appointment, AppointmentStatus.COMPLETED.value, 'complete')

        store.update_appointment_status(db, appointment, AppointmentStatus.COMPLETED.value)
        _commit(db, appointment)
    except Exception:
        db.rollback()
        raise

    logger.info('Appointment %s completed', appointment_id)
    return appointment


def reschedule_appointment(
    db: Session,
    appointment_id: int,
    new_start_time: datetime,
    new_end_time: datetime,
) -> Appointment:
    """
    Move an appointment to a new interval and put it back to pending.

    The appointment's own current interval never counts as a conflict.
    """
    validate_interval(new_start_time, new_end_time)

    try:
        appointment = _require_appointment(db, appointment_id, for_update=True)
        if appointment.status not in (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value):
            raise InvalidTransitionError(appointment.id, appointment.status, 'reschedule')

        _raise_on_conflicts(db, new_start_time, new_end_time, exclude_id=appointment.id)
        store.update_appointment_times(
            db,
            appointment,
            new_start_time,
            new_end_time,
            AppointmentStatus.PENDING.value,
        )

        if appointment.external_event_id:
            dispatcher.enqueue_calendar_update(db, appointment, times_only=True)
        _enqueue_patient_email(db, 'reschedule', appointment, email_templates.reschedule_email(appointment))

        _commit(db, appointment)
    except Exception:
        db.rollback()
        raise

    logger.info(
        'Appointment %s rescheduled to %s - %s',
        appointment_id,
        new_start_time.isoformat(),
        new_end_time.isoformat(),
    )
    return appointment


# =============================================================================
# Reads
# =============================================================================

def get_appointment(db: Session, appointment_id: int) -> Appointment:
    return _require_appointment(db, appointment_id)


def list_appointments(
    db: Session,
    *,
    on_date: date | None = None,
    patient_id: int | None = None,
    exclude_cancelled: bool = False,
) -> list[Appointment]:
    return store.list_appointments(
        db,
        on_date=on_date,
        patient_id=patient_id,
        exclude_cancelled=exclude_cancelled,
    )
