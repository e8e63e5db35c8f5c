"""
Handlers for each integration job type.

A handler raises to signal failure; the dispatcher records the error and
decides whether to retry. Handlers only ever touch an appointment's
external_event_id, never its status.
"""

import logging
from typing import Callable

from sqlalchemy.orm import Session

from portal.integrations.calendar_client import build_event, build_time_patch
from portal.integrations.dispatcher import enqueue_job
from portal.integrations.email_client import mask_email
from portal.models.appointment import Appointment
from portal.models.enums import AppointmentStatus, JobType
from portal.models.integration_job import IntegrationJob
from portal.services import store
from portal.services.errors import IntegrationError

logger = logging.getLogger(__name__)

# Emails about a booking that still stands; dropped once it is cancelled.
ACTIVE_ONLY_EMAIL_KINDS = {'confirmation', 'reschedule'}


def _load_active_appointment(db: Session, job: IntegrationJob) -> Appointment | None:
    appointment_id = job.payload.get('appointment_id')
    appointment = store.get_appointment(db, appointment_id)

    if appointment is None:
        logger.warning('Job %s skipped: appointment %s not found', job.id, appointment_id)
        return None
    if appointment.status == AppointmentStatus.CANCELLED.value:
        logger.info('Job %s skipped: appointment %s is cancelled', job.id, appointment_id)
        return None
    return appointment


def _create_and_attach(db: Session, appointment: Appointment, dispatcher) -> None:
    result = dispatcher.calendar.create_event(build_event(appointment))
    if result is None:
        return

    if store.set_external_event_id(db, appointment.id, result.event_id):
        db.commit()
        logger.info('Calendar event %s linked to appointment %s', result.event_id, appointment.id)
        return

    db.rollback()
    # Cancelled or linked by another job while the event was being created.
    logger.info(
        'Appointment %s changed during calendar create, removing event %s',
        appointment.id,
        result.event_id,
    )
    try:
        dispatcher.calendar.delete_event(result.event_id)
    except IntegrationError as exc:
        logger.warning('Removing event %s failed, queueing a delete: %s', result.event_id, exc)
        enqueue_job(
            db,
            JobType.CALENDAR_DELETE,
            {'appointment_id': appointment.id, 'event_id': result.event_id},
            f'calendar_delete:event:{result.event_id}',
        )
        db.commit()


def process_calendar_create(db: Session, job: IntegrationJob, dispatcher) -> None:
    appointment = _load_active_appointment(db, job)
    if appointment is None:
        return

    if appointment.external_event_id:
        logger.info('Appointment %s already has calendar event %s', appointment.id, appointment.external_event_id)
        return

    _create_and_attach(db, appointment, dispatcher)


def process_calendar_update(db: Session, job: IntegrationJob, dispatcher) -> None:
    appointment = _load_active_appointment(db, job)
    if appointment is None:
        return

    if not appointment.external_event_id:
        _create_and_attach(db, appointment, dispatcher)
        return

    if job.payload.get('times_only'):
        patch = build_time_patch(appointment)
    else:
        patch = build_event(appointment)
    dispatcher.calendar.update_event(appointment.external_event_id, patch)


def process_calendar_delete(db: Session, job: IntegrationJob, dispatcher) -> None:
    appointment_id = job.payload.get('appointment_id')
    event_id = job.payload.get('event_id')

    if not event_id:
        appointment = store.get_appointment(db, appointment_id)
        event_id = appointment.external_event_id if appointment else None
    if not event_id:
        logger.info('Job %s skipped: appointment %s has no calendar event', job.id, appointment_id)
        return

    dispatcher.calendar.delete_event(event_id)
    store.clear_external_event_id(db, appointment_id, event_id)
    db.commit()


def process_send_email(db: Session, job: IntegrationJob, dispatcher) -> None:
    payload = job.payload

    if payload.get('kind') in ACTIVE_ONLY_EMAIL_KINDS and _load_active_appointment(db, job) is None:
        return

    # Stable across retries of this job, distinct from later jobs with the same key.
    idempotency_key = f'{job.idempotency_key}:{job.id}'
    message_id = dispatcher.email.send(
        payload['to'],
        payload['subject'],
        payload['html'],
        idempotency_key=idempotency_key,
    )
    logger.info(
        'Email %s for appointment %s to %s handled (message_id=%s)',
        payload.get('kind'),
        payload.get('appointment_id'),
        mask_email(payload['to']),
        message_id,
    )


JOB_HANDLERS: dict[str, Callable[[Session, IntegrationJob, object], None]] = {
    JobType.CALENDAR_CREATE.value: process_calendar_create,
    JobType.CALENDAR_UPDATE.value: process_calendar_update,
    JobType.CALENDAR_DELETE.value: process_calendar_delete,
    JobType.SEND_EMAIL.value: process_send_email,
}
