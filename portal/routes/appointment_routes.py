from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.core import config
from portal.database import get_db
from portal.models.appointment import Appointment
from portal.models.enums import AppointmentStatus, AppointmentType, CancelledBy
from portal.routes.common import database_unavailable, ensure_database_ready, scheduling_http_error
from portal.services import appointment_service
from portal.services.appointment_service import MAX_APPOINTMENT_NOTES_LENGTH
from portal.services.errors import SchedulingError

router = APIRouter(tags=['appointments'])


def _normalize_optional_text(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Text must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


def _to_practice_time(value: datetime | None) -> datetime | None:
    # Stored times are naive practice-local wall-clock times.
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(config.PRACTICE_TIMEZONE)).replace(tzinfo=None)


class CreateAppointmentRequest(BaseModel):
    patient_id: int
    start_time: datetime
    end_time: datetime | None = None
    appointment_type: str
    notes: str | None = None
    status: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: datetime | None) -> datetime | None:
        return _to_practice_time(value)

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {member.value for member in AppointmentType}:
            raise ValueError('Invalid appointment type.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip().lower()
        if normalized not in (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value):
            raise ValueError('New appointments must be pending or confirmed.')
        return normalized


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None
    cancelled_by: str = CancelledBy.PATIENT.value

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)

    @field_validator('cancelled_by')
    @classmethod
    def validate_cancelled_by(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {member.value for member in CancelledBy}:
            raise ValueError('cancelled_by must be patient or psychologist.')
        return normalized


class RescheduleAppointmentRequest(BaseModel):
    start_time: datetime
    end_time: datetime

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: datetime) -> datetime:
        return _to_practice_time(value)


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    patient_name: str | None = None
    patient_email: str | None = None
    patient_phone: str | None = None
    appointment_type: str
    start_time: datetime
    end_time: datetime
    status: str
    notes: str | None = None
    external_event_id: str | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    created_at: datetime | None = None


def to_appointment_response(appointment: Appointment) -> AppointmentResponse:
    patient = appointment.patient
    return AppointmentResponse(
        id=appointment.id,
        patient_id=appointment.patient_id,
        patient_name=patient.full_name if patient else None,
        patient_email=patient.email if patient else None,
        patient_phone=patient.phone if patient else None,
        appointment_type=appointment.appointment_type,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        status=appointment.status,
        notes=appointment.notes,
        external_event_id=appointment.external_event_id,
        cancellation_reason=appointment.cancellation_reason,
        cancelled_by=appointment.cancelled_by,
        created_at=appointment.created_at,
    )


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    on_date: date | None = Query(default=None, alias='date'),
    patient_id: int | None = Query(default=None),
    exclude_cancelled: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = appointment_service.list_appointments(
            db,
            on_date=on_date,
            patient_id=patient_id,
            exclude_cancelled=exclude_cancelled,
        )
        return [to_appointment_response(appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return to_appointment_response(appointment_service.get_appointment(db, appointment_id))
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(data: CreateAppointmentRequest, db: Session = Depends(get_db)):
    end_time = data.end_time or data.start_time + timedelta(minutes=config.APPOINTMENT_PRICING.duration_minutes)

    ensure_database_ready()

    try:
        appointment = appointment_service.create_appointment(
            db,
            patient_id=data.patient_id,
            start_time=data.start_time,
            end_time=end_time,
            appointment_type=data.appointment_type,
            notes=data.notes,
            status=data.status,
        )
        return to_appointment_response(appointment)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return to_appointment_response(appointment_service.confirm_appointment(db, appointment_id))
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = appointment_service.cancel_appointment(
            db,
            appointment_id,
            reason=data.reason,
            cancelled_by=data.cancelled_by,
        )
        return to_appointment_response(appointment)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return to_appointment_response(appointment_service.complete_appointment(db, appointment_id))
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = appointment_service.reschedule_appointment(
            db,
            appointment_id,
            data.start_time,
            data.end_time,
        )
        return to_appointment_response(appointment)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc
