"""
Persistence for appointments and availability.

Functions here flush but never commit: the calling service decides the
transaction boundary so that an appointment change and the integration jobs
it produces are committed together.
"""

from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Mapping

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.database import OVERLAP_CONSTRAINT_NAME
from portal.models.appointment import Appointment
from portal.models.availability import AvailabilityOverride, AvailabilityTemplate
from portal.models.enums import AppointmentStatus
from portal.models.profile import Profile
from portal.services.errors import BookingConflictError


def is_overlap_violation(exc: IntegrityError) -> bool:
    return OVERLAP_CONSTRAINT_NAME in str(exc.orig)


def day_bounds(target_date: date) -> tuple[datetime, datetime]:
    day_start = datetime.combine(target_date, time.min)
    return day_start, day_start + timedelta(days=1)


# =============================================================================
# Appointments
# =============================================================================

def list_appointments(
    db: Session,
    *,
    on_date: date | None = None,
    patient_id: int | None = None,
    exclude_cancelled: bool = False,
) -> list[Appointment]:
    query = db.query(Appointment)

    if on_date is not None:
        day_start, day_end = day_bounds(on_date)
        query = query.filter(Appointment.start_time >= day_start, Appointment.start_time < day_end)
    if patient_id is not None:
        query = query.filter(Appointment.patient_id == patient_id)
    if exclude_cancelled:
        query = query.filter(Appointment.status != AppointmentStatus.CANCELLED.value)

    return query.order_by(Appointment.start_time.asc()).all()


def list_blocking_appointments(db: Session, range_start: datetime, range_end: datetime) -> list[Appointment]:
    """Non-cancelled appointments intersecting [range_start, range_end)."""
    return db.query(Appointment).filter(
        Appointment.status != AppointmentStatus.CANCELLED.value,
        Appointment.start_time < range_end,
        Appointment.end_time > range_start,
    ).order_by(Appointment.start_time.asc()).all()


def find_conflicts(
    db: Session,
    start_time: datetime,
    end_time: datetime,
    exclude_id: int | None = None,
) -> list[Appointment]:
    conflicts = list_blocking_appointments(db, start_time, end_time)
    return [appointment for appointment in conflicts if appointment.id != exclude_id]


def get_appointment(db: Session, appointment_id: int, *, for_update: bool = False) -> Appointment | None:
    query = db.query(Appointment).filter(Appointment.id == appointment_id)
    if for_update:
        query = query.with_for_update(of=Appointment)
    return query.first()


def insert_appointment(db: Session, **fields: Any) -> Appointment:
    appointment = Appointment(**fields)
    db.add(appointment)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        if is_overlap_violation(exc):
            raise BookingConflictError(fields['start_time'], fields['end_time']) from exc
        raise
    return appointment


def update_appointment_status(db: Session, appointment: Appointment, status: str, **extra: Any) -> Appointment:
    appointment.status = status
    for field, value in extra.items():
        setattr(appointment, field, value)
    db.flush()
    return appointment


def update_appointment_times(
    db: Session,
    appointment: Appointment,
    start_time: datetime,
    end_time: datetime,
    status: str,
) -> Appointment:
    appointment.start_time = start_time
    appointment.end_time = end_time
    appointment.status = status
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        if is_overlap_violation(exc):
            raise BookingConflictError(start_time, end_time) from exc
        raise
    return appointment


def set_external_event_id(db: Session, appointment_id: int, event_id: str) -> bool:
    """
    Attach a calendar event id unless the appointment already has one or was cancelled.

    Returns False when nothing was written.
    """
    result = db.execute(
        update(Appointment)
        .where(
            Appointment.id == appointment_id,
            Appointment.external_event_id.is_(None),
            Appointment.status != AppointmentStatus.CANCELLED.value,
        )
        .values(external_event_id=event_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def clear_external_event_id(db: Session, appointment_id: int, event_id: str) -> None:
    db.execute(
        update(Appointment)
        .where(Appointment.id == appointment_id, Appointment.external_event_id == event_id)
        .values(external_event_id=None)
        .execution_options(synchronize_session=False)
    )


def get_profile(db: Session, profile_id: int) -> Profile | None:
    return db.query(Profile).filter(Profile.id == profile_id).first()


# =============================================================================
# Availability
# =============================================================================

def list_templates(db: Session) -> list[AvailabilityTemplate]:
    return db.query(AvailabilityTemplate).order_by(
        AvailabilityTemplate.day_of_week.asc(),
        AvailabilityTemplate.start_time.asc(),
    ).all()


def replace_templates(db: Session, templates: Iterable[Mapping[str, Any]]) -> list[AvailabilityTemplate]:
    db.query(AvailabilityTemplate).delete(synchronize_session=False)

    created = [
        AvailabilityTemplate(
            day_of_week=template['day_of_week'],
            start_time=template['start_time'],
            end_time=template['end_time'],
            is_active=template.get('is_active', True),
        )
        for template in templates
    ]
    db.add_all(created)
    db.flush()
    return created


def get_override(db: Session, target_date: date) -> AvailabilityOverride | None:
    return db.query(AvailabilityOverride).filter(AvailabilityOverride.date == target_date).first()


def list_overrides(db: Session, from_date: date | None = None) -> list[AvailabilityOverride]:
    query = db.query(AvailabilityOverride)
    if from_date is not None:
        query = query.filter(AvailabilityOverride.date >= from_date)
    return query.order_by(AvailabilityOverride.date.asc()).all()


def bulk_upsert_overrides(db: Session, overrides: list[Mapping[str, Any]]) -> None:
    """Insert or replace overrides keyed on their date."""
    if not overrides:
        return

    # One row per date; the last entry for a repeated date wins.
    rows_by_date = {
        override['date']: {
            'date': override['date'],
            'is_unavailable': override.get('is_unavailable', False),
            'slots': list(override.get('slots') or []),
        }
        for override in overrides
    }
    rows = list(rows_by_date.values())

    dialect = db.get_bind().dialect.name
    if dialect in ('postgresql', 'sqlite'):
        insert = postgresql.insert if dialect == 'postgresql' else sqlite.insert
        statement = insert(AvailabilityOverride).values(rows)
        statement = statement.on_conflict_do_update(
            index_elements=[AvailabilityOverride.date],
            set_={
                'is_unavailable': statement.excluded.is_unavailable,
                'slots': statement.excluded.slots,
            },
        )
        db.execute(statement)
        db.expire_all()
        return

    for row in rows:
        existing = get_override(db, row['date'])
        if existing is None:
            db.add(AvailabilityOverride(**row))
        else:
            existing.is_unavailable = row['is_unavailable']
            existing.slots = row['slots']
    db.flush()


def upsert_override(db: Session, target_date: date, is_unavailable: bool, slots: list[Mapping[str, Any]]) -> AvailabilityOverride:
    bulk_upsert_overrides(db, [{'date': target_date, 'is_unavailable': is_unavailable, 'slots': slots}])
    return get_override(db, target_date)


def delete_overrides_in_range(db: Session, start_date: date, end_date: date) -> int:
    return db.query(AvailabilityOverride).filter(
        AvailabilityOverride.date >= start_date,
        AvailabilityOverride.date <= end_date,
    ).delete(synchronize_session=False)
