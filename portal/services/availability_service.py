"""Operator-facing availability operations and slot queries."""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Mapping, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from portal.core import config
from portal.models.availability import AvailabilityOverride, AvailabilityTemplate
from portal.scheduling.availability import Window, parse_clock, resolve_windows, windows_from_blocks
from portal.scheduling.slots import TimeSlot, generate_slots
from portal.services import store
from portal.services.errors import BookingValidationError

logger = logging.getLogger(__name__)


def practice_now() -> datetime:
    """Current wall-clock time in the practice timezone, without tzinfo."""
    return datetime.now(ZoneInfo(config.PRACTICE_TIMEZONE)).replace(tzinfo=None)


def practice_today() -> date:
    return practice_now().date()


def _validate_windows(windows: Sequence[Window]) -> None:
    for window in windows:
        if window.start_time >= window.end_time:
            raise BookingValidationError('Each availability block must start before it ends.')


def _normalize_blocks(blocks: Sequence[Mapping[str, Any]] | None) -> list[dict[str, str]]:
    try:
        windows = windows_from_blocks(blocks or [])
    except (TypeError, ValueError, AttributeError) as exc:
        raise BookingValidationError('Availability blocks need start_time and end_time as HH:MM.') from exc

    _validate_windows(windows)
    return [
        {'start_time': window.start_time.strftime('%H:%M'), 'end_time': window.end_time.strftime('%H:%M')}
        for window in windows
    ]


def _validate_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise BookingValidationError('start_date must be on or before end_date.')


def _dates_between(start_date: date, end_date: date) -> list[date]:
    return [start_date + timedelta(days=offset) for offset in range((end_date - start_date).days + 1)]


# =============================================================================
# Slots
# =============================================================================

def get_available_slots(
    db: Session,
    target_date: date,
    duration_minutes: int | None = None,
    now: datetime | None = None,
) -> list[TimeSlot]:
    """
    Slots for one date: override-or-template windows stepped by duration.

    Past slots are left out; slots overlapping a non-cancelled appointment
    are returned with is_available False.
    """
    if duration_minutes is None:
        duration_minutes = config.DEFAULT_SLOT_DURATION_MINUTES
    if duration_minutes <= 0:
        raise BookingValidationError('Slot duration must be a positive number of minutes.')

    windows = resolve_windows(target_date, store.list_templates(db), store.get_override(db, target_date))
    if not windows:
        return []

    day_start, day_end = store.day_bounds(target_date)
    appointments = store.list_blocking_appointments(db, day_start, day_end)

    return generate_slots(
        target_date,
        windows,
        duration_minutes,
        now or practice_now(),
        appointments,
    )


# =============================================================================
# Weekly template
# =============================================================================

def list_templates(db: Session) -> list[AvailabilityTemplate]:
    return store.list_templates(db)


def replace_templates(db: Session, templates: Sequence[Mapping[str, Any]]) -> list[AvailabilityTemplate]:
    normalized = []
    for template in templates:
        day = template.get('day_of_week')
        if not isinstance(day, int) or not 0 <= day <= 6:
            raise BookingValidationError('day_of_week must be between 0 (Sunday) and 6 (Saturday).')

        try:
            window = Window(parse_clock(template['start_time']), parse_clock(template['end_time']))
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise BookingValidationError('Template entries need start_time and end_time as HH:MM.') from exc
        _validate_windows([window])

        normalized.append({
            'day_of_week': day,
            'start_time': window.start_time,
            'end_time': window.end_time,
            'is_active': bool(template.get('is_active', True)),
        })

    try:
        created = store.replace_templates(db, normalized)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info('Weekly availability replaced with %s blocks', len(created))
    return store.list_templates(db)


# =============================================================================
# Overrides
# =============================================================================

def list_upcoming_overrides(db: Session, from_date: date | None = None) -> list[AvailabilityOverride]:
    return store.list_overrides(db, from_date=from_date or practice_today())


def upsert_override(
    db: Session,
    target_date: date,
    is_unavailable: bool = False,
    slots: Sequence[Mapping[str, Any]] | None = None,
) -> AvailabilityOverride:
    blocks = [] if is_unavailable else _normalize_blocks(slots)

    try:
        override = store.upsert_override(db, target_date, is_unavailable, blocks)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info('Availability override saved for %s (unavailable=%s)', target_date.isoformat(), is_unavailable)
    return override


def bulk_upsert_overrides(db: Session, overrides: Sequence[Mapping[str, Any]]) -> int:
    rows = []
    for override in overrides:
        if not isinstance(override.get('date'), date):
            raise BookingValidationError('Every override needs a date.')
        is_unavailable = bool(override.get('is_unavailable', False))
        rows.append({
            'date': override['date'],
            'is_unavailable': is_unavailable,
            'slots': [] if is_unavailable else _normalize_blocks(override.get('slots')),
        })

    try:
        store.bulk_upsert_overrides(db, rows)
        db.commit()
    except Exception:
        db.rollback()
        raise

    return len({row['date'] for row in rows})


def delete_overrides(db: Session, start_date: date, end_date: date) -> int:
    """Drop overrides in [start_date, end_date] so those dates follow the weekly template again."""
    _validate_range(start_date, end_date)

    try:
        deleted = store.delete_overrides_in_range(db, start_date, end_date)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info('Deleted %s overrides between %s and %s', deleted, start_date.isoformat(), end_date.isoformat())
    return deleted


def block_range(db: Session, start_date: date, end_date: date) -> int:
    """Mark every date in [start_date, end_date] unavailable. Returns the number of dates."""
    _validate_range(start_date, end_date)
    dates = _dates_between(start_date, end_date)

    try:
        store.bulk_upsert_overrides(
            db,
            [{'date': day, 'is_unavailable': True, 'slots': []} for day in dates],
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info('Blocked %s dates from %s to %s', len(dates), start_date.isoformat(), end_date.isoformat())
    return len(dates)


def unblock_range(db: Session, start_date: date, end_date: date) -> int:
    return delete_overrides(db, start_date, end_date)
