from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.core import config
from portal.database import get_db
from portal.models.enums import AppointmentType
from portal.routes.common import database_unavailable, ensure_database_ready, scheduling_http_error
from portal.services import availability_service
from portal.services.errors import SchedulingError

router = APIRouter(tags=['availability'])


class TimeSlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    is_available: bool

    class Config:
        from_attributes = True


class TemplateBlockRequest(BaseModel):
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool = True

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('day_of_week must be between 0 (Sunday) and 6 (Saturday).')
        return value


class TemplateBlockResponse(BaseModel):
    id: int
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool

    class Config:
        from_attributes = True


class OverrideBlock(BaseModel):
    start_time: time
    end_time: time


class OverrideRequest(BaseModel):
    is_unavailable: bool = False
    slots: list[OverrideBlock] = []


class BulkOverrideItem(OverrideRequest):
    date: date


class BulkOverrideRequest(BaseModel):
    overrides: list[BulkOverrideItem]


class OverrideBlockResponse(BaseModel):
    start_time: str
    end_time: str


class OverrideResponse(BaseModel):
    id: int
    date: date
    is_unavailable: bool
    slots: list[OverrideBlockResponse]

    class Config:
        from_attributes = True


class DateRangeRequest(BaseModel):
    start_date: date
    end_date: date


class RangeResultResponse(BaseModel):
    start_date: date
    end_date: date
    affected: int


class AppointmentTypeOptionResponse(BaseModel):
    appointment_type: str
    duration_minutes: int
    price: int
    currency: str


def _block_dicts(blocks: list[OverrideBlock]) -> list[dict]:
    return [{'start_time': block.start_time, 'end_time': block.end_time} for block in blocks]


@router.get('/slots', response_model=list[TimeSlotResponse])
def list_slots(
    date: date = Query(...),
    duration: int = Query(default=config.DEFAULT_SLOT_DURATION_MINUTES, ge=1, le=24 * 60),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return availability_service.get_available_slots(db, date, duration)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/templates', response_model=list[TemplateBlockResponse])
def list_templates(db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return availability_service.list_templates(db)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.put('/templates', response_model=list[TemplateBlockResponse])
def replace_templates(data: list[TemplateBlockRequest], db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return availability_service.replace_templates(db, [block.model_dump() for block in data])
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/overrides', response_model=list[OverrideResponse])
def list_overrides(
    from_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return availability_service.list_upcoming_overrides(db, from_date)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.put('/overrides/{override_date}', response_model=OverrideResponse)
def upsert_override(override_date: date, data: OverrideRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return availability_service.upsert_override(
            db,
            override_date,
            is_unavailable=data.is_unavailable,
            slots=_block_dicts(data.slots),
        )
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/overrides/bulk', response_model=list[OverrideResponse])
def bulk_upsert_overrides(data: BulkOverrideRequest, db: Session = Depends(get_db)):
    if not data.overrides:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='At least one override is required.',
        )

    ensure_database_ready()

    try:
        availability_service.bulk_upsert_overrides(
            db,
            [
                {'date': item.date, 'is_unavailable': item.is_unavailable, 'slots': _block_dicts(item.slots)}
                for item in data.overrides
            ],
        )
        first_date = min(item.date for item in data.overrides)
        saved_dates = {item.date for item in data.overrides}
        return [
            override
            for override in availability_service.list_upcoming_overrides(db, first_date)
            if override.date in saved_dates
        ]
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.delete('/overrides', response_model=RangeResultResponse)
def delete_overrides(
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        deleted = availability_service.delete_overrides(db, start_date, end_date)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return RangeResultResponse(start_date=start_date, end_date=end_date, affected=deleted)


@router.post('/block-range', response_model=RangeResultResponse)
def block_range(data: DateRangeRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        blocked = availability_service.block_range(db, data.start_date, data.end_date)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return RangeResultResponse(start_date=data.start_date, end_date=data.end_date, affected=blocked)


@router.post('/unblock-range', response_model=RangeResultResponse)
def unblock_range(data: DateRangeRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        unblocked = availability_service.unblock_range(db, data.start_date, data.end_date)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return RangeResultResponse(start_date=data.start_date, end_date=data.end_date, affected=unblocked)


@router.get('/appointment-types', response_model=list[AppointmentTypeOptionResponse])
def list_appointment_types():
    pricing = config.APPOINTMENT_PRICING
    return [
        AppointmentTypeOptionResponse(
            appointment_type=appointment_type.value,
            duration_minutes=pricing.duration_minutes,
            price=getattr(pricing, appointment_type.value),
            currency=pricing.currency,
        )
        for appointment_type in AppointmentType
    ]
