from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from portal.database import ensure_appointment_schema, ensure_availability_schema, ensure_job_schema
from portal.services.errors import (
    BookingConflictError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingError,
)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_appointment_schema()
        ensure_job_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


def scheduling_http_error(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, BookingConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                'message': str(exc),
                'conflicting_ids': exc.conflicting_ids,
                'start_time': exc.start_time.isoformat(),
                'end_time': exc.end_time.isoformat(),
            },
        )
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
