from datetime import datetime, timezone
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from portal.core import config


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp for audit and queue columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


OVERLAP_CONSTRAINT_NAME = 'appointments_no_overlap'

# Half-open [start, end) exclusion over every appointment that is not cancelled.
POSTGRES_OVERLAP_CONSTRAINT = (
    f"ALTER TABLE appointments ADD CONSTRAINT {OVERLAP_CONSTRAINT_NAME} "
    "EXCLUDE USING gist (tsrange(start_time, end_time, '[)') WITH &&) "
    "WHERE (status <> 'cancelled')"
)

SQLITE_OVERLAP_TRIGGERS = (
    f"""
    CREATE TRIGGER IF NOT EXISTS {OVERLAP_CONSTRAINT_NAME}_insert
    BEFORE INSERT ON appointments
    WHEN NEW.status <> 'cancelled' AND EXISTS (
        SELECT 1 FROM appointments
        WHERE status <> 'cancelled'
          AND start_time < NEW.end_time
          AND NEW.start_time < end_time
    )
    BEGIN
        SELECT RAISE(ABORT, '{OVERLAP_CONSTRAINT_NAME}');
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS {OVERLAP_CONSTRAINT_NAME}_update
    BEFORE UPDATE OF start_time, end_time, status ON appointments
    WHEN NEW.status <> 'cancelled' AND EXISTS (
        SELECT 1 FROM appointments
        WHERE status <> 'cancelled'
          AND id <> NEW.id
          AND start_time < NEW.end_time
          AND NEW.start_time < end_time
    )
    BEGIN
        SELECT RAISE(ABORT, '{OVERLAP_CONSTRAINT_NAME}');
    END
    """,
)

_schema_lock = Lock()
_availability_schema_checked = False
_appointment_schema_checked = False
_job_schema_checked = False


def install_overlap_guard(connection: Connection) -> None:
    dialect = connection.dialect.name

    if dialect == 'postgresql':
        exists = connection.execute(
            text('SELECT 1 FROM pg_constraint WHERE conname = :name'),
            {'name': OVERLAP_CONSTRAINT_NAME},
        ).first()
        if not exists:
            connection.execute(text(POSTGRES_OVERLAP_CONSTRAINT))
    elif dialect == 'sqlite':
        for statement in SQLITE_OVERLAP_TRIGGERS:
            connection.execute(text(statement))


def ensure_availability_schema(bind: Engine | None = None) -> None:
    global _availability_schema_checked

    if _availability_schema_checked and bind is None:
        return

    target = bind or engine

    with _schema_lock:
        inspector = inspect(target)
        table_names = inspector.get_table_names()

        with target.begin() as connection:
            if 'availability_templates' in table_names:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_availability_templates_day '
                        'ON availability_templates(day_of_week, is_active)'
                    )
                )
            if 'availability_overrides' in table_names:
                connection.execute(
                    text(
                        'CREATE UNIQUE INDEX IF NOT EXISTS uq_availability_overrides_date '
                        'ON availability_overrides(date)'
                    )
                )

        if bind is None:
            _availability_schema_checked = True


def ensure_appointment_schema(bind: Engine | None = None) -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked and bind is None:
        return

    target = bind or engine

    with _schema_lock:
        inspector = inspect(target)

        if 'appointments' not in inspector.get_table_names():
            if bind is None:
                _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('external_event_id', 'ALTER TABLE appointments ADD COLUMN external_event_id VARCHAR'),
            ('cancellation_reason', 'ALTER TABLE appointments ADD COLUMN cancellation_reason VARCHAR'),
            ('cancelled_by', 'ALTER TABLE appointments ADD COLUMN cancelled_by VARCHAR'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
        ]

        with target.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_time_range ON appointments(start_time, end_time)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_start ON appointments(patient_id, start_time)')
            )
            install_overlap_guard(connection)

        if bind is None:
            _appointment_schema_checked = True


def ensure_job_schema(bind: Engine | None = None) -> None:
    global _job_schema_checked

    if _job_schema_checked and bind is None:
        return

    target = bind or engine

    with _schema_lock:
        inspector = inspect(target)
        if 'integration_jobs' in inspector.get_table_names():
            existing_columns = {column['name'] for column in inspector.get_columns('integration_jobs')}
            with target.begin() as connection:
                if 'claimed_at' not in existing_columns:
                    connection.execute(text('ALTER TABLE integration_jobs ADD COLUMN claimed_at TIMESTAMP'))
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_integration_jobs_pending ON integration_jobs(status, run_at)')
                )
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_integration_jobs_idempotency '
                        'ON integration_jobs(idempotency_key, status)'
                    )
                )

        if bind is None:
            _job_schema_checked = True


def ensure_schema(bind: Engine | None = None) -> None:
    target = bind or engine
    Base.metadata.create_all(bind=target)
    ensure_availability_schema(bind)
    ensure_appointment_schema(bind)
    ensure_job_schema(bind)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
