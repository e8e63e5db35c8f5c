"""
Integration job queue.

Lifecycle operations call the enqueue_* helpers inside their own transaction,
so a job row exists only if the appointment change committed. The worker
later calls run_pending_jobs, which executes each job in its own transaction
with a bounded, exponentially backed-off retry policy. Job failures never
touch appointment status.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from portal.core import config
from portal.database import utcnow
from portal.integrations.calendar_client import GoogleCalendarClient
from portal.integrations.email_client import ResendEmailClient
from portal.integrations.email_templates import RenderedEmail
from portal.models.appointment import Appointment
from portal.models.enums import JobStatus, JobType
from portal.models.integration_job import IntegrationJob

logger = logging.getLogger(__name__)


def enqueue_job(
    db: Session,
    job_type: JobType,
    payload: dict[str, Any],
    idempotency_key: str,
    run_at: datetime | None = None,
) -> IntegrationJob:
    """
    Stage a job on the caller's session without committing.

    A still-pending job with the same idempotency key is refreshed with the
    new payload instead of being duplicated, so only the latest request runs.
    """
    existing = db.query(IntegrationJob).filter(
        IntegrationJob.idempotency_key == idempotency_key,
        IntegrationJob.status == JobStatus.PENDING.value,
    ).first()

    if existing is not None:
        existing.payload = payload
        existing.run_at = run_at or utcnow()
        existing.attempts = 0
        existing.last_error = None
        return existing

    job = IntegrationJob(
        job_type=job_type.value,
        payload=payload,
        idempotency_key=idempotency_key,
        status=JobStatus.PENDING.value,
        attempts=0,
        max_attempts=config.JOB_MAX_ATTEMPTS,
        run_at=run_at or utcnow(),
    )
    db.add(job)
    return job


def enqueue_calendar_create(db: Session, appointment: Appointment) -> IntegrationJob:
    return enqueue_job(
        db,
        JobType.CALENDAR_CREATE,
        {'appointment_id': appointment.id},
        f'calendar_create:appointment:{appointment.id}',
    )


def enqueue_calendar_update(db: Session, appointment: Appointment, *, times_only: bool = False) -> IntegrationJob:
    return enqueue_job(
        db,
        JobType.CALENDAR_UPDATE,
        {'appointment_id': appointment.id, 'times_only': times_only},
        f'calendar_update:appointment:{appointment.id}',
    )


def enqueue_calendar_delete(db: Session, appointment: Appointment) -> IntegrationJob:
    return enqueue_job(
        db,
        JobType.CALENDAR_DELETE,
        {'appointment_id': appointment.id, 'event_id': appointment.external_event_id},
        f'calendar_delete:appointment:{appointment.id}',
    )


def enqueue_email(
    db: Session,
    kind: str,
    appointment: Appointment,
    to: str,
    email: RenderedEmail,
) -> IntegrationJob:
    return enqueue_job(
        db,
        JobType.SEND_EMAIL,
        {
            'appointment_id': appointment.id,
            'kind': kind,
            'to': to,
            'subject': email.subject,
            'html': email.html,
        },
        f'email_{kind}:appointment:{appointment.id}',
    )


# =============================================================================
# Execution
# =============================================================================

def retry_delay(attempts: int) -> timedelta:
    seconds = config.JOB_RETRY_BASE_SECONDS * (2 ** max(attempts - 1, 0))
    return timedelta(seconds=min(seconds, config.JOB_RETRY_MAX_SECONDS))


def claim_due_jobs(db: Session, limit: int | None = None) -> list[IntegrationJob]:
    """
    Move due pending jobs to running and count the attempt.

    The claim is committed before any job executes so a job in flight is
    never picked up by a second worker. Running jobs whose claim is older
    than JOB_LEASE_SECONDS belong to a worker that died mid-batch; they are
    claimed again, or failed if they have no attempts left.
    """
    now = utcnow()
    lease_expired_before = now - timedelta(seconds=config.JOB_LEASE_SECONDS)

    query = db.query(IntegrationJob).filter(
        or_(
            and_(
                IntegrationJob.status == JobStatus.PENDING.value,
                IntegrationJob.run_at <= now,
            ),
            and_(
                IntegrationJob.status == JobStatus.RUNNING.value,
                or_(
                    IntegrationJob.claimed_at.is_(None),
                    IntegrationJob.claimed_at <= lease_expired_before,
                ),
            ),
        )
    ).order_by(IntegrationJob.run_at.asc(), IntegrationJob.id.asc())

    if db.get_bind().dialect.name == 'postgresql':
        query = query.with_for_update(skip_locked=True)

    claimed = []
    for job in query.limit(limit or config.WORKER_BATCH_SIZE).all():
        if job.status == JobStatus.RUNNING.value and job.attempts >= job.max_attempts:
            job.status = JobStatus.FAILED.value
            job.last_error = 'Worker lease expired on final attempt'
            job.completed_at = now
            logger.error('Job %s (%s) abandoned after %s attempts', job.id, job.job_type, job.attempts)
            continue
        if job.status == JobStatus.RUNNING.value:
            logger.warning('Reclaiming job %s (%s) after lease expiry', job.id, job.job_type)
        job.status = JobStatus.RUNNING.value
        job.attempts += 1
        job.claimed_at = now
        claimed.append(job)
    db.commit()
    return claimed


def mark_job_completed(db: Session, job: IntegrationJob) -> IntegrationJob:
    job.status = JobStatus.COMPLETED.value
    job.completed_at = utcnow()
    job.last_error = None
    db.commit()
    return job


def mark_job_failed(db: Session, job: IntegrationJob, error: str) -> IntegrationJob:
    """Reschedule with backoff while attempts remain, otherwise give up."""
    job.last_error = error[:2000]
    if job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
        job.run_at = utcnow() + retry_delay(job.attempts)
    else:
        job.status = JobStatus.FAILED.value
        job.completed_at = utcnow()
    db.commit()
    return job


class IntegrationDispatcher:
    """Executes queued integration jobs against the calendar and email clients."""

    def __init__(
        self,
        calendar: GoogleCalendarClient | None = None,
        email: ResendEmailClient | None = None,
    ):
        self.calendar = calendar or GoogleCalendarClient()
        self.email = email or ResendEmailClient()

    def run_job(self, db: Session, job: IntegrationJob) -> bool:
        """Execute one claimed job. Returns True on success."""
        from portal.integrations.handlers import JOB_HANDLERS

        logger.info('Processing job %s (type=%s, attempt=%s)', job.id, job.job_type, job.attempts)

        handler = JOB_HANDLERS.get(job.job_type)
        if handler is None:
            job.attempts = job.max_attempts
            mark_job_failed(db, job, f'Unknown job type: {job.job_type}')
            logger.error('Job %s has unknown type %s', job.id, job.job_type)
            return False

        try:
            handler(db, job, self)
        except Exception as exc:
            db.rollback()
            mark_job_failed(db, job, f'{exc.__class__.__name__}: {exc}')
            if job.status == JobStatus.FAILED.value:
                logger.error(
                    'Job %s (%s) failed permanently after %s attempts: %s',
                    job.id,
                    job.job_type,
                    job.attempts,
                    exc,
                )
            else:
                logger.warning(
                    'Job %s (%s) failed, retrying at %s: %s',
                    job.id,
                    job.job_type,
                    job.run_at.isoformat(),
                    exc,
                )
            return False

        mark_job_completed(db, job)
        logger.info('Job %s (%s) completed', job.id, job.job_type)
        return True

    def run_pending_jobs(self, db: Session, limit: int | None = None) -> int:
        """Run every due job once. Returns how many completed successfully."""
        jobs = claim_due_jobs(db, limit)
        succeeded = sum(1 for job in jobs if self.run_job(db, job))
        if jobs:
            logger.info('Processed %s integration jobs (%s succeeded)', len(jobs), succeeded)
        return succeeded
