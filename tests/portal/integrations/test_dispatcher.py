from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy import update

from portal.core import config
from portal.database import utcnow
from portal.integrations import dispatcher as dispatcher_module
from portal.integrations.calendar_client import CalendarEventResult
from portal.integrations.dispatcher import IntegrationDispatcher, claim_due_jobs, enqueue_job, retry_delay
from portal.models.appointment import Appointment
from portal.models.enums import JobType
from portal.models.integration_job import IntegrationJob
from portal.services import appointment_service, store
from portal.services.errors import IntegrationError

MONDAY = date(2030, 1, 7)


def at(hour: int) -> datetime:
    return datetime.combine(MONDAY, time(hour, 0))


class FakeCalendar:
    enabled = True

    def __init__(self, fail_creates: int = 0, on_create=None):
        self.fail_creates = fail_creates
        self.on_create = on_create
        self.created: list[dict] = []
        self.updated: list[tuple[str, dict]] = []
        self.deleted: list[str] = []

    def create_event(self, event):
        if self.fail_creates:
            self.fail_creates -= 1
            raise IntegrationError('calendar down', status_code=503)
        self.created.append(event)
        if self.on_create:
            self.on_create()
        return CalendarEventResult(event_id=f'evt-{len(self.created)}')

    def update_event(self, event_id, patch):
        self.updated.append((event_id, patch))
        return CalendarEventResult(event_id=event_id)

    def delete_event(self, event_id):
        self.deleted.append(event_id)


class FakeEmail:
    enabled = True

    def __init__(self):
        self.sent: list[dict] = []

    def send(self, to, subject, html, idempotency_key=None):
        self.sent.append({'to': to, 'subject': subject, 'idempotency_key': idempotency_key})
        return f'msg-{len(self.sent)}'


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def email() -> FakeEmail:
    return FakeEmail()


@pytest.fixture
def dispatcher(calendar, email) -> IntegrationDispatcher:
    return IntegrationDispatcher(calendar=calendar, email=email)


@pytest.fixture(autouse=True)
def practitioner_email(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'PSYCHOLOGIST_EMAIL', 'doctor@example.com')


def make_due(db) -> None:
    db.execute(update(IntegrationJob).values(run_at=utcnow() - timedelta(seconds=1)))
    db.commit()


def jobs_by_type(db) -> dict[str, IntegrationJob]:
    return {job.job_type: job for job in db.query(IntegrationJob).all()}


def test_retry_delay_doubles_and_caps(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'JOB_RETRY_BASE_SECONDS', 30)
    monkeypatch.setattr(config, 'JOB_RETRY_MAX_SECONDS', 100)

    assert retry_delay(1) == timedelta(seconds=30)
    assert retry_delay(2) == timedelta(seconds=60)
    assert retry_delay(3) == timedelta(seconds=100)


def test_enqueue_refreshes_pending_job_with_same_key(db) -> None:
    first = enqueue_job(db, JobType.SEND_EMAIL, {'n': 1}, 'email_x:appointment:1')
    db.commit()
    second = enqueue_job(db, JobType.SEND_EMAIL, {'n': 2}, 'email_x:appointment:1')
    db.commit()

    assert second.id == first.id
    assert db.query(IntegrationJob).count() == 1
    assert second.payload == {'n': 2}


def test_claim_marks_jobs_running_and_counts_attempt(db) -> None:
    enqueue_job(db, JobType.SEND_EMAIL, {}, 'a')
    enqueue_job(db, JobType.SEND_EMAIL, {}, 'b', run_at=utcnow() + timedelta(hours=1))
    db.commit()

    claimed = claim_due_jobs(db)

    assert [job.idempotency_key for job in claimed] == ['a']
    assert claimed[0].status == 'running'
    assert claimed[0].attempts == 1
    assert claim_due_jobs(db) == []


def expire_leases(db) -> None:
    stale = utcnow() - timedelta(seconds=config.JOB_LEASE_SECONDS + 1)
    db.execute(update(IntegrationJob).values(claimed_at=stale))
    db.commit()


def test_jobs_claimed_by_a_crashed_worker_are_run_after_lease_expiry(db, patient, dispatcher, calendar, email) -> None:
    appointment = appointment_service.create_appointment(db, patient.id, at(10), at(11), 'virtual')
    claim_due_jobs(db)

    assert dispatcher.run_pending_jobs(db) == 0

    expire_leases(db)
    assert dispatcher.run_pending_jobs(db) == 2

    assert {job.status for job in db.query(IntegrationJob).all()} == {'completed'}
    assert {job.attempts for job in db.query(IntegrationJob).all()} == {2}
    assert len(calendar.created) == 1
    assert len(email.sent) == 1
    assert store.get_appointment(db, appointment.id).external_event_id == 'evt-1'


def test_expired_lease_on_last_attempt_fails_the_job(db) -> None:
    enqueue_job(db, JobType.SEND_EMAIL, {}, 'email_x:appointment:1')
    db.commit()
    job = claim_due_jobs(db)[0]
    job.attempts = job.max_attempts
    db.commit()
    expire_leases(db)

    assert claim_due_jobs(db) == []

    job = db.query(IntegrationJob).one()
    assert job.status == 'failed'
    assert 'lease expired' in job.last_error


def test_confirmed_booking_syncs_calendar_and_sends_email(db, patient, dispatcher, calendar, email) -> None:
    appointment = appointment_service.create_appointment(db, patient.id, at(10), at(11), 'virtual')

    succeeded = dispatcher.run_pending_jobs(db)

    assert succeeded == 2
    assert len(calendar.created) == 1
    assert store.get_appointment(db, appointment.id).external_event_id == 'evt-1'
    assert email.sent[0]['to'] == 'ana.gomez@example.com'
    assert email.sent[0]['idempotency_key'].startswith(f'email_confirmation:appointment:{appointment.id}:')
    assert {job.status for job in db.query(IntegrationJob).all()} == {'completed'}


def test_failed_job_is_retried_with_backoff(db, patient, email, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'JOB_RETRY_BASE_SECONDS', 30)
    calendar = FakeCalendar(fail_creates=1)
    dispatcher = IntegrationDispatcher(calendar=calendar, email=email)
    appointment = appointment_service.create_appointment(db, patient.id, at(10), at(11), 'virtual')

    before = utcnow()
    dispatcher.run_pending_jobs(db)

    job = jobs_by_type(db)['calendar_create']
    assert job.status == 'pending'
    assert job.attempts == 1
    assert 'calendar down' in job.last_error
    assert job.run_at >= before + timedelta(seconds=29)

    assert dispatcher.run_pending_jobs(db) == 0

    make_due(db)
    assert dispatcher.run_pending_jobs(db) == 1
    job = jobs_by_type(db)['calendar_create']
    assert job.status == 'completed'
    assert job.attempts == 2
    assert store.get_appointment(db, appointment.id).external_event_id == 'evt-1'


def test_exhausted_job_fails_without_touching_appointment(db, patient, email) -> None:
    calendar = FakeCalendar(fail_creates=10)
    dispatcher = IntegrationDispatcher(calendar=calendar, email=email)
    appointment = appointment_service.create_appointment(db, patient.id, at(10), at(11), 'virtual')
    db.query(IntegrationJob).update({'max_attempts': 2})
    db.commit()

    dispatcher.run_pending_jobs(db)
    make_due(db)
    dispatcher.run_pending_jobs(db)

    job = jobs_by_type(db)['calendar_create']
    assert job.status == 'failed'
    assert job.attempts == 2
    assert job.completed_at is not None

    stored = store.get_appointment(db, appointment.id)
    assert stored.status == 'confirmed'
    assert stored.external_event_id is None


def test_jobs_for_cancelled_appointment_are_skipped(db, patient, dispatcher, calendar, email) -> None:
    appointment = appointment_service.create_appointment(db, patient.id, at(10), at(11), 'virtual')
    appointment_service.cancel_appointment(db, appointment.id, reason='Sick')

    dispatcher.run_pending_jobs(db)

    assert calendar.created == []
    assert store.get_appointment(db, appointment.id).external_event_id is None
    assert sorted(message['to'] for message in email.sent) == ['ana.gomez@example.com', 'doctor@example.com']
    assert all('cancel' in message['subject'].lower() for message in email.sent)


def test_event_created_during_cancellation_is_removed(db, patient, email) -> None:
    appointment = appointment_service.create_appointment(db, patient.id, at(10), at(11), 'virtual')

    def cancel_concurrently() -> None:
        db.execute(update(Appointment).where(Appointment.id == appointment.id).values(status='cancelled'))
        db.commit()

    calendar = FakeCalendar(on_create=cancel_concurrently)
    dispatcher = IntegrationDispatcher(calendar=calendar, email=email)

    dispatcher.run_pending_jobs(db)

    assert calendar.deleted == ['evt-1']
    assert store.get_appointment(db, appointment.id).external_event_id is None


def test_cancel_after_sync_deletes_event(db, patient, dispatcher, calendar) -> None:
    appointment = appointment_service.create_appointment(db, patient.id, at(10), at(11), 'virtual')
    dispatcher.run_pending_jobs(db)

    appointment_service.cancel_appointment(db, appointment.id)
    dispatcher.run_pending_jobs(db)

    assert calendar.deleted == ['evt-1']
    assert store.get_appointment(db, appointment.id).external_event_id is None


def test_reschedule_after_sync_patches_times(db, patient, dispatcher, calendar) -> None:
    appointment = appointment_service.create_appointment(db, patient.id, at(10), at(11), 'virtual')
    dispatcher.run_pending_jobs(db)

    appointment_service.reschedule_appointment(db, appointment.id, at(14), at(15))
    dispatcher.run_pending_jobs(db)

    event_id, patch = calendar.updated[0]
    assert event_id == 'evt-1'
    assert set(patch) == {'start', 'end'}
    assert patch['start']['dateTime'] == '2030-01-07T14:00:00'
    assert len(calendar.created) == 1


def test_update_without_event_falls_back_to_create(db, patient, dispatcher, calendar) -> None:
    appointment = appointment_service.create_appointment(db, patient.id, at(10), at(11), 'virtual', status='pending')
    enqueue_job(db, JobType.CALENDAR_UPDATE, {'appointment_id': appointment.id}, 'calendar_update:appointment:x')
    db.commit()

    dispatcher.run_pending_jobs(db)

    assert calendar.updated == []
    assert len(calendar.created) == 1
    assert store.get_appointment(db, appointment.id).external_event_id == 'evt-1'


def test_unknown_job_type_fails_permanently(db, dispatcher) -> None:
    db.add(IntegrationJob(job_type='fax', payload={}, idempotency_key='fax:1', status='pending', attempts=0, max_attempts=5))
    db.commit()

    assert dispatcher.run_pending_jobs(db) == 0
    assert db.query(IntegrationJob).one().status == 'failed'


def test_dry_run_clients_complete_jobs_without_ids(db, patient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'GOOGLE_SERVICE_ACCOUNT_EMAIL', '')
    monkeypatch.setattr(config, 'GOOGLE_PRIVATE_KEY', '')
    monkeypatch.setattr(config, 'RESEND_API_KEY', '')
    appointment = appointment_service.create_appointment(db, patient.id, at(10), at(11), 'virtual')

    succeeded = dispatcher_module.IntegrationDispatcher().run_pending_jobs(db)

    assert succeeded == 2
    assert store.get_appointment(db, appointment.id).external_event_id is None
