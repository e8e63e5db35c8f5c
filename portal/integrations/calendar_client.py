"""Google Calendar integration for appointments.

Handles:
- Service account OAuth (JWT bearer grant)
- Event creation with a fallback chain for restrictive calendar settings
- Event patching and deletion

Without service account credentials every call is logged and skipped.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx
import jwt

from portal.core import config
from portal.models.appointment import Appointment
from portal.models.enums import AppointmentType
from portal.services.errors import IntegrationError

logger = logging.getLogger(__name__)

TOKEN_URL = 'https://oauth2.googleapis.com/token'
CALENDAR_SCOPE = 'https://www.googleapis.com/auth/calendar'
EVENTS_URL = 'https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events'
TOKEN_LIFETIME_SECONDS = 3600
# Refresh a little before Google expires the token.
TOKEN_REFRESH_MARGIN_SECONDS = 60


@dataclass(frozen=True)
class CalendarEventResult:
    event_id: str
    link: str | None = None


def build_event(appointment: Appointment, time_zone: str | None = None) -> dict[str, Any]:
    """Google Calendar event body for an appointment (naive times are practice-local)."""
    tz_name = time_zone or config.PRACTICE_TIMEZONE
    patient = appointment.patient
    patient_name = patient.full_name if patient and patient.full_name else 'Patient'
    modality = 'Virtual session' if appointment.appointment_type == AppointmentType.VIRTUAL.value else 'In-person session'

    description = '\n'.join([
        f'{config.PRACTICE_NAME} appointment',
        f'Status: {appointment.status}',
        f'Notes: {appointment.notes or "None"}',
        f'Email: {patient.email if patient else "Not available"}',
        f'Phone: {patient.phone if patient and patient.phone else "Not available"}',
    ])

    attendees = []
    if patient and patient.email:
        attendees.append({'email': patient.email, 'displayName': patient_name})

    return {
        'summary': f'{config.PRACTICE_NAME} - {modality} - {patient_name}',
        'description': description,
        'start': {'dateTime': appointment.start_time.isoformat(), 'timeZone': tz_name},
        'end': {'dateTime': appointment.end_time.isoformat(), 'timeZone': tz_name},
        'attendees': attendees,
    }


def build_time_patch(appointment: Appointment, time_zone: str | None = None) -> dict[str, Any]:
    tz_name = time_zone or config.PRACTICE_TIMEZONE
    return {
        'start': {'dateTime': appointment.start_time.isoformat(), 'timeZone': tz_name},
        'end': {'dateTime': appointment.end_time.isoformat(), 'timeZone': tz_name},
    }


def normalize_private_key(private_key: str) -> str:
    # Keys pasted into env files often carry literal "\n" sequences and wrapping quotes.
    return private_key.replace('\\n', '\n').replace('"', '').strip()


class GoogleCalendarClient:
    def __init__(
        self,
        *,
        service_account_email: str | None = None,
        private_key: str | None = None,
        calendar_id: str | None = None,
        timeout: float | None = None,
        reminder_minutes: int | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.service_account_email = service_account_email if service_account_email is not None else config.GOOGLE_SERVICE_ACCOUNT_EMAIL
        self.private_key = private_key if private_key is not None else config.GOOGLE_PRIVATE_KEY
        self.calendar_id = calendar_id or config.GOOGLE_CALENDAR_ID
        self.timeout = timeout or config.INTEGRATION_TIMEOUT_SECONDS
        self.reminder_minutes = reminder_minutes or config.CALENDAR_REMINDER_MINUTES
        self._transport = transport
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @property
    def enabled(self) -> bool:
        return bool(self.service_account_email and self.private_key)

    @property
    def events_url(self) -> str:
        return EVENTS_URL.format(calendar_id=quote(self.calendar_id, safe=''))

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            with self._client() as client:
                return client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise IntegrationError(f'Google Calendar {method} timed out') from exc
        except httpx.HTTPError as exc:
            raise IntegrationError(f'Google Calendar {method} failed: {exc.__class__.__name__}') from exc

    def get_access_token(self) -> str:
        if self._access_token and time.time() < self._token_expires_at:
            return self._access_token

        issued_at = int(time.time())
        assertion = jwt.encode(
            {
                'iss': self.service_account_email,
                'scope': CALENDAR_SCOPE,
                'aud': TOKEN_URL,
                'iat': issued_at,
                'exp': issued_at + TOKEN_LIFETIME_SECONDS,
            },
            normalize_private_key(self.private_key),
            algorithm='RS256',
        )

        response = self._request(
            'POST',
            TOKEN_URL,
            data={
                'grant_type': 'urn:ietf:params:oauth:grant-type:jwt-bearer',
                'assertion': assertion,
            },
        )
        if response.status_code != 200:
            raise IntegrationError('Failed to get Google access token', status_code=response.status_code)

        data = response.json()
        self._access_token = data['access_token']
        expires_in = int(data.get('expires_in', TOKEN_LIFETIME_SECONDS))
        self._token_expires_at = time.time() + expires_in - TOKEN_REFRESH_MARGIN_SECONDS
        return self._access_token

    def _headers(self) -> dict[str, str]:
        return {
            'Authorization': f'Bearer {self.get_access_token()}',
            'Content-Type': 'application/json',
        }

    def _create_attempts(self, event: dict[str, Any]) -> list[tuple[str, dict[str, Any], dict[str, str]]]:
        custom_reminders = {
            'useDefault': False,
            'overrides': [{'method': 'popup', 'minutes': self.reminder_minutes}],
        }
        default_reminders = {'useDefault': True}
        notify = {'sendUpdates': 'all'}

        return [
            ('custom reminders', {**event, 'reminders': custom_reminders}, notify),
            ('default reminders', {**event, 'reminders': default_reminders}, notify),
            ('without notifications', {**event, 'reminders': default_reminders}, {}),
        ]

    def create_event(self, event: dict[str, Any]) -> CalendarEventResult | None:
        """
        Create an event, degrading the request on each failure.

        Attempts, in order: custom reminders with attendee notifications,
        default reminders with notifications, default reminders without the
        sendUpdates parameter. Raises IntegrationError when all of them fail.
        Returns None in dry-run mode.
        """
        if not self.enabled:
            logger.info('[DRY RUN] Calendar create skipped for "%s"', event.get('summary'))
            return None

        headers = self._headers()
        last_error: IntegrationError | None = None

        for label, body, params in self._create_attempts(event):
            try:
                response = self._request('POST', self.events_url, headers=headers, json=body, params=params)
            except IntegrationError as exc:
                last_error = exc
                logger.warning('Calendar create (%s) failed: %s', label, exc)
                continue

            if response.status_code in (200, 201):
                data = response.json()
                return CalendarEventResult(event_id=data['id'], link=data.get('htmlLink'))

            last_error = IntegrationError(
                f'Calendar create ({label}) returned {response.status_code}',
                status_code=response.status_code,
            )
            logger.warning('Calendar create (%s) returned %s', label, response.status_code)

        raise last_error or IntegrationError('Calendar create failed')

    def update_event(self, event_id: str, patch: dict[str, Any]) -> CalendarEventResult | None:
        """PATCH only the given fields so attendee edits made in Google are preserved."""
        if not self.enabled:
            logger.info('[DRY RUN] Calendar update skipped for event %s', event_id)
            return None

        response = self._request(
            'PATCH',
            f'{self.events_url}/{quote(event_id, safe="")}',
            headers=self._headers(),
            json=patch,
            params={'sendUpdates': 'all'},
        )
        if response.status_code != 200:
            raise IntegrationError(
                f'Calendar update returned {response.status_code}',
                status_code=response.status_code,
            )

        data = response.json()
        return CalendarEventResult(event_id=data.get('id', event_id), link=data.get('htmlLink'))

    def delete_event(self, event_id: str) -> None:
        if not self.enabled:
            logger.info('[DRY RUN] Calendar delete skipped for event %s', event_id)
            return

        response = self._request(
            'DELETE',
            f'{self.events_url}/{quote(event_id, safe="")}',
            headers=self._headers(),
            params={'sendUpdates': 'all'},
        )
        # 404/410: the event is already gone, which is the state we want.
        if response.status_code in (200, 204, 404, 410):
            return

        raise IntegrationError(
            f'Calendar delete returned {response.status_code}',
            status_code=response.status_code,
        )
