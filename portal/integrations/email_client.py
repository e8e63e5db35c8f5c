"""Transactional email via the Resend API."""

import logging

import httpx

from portal.core import config
from portal.services.errors import IntegrationError

logger = logging.getLogger(__name__)

RESEND_SEND_URL = 'https://api.resend.com/emails'


def mask_email(email: str | None) -> str:
    if not email:
        return ''
    local, _, domain = email.partition('@')
    prefix = local[:3] if local else ''
    return f'{prefix}...@{domain}' if domain else f'{prefix}...'


class ResendEmailClient:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        sender: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else config.RESEND_API_KEY
        self.sender = sender or config.EMAIL_FROM
        self.timeout = timeout or config.INTEGRATION_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def send(self, to: str, subject: str, html: str, idempotency_key: str | None = None) -> str | None:
        """Send one email. Returns the provider message id, or None in dry-run mode."""
        if not self.enabled:
            logger.info('[DRY RUN] Email "%s" to %s skipped', subject, mask_email(to))
            return None

        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }
        if idempotency_key:
            headers['Idempotency-Key'] = idempotency_key

        payload = {
            'from': self.sender,
            'to': [to],
            'subject': subject,
            'html': html,
        }

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(RESEND_SEND_URL, headers=headers, json=payload)
        except httpx.TimeoutException as exc:
            raise IntegrationError('Resend request timed out') from exc
        except httpx.HTTPError as exc:
            raise IntegrationError(f'Resend request failed: {exc.__class__.__name__}') from exc

        if not 200 <= response.status_code < 300:
            raise IntegrationError(
                f'Resend returned {response.status_code}',
                status_code=response.status_code,
            )

        message_id = response.json().get('id')
        logger.info('Email sent to %s message_id=%s', mask_email(to), message_id)
        return message_id
