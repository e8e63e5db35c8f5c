"""HTML bodies for appointment emails."""

from dataclasses import dataclass
from datetime import datetime
from html import escape

from portal.core import config
from portal.models.appointment import Appointment
from portal.models.enums import AppointmentType


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str


def _wrap(content: str) -> str:
    practice = escape(config.PRACTICE_NAME)
    return (
        '<!DOCTYPE html><html><head><meta charset="utf-8"></head><body style="margin:0;padding:0;">'
        '<div style="font-family:\'Segoe UI\',Tahoma,Geneva,Verdana,sans-serif;max-width:600px;'
        'margin:0 auto;padding:40px;border-radius:16px;background:#fdf4ff;">'
        f'<div style="text-align:center;margin-bottom:30px;"><h1 style="color:#86198f;margin:0;">{practice}</h1></div>'
        f'<div style="background:white;padding:30px;border-radius:12px;">{content}</div>'
        f'<p style="text-align:center;color:#9ca3af;font-size:13px;margin-top:30px;">{practice}</p>'
        '</div></body></html>'
    )


def _format_date(value: datetime) -> str:
    return value.strftime('%A, %B %d, %Y')


def _format_time(value: datetime) -> str:
    return value.strftime('%I:%M %p').lstrip('0')


def _patient_name(appointment: Appointment) -> str:
    patient = appointment.patient
    return escape(patient.full_name) if patient and patient.full_name else 'Patient'


def _modality(appointment: Appointment) -> str:
    if appointment.appointment_type == AppointmentType.VIRTUAL.value:
        return 'Virtual session (you will receive the link before the appointment)'
    return 'In-person session'


def _details(appointment: Appointment) -> str:
    return (
        '<div style="padding:20px;border-left:4px solid #a855f7;margin:25px 0;">'
        f'<p><strong>Date:</strong> {_format_date(appointment.start_time)}</p>'
        f'<p><strong>Time:</strong> {_format_time(appointment.start_time)} - {_format_time(appointment.end_time)}</p>'
        f'<p><strong>Modality:</strong> {_modality(appointment)}</p>'
        '</div>'
    )


def confirmation_email(appointment: Appointment) -> RenderedEmail:
    content = (
        '<h2 style="color:#16a34a;">Your appointment is confirmed</h2>'
        f'<p>Hello <strong>{_patient_name(appointment)}</strong>,</p>'
        '<p>Your appointment has been booked successfully.</p>'
        f'{_details(appointment)}'
        '<p style="color:#6b7280;">If you need to reschedule or cancel, please do so at least '
        '<strong>24 hours</strong> in advance.</p>'
    )
    return RenderedEmail(subject=f'Appointment confirmed - {config.PRACTICE_NAME}', html=_wrap(content))


def cancellation_email(appointment: Appointment) -> RenderedEmail:
    reason = ''
    if appointment.cancellation_reason:
        reason = f'<p><strong>Reason:</strong> {escape(appointment.cancellation_reason)}</p>'

    site_url = escape(f'{config.SITE_URL}/patient/appointments', quote=True)
    content = (
        '<h2 style="color:#dc2626;">Your appointment was cancelled</h2>'
        f'<p>Hello <strong>{_patient_name(appointment)}</strong>,</p>'
        f'<p>Your appointment on {_format_date(appointment.start_time)} at '
        f'{_format_time(appointment.start_time)} has been cancelled.</p>'
        f'{reason}'
        f'<p><a href="{site_url}">Book a new appointment</a></p>'
    )
    return RenderedEmail(subject=f'Appointment cancelled - {config.PRACTICE_NAME}', html=_wrap(content))


def reschedule_email(appointment: Appointment) -> RenderedEmail:
    content = (
        '<h2 style="color:#2563eb;">Your appointment was rescheduled</h2>'
        f'<p>Hello <strong>{_patient_name(appointment)}</strong>,</p>'
        '<p>Your appointment has a new time. It will be confirmed shortly.</p>'
        f'{_details(appointment)}'
    )
    return RenderedEmail(subject=f'Appointment rescheduled - {config.PRACTICE_NAME}', html=_wrap(content))


def practitioner_cancellation_notice(appointment: Appointment) -> RenderedEmail:
    patient = appointment.patient
    patient_name = _patient_name(appointment)
    phone = ''
    if patient and patient.phone:
        phone = f'<p><strong>Phone:</strong> {escape(patient.phone)}</p>'
    reason = escape(appointment.cancellation_reason) if appointment.cancellation_reason else 'Not given'

    content = (
        '<h2 style="color:#ea580c;">Appointment cancelled</h2>'
        f'<p><strong>{patient_name}</strong> cancelled the appointment on '
        f'{_format_date(appointment.start_time)} at {_format_time(appointment.start_time)}.</p>'
        f'<p><strong>Email:</strong> {escape(patient.email) if patient else "Not available"}</p>'
        f'{phone}'
        f'<p><strong>Reason:</strong> {reason}</p>'
        f'<p><strong>Cancelled by:</strong> {escape(appointment.cancelled_by or "unknown")}</p>'
    )
    raw_name = patient.full_name if patient and patient.full_name else 'Patient'
    return RenderedEmail(subject=f'Cancellation: {raw_name} cancelled their appointment', html=_wrap(content))
