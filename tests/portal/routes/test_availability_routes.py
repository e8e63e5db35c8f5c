import pytest
from pydantic import ValidationError

from portal.core import config
from portal.routes.availability_routes import TemplateBlockRequest

WEEKDAYS = [{'day_of_week': day, 'start_time': '09:00', 'end_time': '17:00'} for day in range(1, 6)]


def test_template_block_request_rejects_out_of_range_day() -> None:
    with pytest.raises(ValidationError):
        TemplateBlockRequest(day_of_week=7, start_time='09:00', end_time='17:00')


def test_health_check(client) -> None:
    response = client.get('/')

    assert response.status_code == 200
    assert 'running' in response.json()['status']


def test_replace_and_list_templates(client) -> None:
    response = client.put('/availability/templates', json=WEEKDAYS)

    assert response.status_code == 200
    assert [entry['day_of_week'] for entry in response.json()] == [1, 2, 3, 4, 5]

    listed = client.get('/availability/templates').json()
    assert listed[0]['start_time'] == '09:00:00'
    assert listed[0]['is_active'] is True


def test_replace_templates_rejects_inverted_block(client) -> None:
    response = client.put(
        '/availability/templates',
        json=[{'day_of_week': 1, 'start_time': '17:00', 'end_time': '09:00'}],
    )

    assert response.status_code == 400


def test_slots_for_monday(client) -> None:
    client.put('/availability/templates', json=WEEKDAYS)

    response = client.get('/availability/slots', params={'date': '2030-01-07', 'duration': 60})

    assert response.status_code == 200
    slots = response.json()
    assert len(slots) == 8
    assert slots[0] == {
        'start_time': '2030-01-07T09:00:00',
        'end_time': '2030-01-07T10:00:00',
        'is_available': True,
    }


def test_slots_reject_non_positive_duration(client) -> None:
    response = client.get('/availability/slots', params={'date': '2030-01-07', 'duration': 0})

    assert response.status_code == 422


def test_override_upsert_then_list(client) -> None:
    client.put('/availability/templates', json=WEEKDAYS)

    response = client.put(
        '/availability/overrides/2030-01-07',
        json={'slots': [{'start_time': '14:00', 'end_time': '16:00'}]},
    )

    assert response.status_code == 200
    assert response.json()['slots'] == [{'start_time': '14:00', 'end_time': '16:00'}]

    slots = client.get('/availability/slots', params={'date': '2030-01-07', 'duration': 60}).json()
    assert [slot['start_time'] for slot in slots] == ['2030-01-07T14:00:00', '2030-01-07T15:00:00']

    overrides = client.get('/availability/overrides').json()
    assert [override['date'] for override in overrides] == ['2030-01-07']


def test_bulk_overrides(client) -> None:
    response = client.post(
        '/availability/overrides/bulk',
        json={
            'overrides': [
                {'date': '2030-01-08', 'is_unavailable': True},
                {'date': '2030-01-09', 'slots': [{'start_time': '10:00', 'end_time': '11:00'}]},
            ],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert [override['date'] for override in body] == ['2030-01-08', '2030-01-09']
    assert body[0]['is_unavailable'] is True


def test_bulk_overrides_requires_entries(client) -> None:
    response = client.post('/availability/overrides/bulk', json={'overrides': []})

    assert response.status_code == 400


def test_block_unblock_and_delete_range(client) -> None:
    client.put('/availability/templates', json=WEEKDAYS)

    blocked = client.post('/availability/block-range', json={'start_date': '2030-01-07', 'end_date': '2030-01-09'})
    assert blocked.status_code == 200
    assert blocked.json()['affected'] == 3
    assert client.get('/availability/slots', params={'date': '2030-01-08'}).json() == []

    unblocked = client.post('/availability/unblock-range', json={'start_date': '2030-01-08', 'end_date': '2030-01-08'})
    assert unblocked.json()['affected'] == 1
    assert len(client.get('/availability/slots', params={'date': '2030-01-08'}).json()) == 8

    deleted = client.delete('/availability/overrides', params={'start_date': '2030-01-01', 'end_date': '2030-01-31'})
    assert deleted.json()['affected'] == 2


def test_block_range_rejects_inverted_dates(client) -> None:
    response = client.post('/availability/block-range', json={'start_date': '2030-01-09', 'end_date': '2030-01-07'})

    assert response.status_code == 400
    assert response.json()['detail'] == 'start_date must be on or before end_date.'


def test_appointment_types_expose_pricing(client) -> None:
    response = client.get('/availability/appointment-types')

    assert response.status_code == 200
    assert response.json() == [
        {
            'appointment_type': 'virtual',
            'duration_minutes': config.APPOINTMENT_PRICING.duration_minutes,
            'price': config.APPOINTMENT_PRICING.virtual,
            'currency': config.APPOINTMENT_PRICING.currency,
        },
        {
            'appointment_type': 'in_person',
            'duration_minutes': config.APPOINTMENT_PRICING.duration_minutes,
            'price': config.APPOINTMENT_PRICING.in_person,
            'currency': config.APPOINTMENT_PRICING.currency,
        },
    ]
