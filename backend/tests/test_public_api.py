from repair_tracker import get_db
from repair_tracker.models.repair import Repair
from tests.test_utils_seed import staff_headers, repair_payload, email_payload


def _create(client, app_instance, payload=None):
    r = client.post('/repairs', json=payload or repair_payload(), headers=staff_headers(app_instance))
    assert r.status_code == 201
    return r.get_json()['data']


def test_track_hides_contact_and_payment(client, app_instance):
    created = _create(client, app_instance, email_payload(customer_paid=250, payment_mode='Cash'))
    r = client.get(f"/repairs/track/{created['repair_id']}")
    assert r.status_code == 200
    body = r.get_json()
    assert body['repair_id'] == created['repair_id']
    assert body['status'] == 'Received'
    for hidden in ('phone', 'email', 'customer_paid', 'payment_mode', 'id', 'customer_id'):
        assert hidden not in body
    assert r.headers['ETag']
    assert client.get(f"/repairs/track/{created['repair_id']}", headers={'If-None-Match': r.headers['ETag']}).status_code == 304


def test_track_unknown_is_generic(client):
    r = client.get('/repairs/track/REP0000000000')
    assert r.status_code == 404
    assert r.get_json() == {'success': False, 'message': 'Repair not found', 'code': 'NOT_FOUND'}


def test_track_sees_staff_update(client, app_instance):
    created = _create(client, app_instance)
    assert client.get(f"/repairs/track/{created['repair_id']}").get_json()['status'] == 'Received'
    client.put('/repairs', json={'id': created['id'], 'status': 'Ready for Pickup'}, headers=staff_headers(app_instance))
    assert client.get(f"/repairs/track/{created['repair_id']}").get_json()['status'] == 'Ready for Pickup'


def test_verify_phone(client, app_instance, clock):
    _create(client, app_instance)
    clock.advance(days=1)
    latest = _create(client, app_instance, repair_payload(serial_no='SN-2'))
    r = client.post('/repairs/verify', json={'phone': '9876543210'})
    assert r.get_json() == {'success': True, 'repairId': latest['repair_id']}
    assert client.post('/repairs/verify', json={'phone': '1111111111'}).status_code == 404
    missing = client.post('/repairs/verify', json={})
    assert missing.status_code == 400
    assert missing.get_json()['message'] == 'Phone number is required'


def test_notification_preferences_round_trip(client, app_instance):
    created = _create(client, app_instance)
    r = client.get(f"/notification-preferences?repairId={created['repair_id']}")
    assert r.get_json()['data'] == {'repairId': created['repair_id'], 'preference': 'none', 'email': None}
    r = client.put('/notification-preferences', json={'repairId': created['repair_id'], 'preference': 'email', 'email': 'asha@example.com'})
    assert r.status_code == 200
    assert r.get_json()['message'] == 'Notification preferences updated successfully'
    r = client.get(f"/notification-preferences?repairId={created['repair_id']}")
    assert r.get_json()['data']['preference'] == 'email'


def test_notification_preferences_validation(client, app_instance):
    created = _create(client, app_instance)
    r = client.put('/notification-preferences', json={'repairId': created['repair_id'], 'preference': 'email'})
    assert r.status_code == 400
    assert r.get_json()['message'] == 'Email is required for email notifications'
    assert client.get('/notification-preferences').status_code == 400
    r = client.put('/notification-preferences', json={'repairId': 'REP0000000000', 'preference': 'none'})
    assert r.status_code == 404
    assert r.get_json()['message'] == 'Repair not found'


def test_estimate_decline_cascades(client, app_instance, notifier):
    created = _create(client, app_instance, email_payload(repair_estimate=1800))
    client.put('/repairs', json={'id': created['id'], 'status': 'Sent to Manufacturer'}, headers=staff_headers(app_instance))
    notifier.reset()
    r = client.post('/estimate-approval', json={'repairId': created['repair_id'], 'status': 'Declined'})
    assert r.status_code == 200
    body = r.get_json()
    assert body['message'] == 'Estimate declined successfully'
    assert body['cascaded'] is True
    assert body['data']['status'] == 'Returned from Manufacturer'
    assert body['data']['estimate_status'] == 'Declined'
    assert 'email' not in body['data']
    assert notifier.templates() == ['statusChange']
    assert client.get(f"/repairs/track/{created['repair_id']}").get_json()['status'] == 'Returned from Manufacturer'


def test_estimate_approve_then_conflict(client, app_instance):
    created = _create(client, app_instance, repair_payload(repair_estimate=900))
    r = client.post('/estimate-approval', json={'repairId': created['repair_id'], 'status': 'Approved'})
    assert r.status_code == 200
    assert r.get_json()['cascaded'] is False
    again = client.post('/estimate-approval', json={'repairId': created['repair_id'], 'status': 'Declined'})
    assert again.status_code == 409
    assert again.get_json()['message'] == 'This request cannot be applied in the current state'
    row = get_db().query(Repair).filter_by(repair_id=created['repair_id']).one()
    assert row.estimate_status == 'Approved'


def test_estimate_bad_decision(client, app_instance):
    created = _create(client, app_instance, repair_payload(repair_estimate=900))
    r = client.post('/estimate-approval', json={'repairId': created['repair_id'], 'status': 'Maybe'})
    assert r.status_code == 400
    assert client.post('/estimate-approval', json={'status': 'Approved'}).status_code == 400
