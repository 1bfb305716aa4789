import pytest
from repair_tracker.errors import (
    RepairTrackerError, ValidationError, NotFoundError, InvalidStateError, RecordBusyError,
    PersistenceError, NotificationError, RateLimited,
)
from repair_tracker.services.store import RecordStore
from tests.test_utils_seed import staff_headers, repair_payload


def test_unknown_route_shape(client):
    r = client.get('/nope')
    assert r.status_code == 404
    err = r.get_json()['error']
    assert err['status'] == 404 and err['title'] == 'Not Found'


@pytest.mark.parametrize('exc,status,code', [
    (ValidationError('bad'), 400, 'VALIDATION_ERROR'),
    (NotFoundError('Repair', 1), 404, 'NOT_FOUND'),
    (InvalidStateError('nope'), 409, 'INVALID_STATE'),
    (RecordBusyError(1), 409, 'RECORD_BUSY'),
    (PersistenceError('Failed to save', 'disk I/O error'), 500, 'PERSISTENCE_ERROR'),
    (NotificationError('smtp down'), 500, 'NOTIFICATION_ERROR'),
    (RateLimited('1 per 1 second'), 429, 'RATE_LIMITED'),
])
def test_error_classes(exc, status, code):
    assert isinstance(exc, RepairTrackerError)
    assert exc.status_code == status
    assert exc.code == code


def test_persistence_error_carries_detail():
    e = PersistenceError('Failed to create repair', 'UNIQUE constraint failed: repairs.repair_id')
    assert e.detail == 'UNIQUE constraint failed: repairs.repair_id'
    assert e.message == 'Failed to create repair: UNIQUE constraint failed: repairs.repair_id'


def test_staff_sees_store_detail(client, app_instance, monkeypatch):
    def boom(self, data):
        raise PersistenceError('Failed to create repair', 'database is locked')
    monkeypatch.setattr(RecordStore, 'create_repair', boom)
    r = client.post('/repairs', json=repair_payload(), headers=staff_headers(app_instance))
    assert r.status_code == 500
    assert r.get_json() == {
        'success': False,
        'message': 'Failed to create repair: database is locked',
        'code': 'PERSISTENCE_ERROR',
    }


def test_public_hides_store_detail(client, monkeypatch):
    def boom(self, repair_id, fresh=True):
        raise PersistenceError('Failed to look up repair', 'database is locked')
    monkeypatch.setattr(RecordStore, 'find_repair_by_human_id', boom)
    r = client.get('/repairs/track/REP2603101234')
    assert r.status_code == 500
    body = r.get_json()
    assert 'database is locked' not in body['message']
    assert body['code'] == 'PERSISTENCE_ERROR'


def test_unhandled_exception_is_generic(client, app_instance, monkeypatch):
    def boom(self, phone):
        raise RuntimeError('kaboom')
    monkeypatch.setattr(RecordStore, 'latest_repair_for_phone', boom)
    r = client.post('/repairs/verify', json={'phone': '9876543210'})
    assert r.status_code == 500
    assert r.get_json()['error']['detail'] == 'Unexpected error'


def test_busy_record_maps_to_conflict(client, app_instance):
    h = staff_headers(app_instance)
    created = client.post('/repairs', json=repair_payload(), headers=h).get_json()['data']
    locks = app_instance.extensions['repair_locks']
    with locks.hold(created['id']):
        r = client.put('/repairs', json={'id': created['id'], 'status': 'Completed'}, headers=h)
    assert r.status_code == 409
    assert r.get_json()['code'] == 'RECORD_BUSY'
