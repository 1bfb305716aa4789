import re
import pytest
from sqlalchemy.orm.exc import StaleDataError
from repair_tracker import get_db
from repair_tracker.constants.statuses import RepairStatus, EstimateStatus
from repair_tracker.errors import ValidationError, NotFoundError, PersistenceError, RecordBusyError
from repair_tracker.models.customer import Customer
from repair_tracker.models.status_change import StatusChangeLog
from repair_tracker.services.serializers import iso
from repair_tracker.services.store import RecordStore, repair_to_patch, MUTABLE_FIELDS
from tests.test_utils_seed import build_engines, repair_payload, email_payload, START

STAFF = StatusChangeLog.staff_actor(1)


@pytest.fixture()
def engines(app_context, notifier, clock):
    return build_engines(notifier, clock)


@pytest.fixture()
def lifecycle(engines):
    return engines[0]


def test_create_repair_defaults(lifecycle):
    result = lifecycle.create_repair(repair_payload(), actor=STAFF)
    r = result.repair
    assert r.status == RepairStatus.RECEIVED.value
    assert re.match(r'^REP\d{6}\d{4}$', r.repair_id)
    assert r.repair_id.startswith('REP260310')
    assert iso(r.date_of_receipt) == iso(START)
    assert r.estimate_status == EstimateStatus.NOT_REQUIRED.value
    assert r.notification_preference == 'none'
    assert r.customer_id is not None
    assert result.warnings == []


@pytest.mark.parametrize('estimate,expected', [
    (1500, EstimateStatus.PENDING.value),
    ('250.50', EstimateStatus.PENDING.value),
    (0, EstimateStatus.NOT_REQUIRED.value),
    (None, EstimateStatus.NOT_REQUIRED.value),
    ('', EstimateStatus.NOT_REQUIRED.value),
])
def test_create_repair_estimate_status(lifecycle, estimate, expected):
    r = lifecycle.create_repair(repair_payload(repair_estimate=estimate), actor=STAFF).repair
    assert r.estimate_status == expected


def test_create_with_estimate_sends_estimate_ready_when_opted_in(lifecycle, notifier):
    lifecycle.create_repair(email_payload(repair_estimate=1200), actor=STAFF)
    assert notifier.templates() == ['estimateReady']
    assert notifier.sent[0]['data']['estimate'] == 1200
    assert '1200.00' in notifier.sent[0]['text']


def test_create_without_opt_in_sends_nothing(lifecycle, notifier):
    lifecycle.create_repair(repair_payload(repair_estimate=1200, email='asha@example.com'), actor=STAFF)
    assert notifier.sent == []


@pytest.mark.parametrize('missing', ['patient_name', 'phone', 'model_item_name', 'serial_no', 'warranty', 'purpose'])
def test_create_requires_fields(lifecycle, missing):
    with pytest.raises(ValidationError) as exc:
        lifecycle.create_repair(repair_payload(**{missing: '  '}), actor=STAFF)
    assert missing in exc.value.fields
    assert get_db().query(Customer).count() == 0


@pytest.mark.parametrize('overrides', [
    {'phone': '12345'},
    {'warranty': '5 years warranty'},
    {'payment_mode': 'Cheque'},
    {'ear': 'middle'},
    {'notification_preference': 'sms'},
    {'repair_estimate': -5},
    {'customer_paid': 'lots'},
    {'quantity': 0},
    {'notification_preference': 'email'},
    {'notification_preference': 'email', 'email': 'not-an-email'},
])
def test_create_rejects_invalid_input_before_any_write(lifecycle, overrides):
    with pytest.raises(ValidationError):
        lifecycle.create_repair(repair_payload(**overrides), actor=STAFF)
    assert get_db().query(Customer).count() == 0


def test_customer_resolved_by_phone_last_write_wins(lifecycle):
    first = lifecycle.create_repair(repair_payload(patient_name='Asha', company='Phonak'), actor=STAFF).repair
    second = lifecycle.create_repair(repair_payload(patient_name='Asha R', company='Signia', serial_no='SN-2'), actor=STAFF).repair
    assert first.customer_id == second.customer_id
    customers = get_db().query(Customer).all()
    assert len(customers) == 1
    assert customers[0].name == 'Asha R'
    assert customers[0].company == 'Signia'


def test_repair_write_failure_keeps_customer(lifecycle, monkeypatch):
    def boom(data):
        raise PersistenceError('Failed to create repair', 'NOT NULL constraint failed: repairs.purpose')
    monkeypatch.setattr(lifecycle.store, 'create_repair', boom)
    with pytest.raises(PersistenceError) as exc:
        lifecycle.create_repair(repair_payload(), actor=STAFF)
    assert 'NOT NULL constraint failed' in exc.value.message
    assert get_db().query(Customer).count() == 1


def test_repair_id_regenerated_when_taken(lifecycle, monkeypatch):
    taken = iter([True, True, False])
    monkeypatch.setattr(lifecycle.store, 'repair_id_taken', lambda rid: next(taken))
    r = lifecycle.create_repair(repair_payload(), actor=STAFF).repair
    assert r.repair_id.startswith('REP')


def test_repair_id_gives_up_after_repeated_collisions(lifecycle, monkeypatch):
    monkeypatch.setattr(lifecycle.store, 'repair_id_taken', lambda rid: True)
    with pytest.raises(PersistenceError):
        lifecycle.create_repair(repair_payload(), actor=STAFF)


def test_transition_stamps_stage_once(lifecycle, clock):
    r = lifecycle.create_repair(repair_payload(), actor=STAFF).repair
    t1 = clock.advance(hours=1)
    lifecycle.transition_status(r.id, 'Sent to Manufacturer', STAFF)
    clock.advance(hours=1)
    again = lifecycle.transition_status(r.id, 'Sent to Manufacturer', STAFF).repair
    assert iso(again.date_out_to_manufacturer) == iso(t1)
    events = RecordStore(get_db()).status_events(r.id)
    assert [(e.old_status, e.new_status) for e in events] == [
        ('Received', 'Sent to Manufacturer'),
        ('Sent to Manufacturer', 'Sent to Manufacturer'),
    ]


def test_transition_stage_timestamps(lifecycle, clock):
    r = lifecycle.create_repair(repair_payload(), actor=STAFF).repair
    stamps = {}
    for status in ('Sent to Manufacturer', 'Returned from Manufacturer', 'Ready for Pickup', 'Completed'):
        stamps[status] = clock.advance(days=1)
        r = lifecycle.transition_status(r.id, status, STAFF).repair
    assert iso(r.date_out_to_manufacturer) == iso(stamps['Sent to Manufacturer'])
    assert iso(r.date_received_from_manufacturer) == iso(stamps['Returned from Manufacturer'])
    assert iso(r.date_out_to_customer) == iso(stamps['Completed'])
    assert r.status == 'Completed'


def test_backward_transition_accepted_and_logged(lifecycle, caplog):
    r = lifecycle.create_repair(repair_payload(), actor=STAFF).repair
    lifecycle.transition_status(r.id, 'Ready for Pickup', STAFF)
    with caplog.at_level('WARNING', logger='repair_tracker.services.mutations'):
        back = lifecycle.transition_status(r.id, 'Received', STAFF).repair
    assert back.status == 'Received'
    assert any('moved out of flow' in rec.message for rec in caplog.records)


def test_transition_validates_before_writing(lifecycle):
    r = lifecycle.create_repair(repair_payload(), actor=STAFF).repair
    with pytest.raises(ValidationError):
        lifecycle.transition_status(r.id, 'Sent to Company for Repair', STAFF)
    with pytest.raises(NotFoundError):
        lifecycle.transition_status(999999, 'Completed', STAFF)
    assert RecordStore(get_db()).status_events(r.id) == []


def test_transition_notifies_and_marks_event(lifecycle, notifier):
    r = lifecycle.create_repair(email_payload(), actor=STAFF).repair
    result = lifecycle.transition_status(r.id, 'Sent to Manufacturer', STAFF)
    assert notifier.templates() == ['statusChange']
    data = notifier.sent[0]['data']
    assert data['oldStatus'] == 'Received' and data['newStatus'] == 'Sent to Manufacturer'
    assert data['productName'] == 'Audeo P90'
    events = RecordStore(get_db()).status_events(r.id)
    assert events[-1].notification_sent is True
    assert result.warnings == []


def test_ready_for_pickup_also_sends_repair_complete(lifecycle, notifier):
    r = lifecycle.create_repair(email_payload(), actor=STAFF).repair
    lifecycle.transition_status(r.id, 'Ready for Pickup', STAFF)
    assert notifier.templates() == ['statusChange', 'repairComplete']


def test_same_status_resend_does_not_email(lifecycle, notifier):
    r = lifecycle.create_repair(email_payload(), actor=STAFF).repair
    lifecycle.transition_status(r.id, 'Sent to Manufacturer', STAFF)
    lifecycle.transition_status(r.id, 'Sent to Manufacturer', STAFF)
    assert notifier.templates() == ['statusChange']


def test_same_status_ready_for_pickup_resend_sends_nothing(lifecycle, notifier):
    r = lifecycle.create_repair(email_payload(), actor=STAFF).repair
    lifecycle.transition_status(r.id, 'Ready for Pickup', STAFF)
    notifier.reset()
    result = lifecycle.transition_status(r.id, 'Ready for Pickup', STAFF)
    assert notifier.templates() == []
    assert result.warnings == []
    events = RecordStore(get_db()).status_events(r.id)
    assert [(e.old_status, e.new_status) for e in events] == [
        ('Received', 'Ready for Pickup'), ('Ready for Pickup', 'Ready for Pickup'),
    ]
    assert events[-1].notification_sent is False


def test_notification_failure_is_a_warning(lifecycle, notifier):
    r = lifecycle.create_repair(email_payload(), actor=STAFF).repair
    notifier.fail_with = 'SMTP 451 try later'
    result = lifecycle.transition_status(r.id, 'Sent to Manufacturer', STAFF)
    assert result.repair.status == 'Sent to Manufacturer'
    assert any('SMTP 451' in w for w in result.warnings)
    assert RecordStore(get_db()).status_events(r.id)[-1].notification_sent is False


def test_notifier_exception_never_fails_transition(lifecycle, notifier):
    r = lifecycle.create_repair(email_payload(), actor=STAFF).repair
    notifier.raise_with = TimeoutError('smtp timed out')
    result = lifecycle.transition_status(r.id, 'Completed', STAFF)
    assert result.repair.status == 'Completed'
    assert result.warnings


def test_update_repair_fields_and_status(lifecycle, clock, notifier):
    r = lifecycle.create_repair(email_payload(), actor=STAFF).repair
    t1 = clock.advance(hours=2)
    result = lifecycle.update_repair(r.id, {'status': 'Sent to Manufacturer', 'remarks': 'Receiver replaced', 'customer_paid': '300'}, STAFF)
    updated = result.repair
    assert updated.remarks == 'Receiver replaced'
    assert updated.customer_paid == 300.0
    assert updated.status == 'Sent to Manufacturer'
    assert iso(updated.date_out_to_manufacturer) == iso(t1)
    assert len(result.events) == 1
    assert notifier.templates() == ['statusChange']


def test_update_estimate_moves_to_pending(lifecycle, notifier):
    r = lifecycle.create_repair(email_payload(), actor=STAFF).repair
    result = lifecycle.update_repair(r.id, {'repair_estimate': 900}, STAFF)
    assert result.repair.estimate_status == 'Pending'
    assert notifier.templates() == ['estimateReady']
    cleared = lifecycle.update_repair(r.id, {'repair_estimate': ''}, STAFF).repair
    assert cleared.estimate_status == 'Not Required'


def test_update_rejects_identity_fields(lifecycle):
    r = lifecycle.create_repair(repair_payload(), actor=STAFF).repair
    with pytest.raises(ValidationError):
        lifecycle.update_repair(r.id, {'repair_id': 'REP0000000000'}, STAFF)
    with pytest.raises(ValidationError):
        lifecycle.update_repair(r.id, {'date_out_to_manufacturer': '2026-01-01T00:00:00Z'}, STAFF)
    with pytest.raises(ValidationError):
        lifecycle.update_repair(r.id, {}, STAFF)


def test_update_email_preference_needs_email(lifecycle):
    r = lifecycle.create_repair(repair_payload(), actor=STAFF).repair
    with pytest.raises(ValidationError):
        lifecycle.update_repair(r.id, {'notification_preference': 'email'}, STAFF)
    ok = lifecycle.update_repair(r.id, {'notification_preference': 'email', 'email': 'a@b.co'}, STAFF).repair
    assert ok.wants_email


def test_update_preference_rejected_before_customer_write(lifecycle):
    r = lifecycle.create_repair(repair_payload(patient_name='Original', phone='9876543210'), actor=STAFF).repair
    with pytest.raises(ValidationError) as exc:
        lifecycle.update_repair(r.id, {'patient_name': 'Renamed', 'phone': '5555555555',
                                       'notification_preference': 'email'}, STAFF)
    assert exc.value.fields == ['email']
    session = get_db()
    session.expire_all()
    customers = sorted((c.name, c.phone) for c in session.query(Customer).all())
    assert customers == [('Original', '9876543210')]
    unchanged = RecordStore(get_db()).get_repair(r.id, fresh=True)
    assert unchanged.customer_id == r.customer_id
    assert unchanged.patient_name == 'Original'


def test_update_phone_moves_repair_to_matching_customer(lifecycle):
    a = lifecycle.create_repair(repair_payload(phone='1111111111', patient_name='A'), actor=STAFF).repair
    b = lifecycle.create_repair(repair_payload(phone='2222222222', patient_name='B'), actor=STAFF).repair
    moved = lifecycle.update_repair(b.id, {'phone': '1111111111', 'patient_name': 'A'}, STAFF).repair
    assert moved.customer_id == a.customer_id


def test_delete_repair(lifecycle):
    r = lifecycle.create_repair(repair_payload(), actor=STAFF).repair
    lifecycle.transition_status(r.id, 'Sent to Manufacturer', STAFF)
    human = lifecycle.delete_repair(r.id)
    assert human == r.repair_id
    store = RecordStore(get_db())
    assert store.get_repair(r.id) is None
    assert store.status_events(r.id) == []


def test_delete_unknown_performs_no_mutation(lifecycle, monkeypatch):
    calls = []
    monkeypatch.setattr(lifecycle.store, 'delete_repair', lambda repair: calls.append(repair))
    with pytest.raises(NotFoundError):
        lifecycle.delete_repair(424242)
    assert calls == []


def test_notification_preferences(lifecycle):
    r = lifecycle.create_repair(repair_payload(), actor=STAFF).repair
    updated = lifecycle.update_notification_preferences(r.repair_id, 'email', 'asha@example.com').repair
    assert updated.notification_preference == 'email'
    assert updated.email == 'asha@example.com'
    with pytest.raises(ValidationError):
        lifecycle.update_notification_preferences(r.repair_id, 'email', '')
    with pytest.raises(ValidationError):
        lifecycle.update_notification_preferences(r.repair_id, 'carrier-pigeon', None)
    with pytest.raises(NotFoundError):
        lifecycle.update_notification_preferences('REP0000000000', 'none', None)
    off = lifecycle.update_notification_preferences(r.repair_id, 'none', None).repair
    assert off.wants_email is False


def test_lookup_by_phone_returns_latest(lifecycle, clock):
    lifecycle.create_repair(repair_payload(serial_no='OLD'), actor=STAFF)
    clock.advance(days=3)
    latest = lifecycle.create_repair(repair_payload(serial_no='NEW'), actor=STAFF).repair
    assert lifecycle.lookup_by_phone('9876543210').repair_id == latest.repair_id
    with pytest.raises(NotFoundError):
        lifecycle.lookup_by_phone('0000000000')
    with pytest.raises(ValidationError):
        lifecycle.lookup_by_phone('  ')


class FlakyStore(RecordStore):
    """Raises StaleDataError on the first ``failures`` commits, as a concurrent writer would."""

    def __init__(self, session, failures):
        super().__init__(session)
        self.failures = failures
        self.commits = 0

    def commit(self, action='save changes'):
        self.commits += 1
        if self.failures > 0:
            self.failures -= 1
            self.session.rollback()
            raise StaleDataError('UPDATE statement on table repairs expected to update 1 row(s); 0 were matched.')
        return super().commit(action)


def test_version_conflict_retried(app_context, notifier, clock):
    lifecycle, _ = build_engines(notifier, clock)
    r = lifecycle.create_repair(repair_payload(), actor=STAFF).repair
    flaky = FlakyStore(get_db(), failures=2)
    lifecycle, _ = build_engines(notifier, clock, store=flaky)
    result = lifecycle.transition_status(r.id, 'Sent to Manufacturer', STAFF)
    assert result.repair.status == 'Sent to Manufacturer'
    assert flaky.commits == 3
    assert len(RecordStore(get_db()).status_events(r.id)) == 1


def test_version_conflict_gives_up(app_context, notifier, clock):
    lifecycle, _ = build_engines(notifier, clock)
    r = lifecycle.create_repair(repair_payload(), actor=STAFF).repair
    lifecycle, _ = build_engines(notifier, clock, store=FlakyStore(get_db(), failures=5))
    with pytest.raises(RecordBusyError):
        lifecycle.transition_status(r.id, 'Sent to Manufacturer', STAFF)
    fresh = RecordStore(get_db()).get_repair(r.id)
    assert fresh.status == 'Received'


def test_patch_round_trip(lifecycle):
    r = lifecycle.create_repair(email_payload(repair_estimate=400, payment_mode='UPI'), actor=STAFF).repair
    lifecycle.transition_status(r.id, 'Sent to Manufacturer', STAFF)
    store = RecordStore(get_db())
    patch = repair_to_patch(store.get_repair(r.id))
    assert set(patch) == set(MUTABLE_FIELDS)
    store.update_repair(r.id, patch)
    back = store.find_repair_by_human_id(r.repair_id)
    for name in MUTABLE_FIELDS:
        assert getattr(back, name) == patch[name], name
