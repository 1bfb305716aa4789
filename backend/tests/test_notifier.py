import smtplib
import socket
import pytest
from repair_tracker.errors import NotificationError
from repair_tracker.services import notifier as notifier_mod
from repair_tracker.services.notifier import (
    EmailNotifier, DisabledNotifier, build_notifier, notify_customer, render_email,
    STATUS_CHANGE, ESTIMATE_READY, REPAIR_COMPLETE,
)

BASE = {'repairId': 'REP2603101234', 'customerName': 'Asha Rao', 'productName': 'Audeo P90'}


class FakeSMTP:
    instances = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.sent = []
        self.tls = False
        self.login_args = None
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.tls = True

    def login(self, user, password):
        self.login_args = (user, password)

    def send_message(self, msg):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        self.sent.append(msg)


@pytest.fixture()
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(notifier_mod.smtplib, 'SMTP', FakeSMTP)
    return FakeSMTP


def test_render_templates():
    subject, text, html = render_email(STATUS_CHANGE, dict(BASE, oldStatus='Received', newStatus='Sent to Manufacturer'))
    assert subject == 'Your Repair Status Has Been Updated'
    assert 'Received' in text and 'Sent to Manufacturer' in text
    assert 'REP2603101234' in html
    subject, text, _ = render_email(ESTIMATE_READY, dict(BASE, estimate=1250))
    assert subject == 'Your Repair Estimate is Ready'
    assert 'Rs. 1250.00' in text
    assert render_email(REPAIR_COMPLETE, BASE)[0] == 'Your Repair is Complete'


def test_html_is_escaped():
    _, _, html = render_email(REPAIR_COMPLETE, dict(BASE, customerName='<b>Asha</b>'))
    assert '<b>Asha</b>' not in html
    assert '&lt;b&gt;Asha&lt;/b&gt;' in html


def test_render_rejects_missing_data_and_unknown_template():
    with pytest.raises(NotificationError):
        render_email(STATUS_CHANGE, BASE)
    with pytest.raises(NotificationError):
        render_email('invoice', BASE)


def test_email_notifier_sends(fake_smtp):
    n = EmailNotifier('smtp.example.com', 2525, username='desk', password='pw', sender='Desk <desk@example.com>')
    result = n.send('asha@example.com', REPAIR_COMPLETE, BASE)
    assert result.success and result.message_id
    smtp = fake_smtp.instances[0]
    assert (smtp.host, smtp.port, smtp.timeout) == ('smtp.example.com', 2525, 5.0)
    assert smtp.tls and smtp.login_args == ('desk', 'pw')
    msg = smtp.sent[0]
    assert msg['To'] == 'asha@example.com'
    assert msg['Subject'] == 'Your Repair is Complete'


def test_email_notifier_reports_failures(fake_smtp):
    n = EmailNotifier('smtp.example.com', use_tls=False)
    fake_smtp.fail_with = smtplib.SMTPRecipientsRefused({'asha@example.com': (550, b'no such user')})
    result = n.send('asha@example.com', REPAIR_COMPLETE, BASE)
    assert result.success is False and result.error
    fake_smtp.fail_with = socket.timeout('timed out')
    result = n.send('asha@example.com', REPAIR_COMPLETE, BASE)
    assert result.success is False and 'Timed out' in result.error


def test_email_notifier_single_attempt_on_bad_data(fake_smtp):
    n = EmailNotifier('smtp.example.com')
    result = n.send('asha@example.com', STATUS_CHANGE, BASE)
    assert result.success is False and 'missing data' in result.error
    assert fake_smtp.instances == []
    assert n.send('', REPAIR_COMPLETE, BASE).error == 'No email address provided'


def test_disabled_notifier():
    result = DisabledNotifier().send('asha@example.com', REPAIR_COMPLETE, BASE)
    assert result.success is False
    assert result.error == 'Email transport not configured'


def test_build_notifier_choices():
    injected = DisabledNotifier()
    assert build_notifier({'NOTIFIER': injected}) is injected
    assert isinstance(build_notifier({}), DisabledNotifier)
    n = build_notifier({'SMTP_HOST': 'mail', 'SMTP_PORT': '25', 'SMTP_TLS': False, 'NOTIFY_TIMEOUT_SECONDS': 2})
    assert isinstance(n, EmailNotifier)
    assert (n.host, n.port, n.use_tls, n.timeout) == ('mail', 25, False, 2.0)


class Repairish:
    repair_id = 'REP2603101234'
    patient_name = 'Asha Rao'
    model_item_name = 'Audeo P90'
    email = 'asha@example.com'

    def __init__(self, wants_email=True):
        self.wants_email = wants_email


def test_notify_customer_respects_preference(notifier):
    assert notify_customer(notifier, Repairish(False), REPAIR_COMPLETE).attempted is False
    assert notifier.sent == []
    outcome = notify_customer(notifier, Repairish(), REPAIR_COMPLETE)
    assert outcome.attempted and outcome.success
    assert notifier.sent[0]['to'] == 'asha@example.com'


def test_notify_customer_never_raises(notifier):
    notifier.raise_with = ConnectionResetError('reset by peer')
    outcome = notify_customer(notifier, Repairish(), REPAIR_COMPLETE)
    assert outcome.attempted and not outcome.success
    assert 'reset by peer' in outcome.error
