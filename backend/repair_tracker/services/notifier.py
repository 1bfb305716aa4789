"""Customer email notifications.

``send`` makes exactly one delivery attempt and never raises for transport
problems: failures come back as ``SendResult(success=False, error=...)`` so the
caller can report them as warnings. Template bodies live in
``repair_tracker/templates/email`` and are rendered with Jinja2.
"""
from __future__ import annotations
import logging
import smtplib
import socket
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import make_msgid
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple
from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape
from jinja2.exceptions import TemplateError
from repair_tracker.errors import NotificationError

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / 'templates' / 'email'

STATUS_CHANGE = 'statusChange'
ESTIMATE_READY = 'estimateReady'
REPAIR_COMPLETE = 'repairComplete'

_COMMON_FIELDS = ('repairId', 'customerName', 'productName')


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    file_stem: str
    required: Tuple[str, ...] = field(default=_COMMON_FIELDS)


TEMPLATES: Dict[str, EmailTemplate] = {
    STATUS_CHANGE: EmailTemplate('Your Repair Status Has Been Updated', 'status_change', _COMMON_FIELDS + ('oldStatus', 'newStatus')),
    ESTIMATE_READY: EmailTemplate('Your Repair Estimate is Ready', 'estimate_ready', _COMMON_FIELDS + ('estimate',)),
    REPAIR_COMPLETE: EmailTemplate('Your Repair is Complete', 'repair_complete'),
}

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(['html']),
    undefined=StrictUndefined,
)


@dataclass
class SendResult:
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


def render_email(template_name: str, data: Mapping[str, Any]) -> Tuple[str, str, str]:
    """Return (subject, text_body, html_body) or raise NotificationError."""
    tpl = TEMPLATES.get(template_name)
    if tpl is None:
        raise NotificationError(f"Unknown email template {template_name}")
    missing = [k for k in tpl.required if data.get(k) in (None, '')]
    if missing:
        raise NotificationError(f"Template {template_name} missing data: {', '.join(missing)}")
    try:
        text = _env.get_template(f"{tpl.file_stem}.txt").render(**data)
        html = _env.get_template(f"{tpl.file_stem}.html").render(**data)
    except TemplateError as e:
        raise NotificationError(f"Template {template_name} failed to render: {e}")
    return tpl.subject, text, html


class Notifier:
    def send(self, recipient: str, template_name: str, template_data: Mapping[str, Any]) -> SendResult:
        raise NotImplementedError


class EmailNotifier(Notifier):
    def __init__(self, host: str, port: int = 587, username: Optional[str] = None, password: Optional[str] = None,
                 use_tls: bool = True, sender: Optional[str] = None, timeout: float = 5.0):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender or 'Repair Desk <no-reply@localhost>'
        self.timeout = timeout

    def _build_message(self, recipient: str, template_name: str, template_data: Mapping[str, Any]) -> EmailMessage:
        subject, text, html = render_email(template_name, template_data)
        msg = EmailMessage()
        msg['Subject'] = subject
        msg['From'] = self.sender
        msg['To'] = recipient
        msg['Message-ID'] = make_msgid()
        msg.set_content(text)
        msg.add_alternative(html, subtype='html')
        return msg

    def send(self, recipient: str, template_name: str, template_data: Mapping[str, Any]) -> SendResult:
        if not recipient:
            return SendResult(False, 'No email address provided')
        try:
            msg = self._build_message(recipient, template_name, template_data)
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as s:
                if self.use_tls:
                    s.starttls()
                if self.username and self.password:
                    s.login(self.username, self.password)
                s.send_message(msg)
        except NotificationError as e:
            logger.error('Email %s to %s not built: %s', template_name, recipient, e)
            return SendResult(False, e.message)
        except (socket.timeout, TimeoutError) as e:
            logger.warning('Email %s to %s timed out after %ss', template_name, recipient, self.timeout)
            return SendResult(False, f"Timed out sending email: {e}")
        except (smtplib.SMTPException, OSError) as e:
            logger.warning('Email %s to %s failed: %s', template_name, recipient, e)
            return SendResult(False, str(e) or e.__class__.__name__)
        logger.info('Email %s sent to %s', template_name, recipient)
        return SendResult(True, message_id=msg['Message-ID'])


class DisabledNotifier(Notifier):
    """Used when no SMTP host is configured; every send reports a failure."""

    def send(self, recipient: str, template_name: str, template_data: Mapping[str, Any]) -> SendResult:
        try:
            render_email(template_name, template_data)
        except NotificationError as e:
            return SendResult(False, e.message)
        logger.info('Email transport not configured; skipped %s to %s', template_name, recipient)
        return SendResult(False, 'Email transport not configured')


def build_notifier(config: Mapping[str, Any]) -> Notifier:
    if config.get('NOTIFIER') is not None:
        return config['NOTIFIER']
    host = config.get('SMTP_HOST')
    if not host:
        return DisabledNotifier()
    return EmailNotifier(
        host=host,
        port=int(config.get('SMTP_PORT') or 587),
        username=config.get('SMTP_USERNAME'),
        password=config.get('SMTP_PASSWORD'),
        use_tls=bool(config.get('SMTP_TLS', True)),
        sender=config.get('MAIL_FROM'),
        timeout=float(config.get('NOTIFY_TIMEOUT_SECONDS') or 5),
    )


@dataclass
class NotifyOutcome:
    attempted: bool
    success: bool = False
    error: Optional[str] = None


def notify_customer(notifier: Notifier, repair, template_name: str, extra: Optional[Mapping[str, Any]] = None) -> NotifyOutcome:
    """Send template_name to the repair's customer if they opted into email.

    Never raises; a failure is returned for the caller to surface as a warning.
    """
    if not repair.wants_email:
        return NotifyOutcome(attempted=False)
    data = {
        'repairId': repair.repair_id,
        'customerName': repair.patient_name,
        'productName': repair.model_item_name,
    }
    data.update(extra or {})
    try:
        result = notifier.send(repair.email, template_name, data)
    except Exception as e:  # a misbehaving notifier must not fail the mutation
        logger.exception('Notifier raised while sending %s for %s', template_name, repair.repair_id)
        return NotifyOutcome(attempted=True, success=False, error=str(e))
    if not result.success:
        logger.warning('Notification %s for %s failed: %s', template_name, repair.repair_id, result.error)
    return NotifyOutcome(attempted=True, success=result.success, error=result.error)


__all__ = [
    'Notifier', 'EmailNotifier', 'DisabledNotifier', 'SendResult', 'NotifyOutcome', 'build_notifier',
    'notify_customer', 'render_email', 'TEMPLATES', 'STATUS_CHANGE', 'ESTIMATE_READY', 'REPAIR_COMPLETE',
]
