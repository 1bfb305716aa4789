"""Reusable validation helpers for incoming repair payloads.

Helpers return the cleaned value (to enable inline usage) or raise
ValidationError, which the app maps to a 400 response.
"""
from __future__ import annotations
import math
import re
from typing import Any, Iterable, Mapping, Optional, Type
from repair_tracker.constants.statuses import LabelEnum
from repair_tracker.errors import ValidationError

MIN_PHONE_LENGTH = 10
# Largest value a Numeric(12, 2) amount column holds
MAX_AMOUNT = 9999999999.99
EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


def validate_status(new_status: Any, enum_cls: Type[LabelEnum], field_name: str = 'status') -> LabelEnum:
    """Parse new_status into enum_cls or raise ValidationError."""
    parsed = enum_cls.parse(new_status)
    if parsed is None:
        raise ValidationError(f"{field_name} invalid: {new_status!r}", fields=[field_name])
    return parsed


def require_fields(data: Mapping[str, Any], fields: Iterable[str]):
    missing = [f for f in fields if not _present(data.get(f))]
    if missing:
        raise ValidationError(f"Required fields missing: {', '.join(missing)}", fields=missing)


def _present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def validate_phone(phone: Any) -> str:
    if not isinstance(phone, str) or len(phone.strip()) < MIN_PHONE_LENGTH:
        raise ValidationError('Please enter a valid phone number', fields=['phone'])
    return phone.strip()


def validate_email(email: Any, field_name: str = 'email') -> str:
    if not isinstance(email, str) or not EMAIL_RE.match(email.strip()):
        raise ValidationError(f"{field_name} invalid", fields=[field_name])
    return email.strip()


def optional_label(value: Any, enum_cls: Type[LabelEnum], field_name: str) -> Optional[str]:
    if value is None or value == '':
        return None
    return validate_status(value, enum_cls, field_name).value


def optional_amount(value: Any, field_name: str) -> Optional[float]:
    """Non-negative currency amount; empty input means no amount."""
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number", fields=[field_name])
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number", fields=[field_name])
    if not math.isfinite(amount):
        raise ValidationError(f"{field_name} must be a finite number", fields=[field_name])
    if amount < 0:
        raise ValidationError(f"{field_name} must be zero or positive", fields=[field_name])
    amount = round(amount, 2)
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field_name} must not exceed {MAX_AMOUNT:.2f}", fields=[field_name])
    return amount


def positive_int(value: Any, field_name: str, default: int = 1) -> int:
    if value is None or value == '':
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer", fields=[field_name])
    if number < 1:
        raise ValidationError(f"{field_name} must be at least 1", fields=[field_name])
    return number


def optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None

__all__ = [
    'validate_status', 'require_fields', 'validate_phone', 'validate_email', 'optional_label',
    'optional_amount', 'positive_int', 'optional_text', 'MIN_PHONE_LENGTH',
]
