"""Typed exceptions raised by the repair services.

Every class carries a machine-readable ``code`` and the HTTP status the
blueprints answer with. Services never import Flask; the app factory maps
these onto JSON responses.

    RepairTrackerError
    +-- ValidationError        400
    +-- NotFoundError          404
    +-- InvalidStateError      409
    |   +-- RecordBusyError    409
    +-- PersistenceError       500
    +-- NotificationError      (logged, reported as a warning)
    +-- RateLimited            429
"""
from __future__ import annotations
from typing import Iterable, Optional


class RepairTrackerError(Exception):
    code: str = 'REPAIR_TRACKER_ERROR'
    status_code: int = 500
    # Message safe to show to customers (no store detail)
    public_message: str = 'An error occurred while processing the request'

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.public_message
        super().__init__(self.message)


class ValidationError(RepairTrackerError):
    code = 'VALIDATION_ERROR'
    status_code = 400
    public_message = 'Invalid request'

    def __init__(self, message: str, fields: Iterable[str] = ()):
        self.fields = list(fields)
        super().__init__(message)


class NotFoundError(RepairTrackerError):
    code = 'NOT_FOUND'
    status_code = 404
    public_message = 'Repair not found'

    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class InvalidStateError(RepairTrackerError):
    code = 'INVALID_STATE'
    status_code = 409
    public_message = 'This request cannot be applied in the current state'


class RecordBusyError(InvalidStateError):
    code = 'RECORD_BUSY'
    public_message = 'The record is being updated, please retry'

    def __init__(self, key):
        self.key = key
        super().__init__(f"Repair {key} is being updated by another request")


class PersistenceError(RepairTrackerError):
    code = 'PERSISTENCE_ERROR'
    status_code = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        self.detail = detail
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NotificationError(RepairTrackerError):
    code = 'NOTIFICATION_ERROR'
    status_code = 500
    public_message = 'Notification could not be delivered'


class RateLimited(RepairTrackerError):
    code = 'RATE_LIMITED'
    status_code = 429
    public_message = 'Please wait before refreshing again'

    def __init__(self, limit: str = ''):
        self.limit = limit
        super().__init__(self.public_message)


__all__ = [
    'RepairTrackerError', 'ValidationError', 'NotFoundError', 'InvalidStateError', 'RecordBusyError',
    'PersistenceError', 'NotificationError', 'RateLimited',
]
