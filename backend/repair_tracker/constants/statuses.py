"""Closed label sets for repair records.

Stored values are the human-readable labels shown on the tracking page. Never
branch on free-form strings elsewhere: parse through these enums at the edge.
"""
from __future__ import annotations
import enum
from typing import Optional, Type, TypeVar

E = TypeVar('E', bound='LabelEnum')


class LabelEnum(str, enum.Enum):

    @classmethod
    def labels(cls):
        return tuple(m.value for m in cls)

    @classmethod
    def parse(cls: Type[E], raw) -> Optional[E]:
        """Return the member whose label equals raw, or None."""
        if isinstance(raw, cls):
            return raw
        for m in cls:
            if m.value == raw:
                return m
        return None

    def __str__(self) -> str:
        return self.value


class RepairStatus(LabelEnum):
    RECEIVED = 'Received'
    SENT_TO_MANUFACTURER = 'Sent to Manufacturer'
    RETURNED_FROM_MANUFACTURER = 'Returned from Manufacturer'
    READY_FOR_PICKUP = 'Ready for Pickup'
    COMPLETED = 'Completed'

    @property
    def rank(self) -> int:
        return list(RepairStatus).index(self)


class EstimateStatus(LabelEnum):
    NOT_REQUIRED = 'Not Required'
    PENDING = 'Pending'
    APPROVED = 'Approved'
    DECLINED = 'Declined'


class NotificationPreference(LabelEnum):
    EMAIL = 'email'
    NONE = 'none'


class WarrantyStatus(LabelEnum):
    TWO_YEARS = '2 years warranty'
    THREE_YEARS = '3 years warranty'
    FOUR_YEARS = '4 years warranty'
    OUT_OF_WARRANTY = 'Out of warranty'


class PaymentMode(LabelEnum):
    CASH = 'Cash'
    CARD = 'Card'
    UPI = 'UPI'
    BANK_TRANSFER = 'Bank Transfer'


class Ear(LabelEnum):
    LEFT = 'left'
    RIGHT = 'right'
    BOTH = 'both'


# Stage timestamp stamped the first time a repair enters the status.
STAGE_TIMESTAMPS = {
    RepairStatus.SENT_TO_MANUFACTURER: 'date_out_to_manufacturer',
    RepairStatus.RETURNED_FROM_MANUFACTURER: 'date_received_from_manufacturer',
    RepairStatus.COMPLETED: 'date_out_to_customer',
}

DECISION_STATUSES = (EstimateStatus.APPROVED, EstimateStatus.DECLINED)

__all__ = [
    'LabelEnum', 'RepairStatus', 'EstimateStatus', 'NotificationPreference', 'WarrantyStatus',
    'PaymentMode', 'Ear', 'STAGE_TIMESTAMPS', 'DECISION_STATUSES',
]
