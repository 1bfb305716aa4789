"""Staff maintenance of customer records.

Repair intake also creates and refreshes customers implicitly (matched on
phone); these are the explicit operations behind the customers screens.
Deleting a customer keeps its repairs, which only lose the link.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping
from repair_tracker.errors import NotFoundError, ValidationError
from repair_tracker.models.customer import Customer
from repair_tracker.models.repair import Repair
from repair_tracker.services.store import RecordStore, utcnow
from repair_tracker.utils.validation import require_fields, validate_phone, optional_text

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('name', 'phone')
EDITABLE_FIELDS = ('name', 'phone', 'company')


def clean_customer_input(data: Mapping[str, Any], partial: bool = False) -> Dict[str, Any]:
    if partial:
        require_fields(data, [f for f in REQUIRED_FIELDS if f in data])
    else:
        require_fields(data, REQUIRED_FIELDS)
    out: Dict[str, Any] = {}
    if 'name' in data:
        out['name'] = optional_text(data['name'])
    if 'phone' in data:
        out['phone'] = validate_phone(data['phone'])
    if 'company' in data:
        out['company'] = optional_text(data['company'])
    return out


class CustomerDirectory:
    def __init__(self, store: RecordStore, views, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.views = views
        self.clock = clock

    def get(self, customer_id: int) -> Customer:
        customer = self.store.get_customer(customer_id)
        if customer is None:
            raise NotFoundError('Customer', customer_id)
        return customer

    def repairs(self, customer_id: int) -> List[Repair]:
        """Repairs linked to the customer, newest first."""
        self.get(customer_id)
        return self.store.repairs_for_customer(customer_id)

    def create(self, data: Mapping[str, Any], actor: str) -> Customer:
        fields = clean_customer_input(data)
        now = self.clock()
        fields.update(created_at=now, updated_at=now)
        customer = self.store.create_customer(fields)
        logger.info('Customer %s created by %s', customer.id, actor)
        return customer

    def update(self, customer_id: int, changes: Mapping[str, Any], actor: str) -> Customer:
        unknown = sorted(k for k in changes if k not in EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(unknown)}", fields=unknown)
        fields = clean_customer_input(changes, partial=True)
        if not fields:
            raise ValidationError('No changes supplied')
        self.get(customer_id)
        fields['updated_at'] = self.clock()
        customer = self.store.update_customer(customer_id, fields)
        logger.info('Customer %s updated by %s (%s)', customer_id, actor, ', '.join(sorted(changes)))
        return customer

    def delete(self, customer_id: int, actor: str) -> List[str]:
        """Remove a customer. Returns the repair ids that were detached from it."""
        customer = self.get(customer_id)
        detached = self.store.delete_customer(customer)
        for repair_pk, repair_id in detached:
            self.views.invalidate(repair_pk, repair_id)
        logger.info('Customer %s deleted by %s; %d repairs detached', customer_id, actor, len(detached))
        return [repair_id for _, repair_id in detached]
