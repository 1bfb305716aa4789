"""Repair lifecycle engine: intake, status transitions, staff edits, deletes,
notification preferences and phone lookup.

Each operation validates its input, performs its store writes, then sends any
customer emails and invalidates the cached read views. Email failures never
undo a committed write; they come back as warnings on the result.
"""
from __future__ import annotations
import logging
import random
from datetime import datetime
from typing import Any, Dict, Mapping, Optional
from repair_tracker.constants.statuses import (
    RepairStatus, EstimateStatus, NotificationPreference, WarrantyStatus, PaymentMode, Ear,
)
from repair_tracker.errors import NotFoundError, PersistenceError, ValidationError
from repair_tracker.models.customer import Customer
from repair_tracker.models.repair import Repair
from repair_tracker.models.status_change import StatusChangeLog
from repair_tracker.services.estimates import apply_estimate_amount
from repair_tracker.services.mutations import RepairMutator, MutationResult, apply_status, send_status_notifications
from repair_tracker.services.notifier import notify_customer, ESTIMATE_READY
from repair_tracker.services.repair_ids import generate_repair_id
from repair_tracker.utils.validation import (
    validate_status, require_fields, validate_phone, validate_email, optional_label,
    optional_amount, positive_int, optional_text,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('patient_name', 'phone', 'model_item_name', 'serial_no', 'warranty', 'purpose')
TEXT_FIELDS = ('patient_name', 'model_item_name', 'serial_no', 'purpose', 'company', 'mould', 'remarks')
# Set by the system, never by a payload
READ_ONLY_FIELDS = (
    'id', 'repair_id', 'customer_id', 'date_of_receipt', 'date_out_to_manufacturer',
    'date_received_from_manufacturer', 'date_out_to_customer', 'estimate_status',
    'estimate_approval_date', 'created_at', 'updated_at', 'version',
)
MAX_ID_ATTEMPTS = 5


def clean_repair_input(data: Mapping[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Validate a repair payload and return normalized column values.

    With partial=True only keys present in data are returned, but required
    fields that are present still may not be blank.
    """
    if partial:
        require_fields(data, [f for f in REQUIRED_FIELDS if f in data])
    else:
        require_fields(data, REQUIRED_FIELDS)
    out: Dict[str, Any] = {}
    for name in TEXT_FIELDS:
        if name in data:
            out[name] = optional_text(data[name])
    if 'phone' in data:
        out['phone'] = validate_phone(data['phone'])
    if 'warranty' in data:
        out['warranty'] = validate_status(data['warranty'], WarrantyStatus, 'warranty').value
    if 'payment_mode' in data:
        out['payment_mode'] = optional_label(data['payment_mode'], PaymentMode, 'payment_mode')
    if 'ear' in data:
        out['ear'] = optional_label(data['ear'], Ear, 'ear')
    if 'notification_preference' in data:
        out['notification_preference'] = (
            optional_label(data['notification_preference'], NotificationPreference, 'notification_preference')
            or NotificationPreference.NONE.value
        )
    if 'email' in data:
        out['email'] = validate_email(data['email']) if optional_text(data['email']) else None
    if 'quantity' in data or not partial:
        out['quantity'] = positive_int(data.get('quantity'), 'quantity')
    for name in ('repair_estimate', 'customer_paid'):
        if name in data:
            out[name] = optional_amount(data[name], name)
    if 'programming_done' in data:
        out['programming_done'] = _flag(data['programming_done'])
    return out


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _require_email_for_preference(preference: Optional[str], email: Optional[str]):
    if preference == NotificationPreference.EMAIL.value and not email:
        raise ValidationError('Email is required for email notifications', fields=['email'])


class RepairLifecycle(RepairMutator):
    def __init__(self, *args, rng: random.Random = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.rng = rng

    # ---------- Customers ---------- #

    def _resolve_customer(self, fields: Mapping[str, Any]) -> Customer:
        """Find the customer by exact phone match or create one. Name and company are last-write-wins."""
        profile = {'name': fields['patient_name'], 'phone': fields['phone'], 'company': fields.get('company')}
        existing = self.store.find_customer_by_phone(fields['phone'])
        if existing is not None:
            return self.store.update_customer(existing.id, profile)
        return self.store.create_customer(profile)

    def _new_repair_id(self, now: datetime) -> str:
        for _ in range(MAX_ID_ATTEMPTS):
            candidate = generate_repair_id(now, self.rng)
            if not self.store.repair_id_taken(candidate):
                return candidate
            logger.warning('Repair id %s already taken, regenerating', candidate)
        raise PersistenceError('Failed to create repair', 'could not allocate a unique repair id')

    # ---------- Operations ---------- #

    def create_repair(self, data: Mapping[str, Any], actor: str = StatusChangeLog.ACTOR_SYSTEM) -> MutationResult:
        fields = clean_repair_input(data)
        fields.setdefault('notification_preference', NotificationPreference.NONE.value)
        _require_email_for_preference(fields['notification_preference'], fields.get('email'))
        customer = self._resolve_customer(fields)
        now = self.clock()
        row = dict(fields)
        row.update({
            'repair_id': self._new_repair_id(now),
            'customer_id': customer.id,
            'status': RepairStatus.RECEIVED.value,
            'estimate_status': (EstimateStatus.PENDING if fields.get('repair_estimate') else EstimateStatus.NOT_REQUIRED).value,
            'date_of_receipt': now,
            'created_at': now,
            'updated_at': now,
        })
        try:
            repair = self.store.create_repair(row)
        except PersistenceError:
            logger.error('Repair write failed after customer %s was saved', customer.id)
            raise
        result = MutationResult(repair)
        if repair.estimate_enum == EstimateStatus.PENDING:
            self._notify_estimate(result, repair)
        logger.info('Repair %s created by %s for customer %s', repair.repair_id, actor, customer.id)
        self._invalidate(repair)
        return result

    def transition_status(self, repair_pk: int, new_status, actor: str) -> MutationResult:
        """Move a repair to new_status and log the change.

        Any label of the closed set is accepted, including moves backwards;
        re-sending the current status is logged but does not email.
        """
        target = validate_status(new_status, RepairStatus)

        def apply(repair: Repair):
            old = repair.status
            now = self.clock()
            apply_status(repair, target, now)
            return old, self.store.add_status_event(repair, old, target.value, actor, now)

        repair, (old_status, event) = self._mutate(repair_pk, apply)
        result = MutationResult(repair, events=[event])
        logger.info('Repair %s status %s -> %s by %s', repair.repair_id, old_status, target.value, actor)
        send_status_notifications(self.notifier, self.store, result, repair, old_status, target.value, event)
        self._invalidate(repair)
        return result

    def update_repair(self, repair_pk: int, changes: Mapping[str, Any], actor: str) -> MutationResult:
        """Staff edit of any subset of mutable fields; a status change goes through the transition rules."""
        blocked = sorted(k for k in changes if k in READ_ONLY_FIELDS)
        if blocked:
            raise ValidationError(f"Fields cannot be edited: {', '.join(blocked)}", fields=blocked)
        changes = dict(changes)
        target = None
        if 'status' in changes:
            target = validate_status(changes.pop('status'), RepairStatus)
        fields = clean_repair_input(changes, partial=True)
        if not fields and target is None:
            raise ValidationError('No changes supplied')

        current = self.store.get_repair(repair_pk)
        if current is None:
            raise NotFoundError('Repair', repair_pk)
        # Reject before the customer record is touched; resolving it commits
        _require_email_for_preference(
            fields.get('notification_preference', current.notification_preference),
            fields.get('email', current.email),
        )
        if any(k in fields for k in ('patient_name', 'phone', 'company')):
            merged = {
                'patient_name': fields.get('patient_name', current.patient_name),
                'phone': fields.get('phone', current.phone),
                'company': fields.get('company', current.company),
            }
            fields['customer_id'] = self._resolve_customer(merged).id
        amount_given = 'repair_estimate' in fields
        amount = fields.pop('repair_estimate', None)

        def apply(repair: Repair):
            _require_email_for_preference(
                fields.get('notification_preference', repair.notification_preference),
                fields.get('email', repair.email),
            )
            now = self.clock()
            old = repair.status
            for name, value in fields.items():
                setattr(repair, name, value)
            became_pending = apply_estimate_amount(repair, amount) if amount_given else False
            event = None
            if target is not None and target.value != old:
                apply_status(repair, target, now)
                event = self.store.add_status_event(repair, old, target.value, actor, now)
            repair.updated_at = now
            return old, event, became_pending

        repair, (old_status, event, became_pending) = self._mutate(repair_pk, apply)
        result = MutationResult(repair)
        logger.info('Repair %s updated by %s (%s)', repair.repair_id, actor, ', '.join(sorted(changes)) or 'status')
        if event is not None:
            result.events.append(event)
            send_status_notifications(self.notifier, self.store, result, repair, old_status, repair.status, event)
        if became_pending:
            self._notify_estimate(result, repair)
        self._invalidate(repair)
        return result

    def delete_repair(self, repair_pk: int) -> str:
        """Remove a repair and its status history. Returns the deleted repair id."""
        with self.locks.hold(repair_pk):
            repair = self.store.get_repair(repair_pk)
            if repair is None:
                raise NotFoundError('Repair', repair_pk)
            human_id = repair.repair_id
            self.store.delete_repair(repair)
        logger.info('Repair %s deleted', human_id)
        self._invalidate(repair_pk=repair_pk, human_repair_id=human_id)
        return human_id

    def update_notification_preferences(self, repair_id: str, preference, email: Optional[str] = None) -> MutationResult:
        pref = validate_status(preference, NotificationPreference, 'preference')
        cleaned = validate_email(email) if optional_text(email) else None
        _require_email_for_preference(pref.value, cleaned)
        found = self.store.find_repair_by_human_id(repair_id)
        if found is None:
            raise NotFoundError('Repair', repair_id)

        def apply(repair: Repair):
            repair.notification_preference = pref.value
            repair.email = cleaned
            repair.updated_at = self.clock()

        repair, _ = self._mutate(found.id, apply)
        logger.info('Notification preference for %s set to %s', repair.repair_id, pref.value)
        self._invalidate(repair)
        return MutationResult(repair)

    def lookup_by_phone(self, phone) -> Repair:
        """Most recently created repair for an exact phone match."""
        phone = optional_text(phone)
        if not phone:
            raise ValidationError('Phone number is required', fields=['phone'])
        repair = self.store.latest_repair_for_phone(phone)
        if repair is None:
            raise NotFoundError('Repair', phone)
        return repair

    def _notify_estimate(self, result: MutationResult, repair: Repair):
        outcome = notify_customer(self.notifier, repair, ESTIMATE_READY, {'estimate': repair.repair_estimate})
        if outcome.attempted and not outcome.success:
            result.warnings.append(f"Estimate email not sent: {outcome.error}")


__all__ = ['RepairLifecycle', 'clean_repair_input', 'REQUIRED_FIELDS', 'READ_ONLY_FIELDS']
