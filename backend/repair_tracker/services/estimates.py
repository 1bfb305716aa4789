"""Estimate approval workflow.

Estimate states: Not Required -> Pending -> Approved | Declined. Staff move an
estimate to Pending by recording an amount; the customer records the decision
from the tracking page. A decline while the device is still with the
manufacturer sends the repair back (Sent to Manufacturer -> Returned from
Manufacturer) in the same transaction.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import Optional
from repair_tracker.constants.statuses import EstimateStatus, RepairStatus, DECISION_STATUSES
from repair_tracker.errors import NotFoundError, ValidationError
from repair_tracker.models.repair import Repair
from repair_tracker.models.status_change import StatusChangeLog
from repair_tracker.services.mutations import RepairMutator, MutationResult, apply_status, send_status_notifications
from repair_tracker.utils.fsm import TransitionValidator
from repair_tracker.utils.validation import validate_status

logger = logging.getLogger(__name__)

ESTIMATE_FSM = TransitionValidator({
    EstimateStatus.NOT_REQUIRED: {EstimateStatus.PENDING},
    EstimateStatus.PENDING: {EstimateStatus.APPROVED, EstimateStatus.DECLINED, EstimateStatus.NOT_REQUIRED},
    EstimateStatus.APPROVED: set(),
    EstimateStatus.DECLINED: set(),
}, field_name='estimate_status')


def apply_estimate_amount(repair: Repair, amount: Optional[float]) -> bool:
    """Record a staff estimate amount. Returns True when the estimate became Pending.

    Decided estimates keep their decision; only the amount changes.
    """
    repair.repair_estimate = amount
    current = repair.estimate_enum
    if amount and current == EstimateStatus.NOT_REQUIRED:
        repair.estimate_status = EstimateStatus.PENDING.value
        return True
    if not amount and current == EstimateStatus.PENDING:
        repair.estimate_status = EstimateStatus.NOT_REQUIRED.value
    return False


class EstimateWorkflow(RepairMutator):

    def record_estimate_decision(self, repair_id: str, decision) -> MutationResult:
        target = validate_status(decision, EstimateStatus, 'status')
        if target not in DECISION_STATUSES:
            raise ValidationError('Estimate decision must be Approved or Declined', fields=['status'])
        if not repair_id:
            raise ValidationError('Repair ID is required', fields=['repairId'])
        found = self.store.find_repair_by_human_id(repair_id)
        if found is None:
            raise NotFoundError('Repair', repair_id)

        def apply(repair: Repair):
            ESTIMATE_FSM.assert_can_transition(repair.estimate_enum, target)
            now: datetime = self.clock()
            repair.estimate_status = target.value
            repair.estimate_approval_date = now
            repair.updated_at = now
            if target == EstimateStatus.DECLINED and repair.status_enum == RepairStatus.SENT_TO_MANUFACTURER:
                old = repair.status
                apply_status(repair, RepairStatus.RETURNED_FROM_MANUFACTURER, now)
                event = self.store.add_status_event(repair, old, repair.status, StatusChangeLog.ACTOR_CUSTOMER, now)
                return old, event
            return None, None

        repair, (old_status, event) = self._mutate(found.id, apply)
        result = MutationResult(repair)
        logger.info('Estimate for %s %s by customer', repair.repair_id, target.value.lower())
        if event is not None:
            result.cascaded = True
            result.events.append(event)
            logger.info('Repair %s returned from manufacturer after declined estimate', repair.repair_id)
            send_status_notifications(self.notifier, self.store, result, repair, old_status, repair.status, event)
        self._invalidate(repair)
        return result


__all__ = ['EstimateWorkflow', 'ESTIMATE_FSM', 'apply_estimate_amount']
