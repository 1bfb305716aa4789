"""Building blocks shared by the lifecycle engine and the estimate workflow.

A single-record mutation runs under the per-repair lock, re-reads the row,
applies the change and commits. A ``StaleDataError`` from the version column
means another process won the race: the row is re-read and the change
re-applied, up to ``max_attempts`` times.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple
from sqlalchemy.orm.exc import StaleDataError
from repair_tracker.constants.statuses import RepairStatus, STAGE_TIMESTAMPS
from repair_tracker.errors import NotFoundError, RecordBusyError, RepairTrackerError, PersistenceError
from repair_tracker.models.repair import Repair
from repair_tracker.models.status_change import StatusChangeLog
from repair_tracker.services.notifier import notify_customer, STATUS_CHANGE, REPAIR_COMPLETE
from repair_tracker.services.store import utcnow
from repair_tracker.utils.fsm import TransitionValidator

logger = logging.getLogger(__name__)

# Intended forward flow. Staff may still move a repair elsewhere (corrections);
# such moves are logged, not rejected.
STATUS_FLOW = TransitionValidator({
    RepairStatus.RECEIVED: {RepairStatus.SENT_TO_MANUFACTURER},
    RepairStatus.SENT_TO_MANUFACTURER: {RepairStatus.RETURNED_FROM_MANUFACTURER},
    RepairStatus.RETURNED_FROM_MANUFACTURER: {RepairStatus.READY_FOR_PICKUP},
    RepairStatus.READY_FOR_PICKUP: {RepairStatus.COMPLETED},
    RepairStatus.COMPLETED: set(),
})


@dataclass
class MutationResult:
    repair: Repair
    warnings: List[str] = field(default_factory=list)
    events: List[StatusChangeLog] = field(default_factory=list)
    cascaded: bool = False


def apply_status(repair: Repair, target: RepairStatus, now: datetime):
    """Set status and stamp the stage timestamp the first time the stage is entered."""
    current = repair.status_enum
    if current is not None and current != target and not STATUS_FLOW.can_transition(current, target):
        level = logging.WARNING if target.rank < current.rank else logging.INFO
        logger.log(level, 'Repair %s moved out of flow: %s -> %s', repair.repair_id, current.value, target.value)
    repair.status = target.value
    stamp = STAGE_TIMESTAMPS.get(target)
    if stamp and getattr(repair, stamp) is None:
        setattr(repair, stamp, now)
    repair.updated_at = now


def send_status_notifications(notifier, store, result: MutationResult, repair: Repair, old_status: Optional[str],
                              new_status: str, event: Optional[StatusChangeLog]):
    """Best-effort emails after a committed transition. Failures become warnings."""
    if old_status == new_status:
        # a re-sent status (Ready for Pickup included) emails nothing, not even repairComplete
        return
    outcome = notify_customer(notifier, repair, STATUS_CHANGE, {'oldStatus': old_status or '', 'newStatus': new_status})
    if outcome.attempted:
        if outcome.success and event is not None:
            try:
                store.mark_notification_sent(event)
            except PersistenceError as e:
                logger.warning('Could not flag notification for %s: %s', repair.repair_id, e)
                result.warnings.append('Status change email sent but could not be recorded')
        elif not outcome.success:
            result.warnings.append(f"Status change email not sent: {outcome.error}")
    if new_status == RepairStatus.READY_FOR_PICKUP.value:
        done = notify_customer(notifier, repair, REPAIR_COMPLETE)
        if done.attempted and not done.success:
            result.warnings.append(f"Pickup email not sent: {done.error}")


class RepairMutator:
    def __init__(self, store, notifier, views, locks, clock: Callable[[], datetime] = utcnow, max_attempts: int = 3):
        self.store = store
        self.notifier = notifier
        self.views = views
        self.locks = locks
        self.clock = clock
        self.max_attempts = max_attempts

    def _mutate(self, repair_pk: int, apply: Callable[[Repair], Any]) -> Tuple[Repair, Any]:
        with self.locks.hold(repair_pk):
            for attempt in range(1, self.max_attempts + 1):
                repair = self.store.get_repair(repair_pk, fresh=True)
                if repair is None:
                    raise NotFoundError('Repair', repair_pk)
                try:
                    outcome = apply(repair)
                except RepairTrackerError:
                    self.store.rollback()
                    raise
                try:
                    self.store.commit('update repair')
                    return repair, outcome
                except StaleDataError:
                    logger.warning('Version conflict on repair %s (attempt %s/%s)', repair_pk, attempt, self.max_attempts)
        raise RecordBusyError(repair_pk)

    def _invalidate(self, repair: Repair = None, repair_pk=None, human_repair_id=None):
        if repair is not None:
            repair_pk, human_repair_id = repair.id, repair.repair_id
        try:
            self.views.invalidate(repair_pk, human_repair_id)
        except Exception:
            logger.exception('View invalidation failed for repair %s', repair_pk)
