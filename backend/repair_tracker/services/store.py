"""SQLAlchemy-backed record store for customers, repairs and status change logs.

All store failures surface as PersistenceError carrying the DBAPI detail
string. StaleDataError (optimistic version conflict) is re-raised untouched so
callers can re-read and retry.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple
from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import OperationalError, SQLAlchemyError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, Query
from sqlalchemy.orm.exc import StaleDataError
from repair_tracker.errors import PersistenceError
from repair_tracker.models.customer import Customer
from repair_tracker.models.repair import Repair
from repair_tracker.models.status_change import StatusChangeLog

logger = logging.getLogger(__name__)

# Fields a staff edit or a lifecycle transition may write; identity columns are excluded.
MUTABLE_FIELDS = (
    'status', 'patient_name', 'phone', 'company', 'email', 'notification_preference',
    'model_item_name', 'serial_no', 'quantity', 'warranty', 'ear', 'mould', 'purpose',
    'date_out_to_manufacturer', 'date_received_from_manufacturer', 'date_out_to_customer',
    'repair_estimate', 'estimate_status', 'estimate_approval_date',
    'customer_paid', 'payment_mode', 'programming_done', 'remarks', 'customer_id',
)

CUSTOMER_FIELDS = ('name', 'phone', 'company')
CUSTOMER_STAMPS = ('created_at', 'updated_at')


def _detail(exc: BaseException) -> str:
    orig = getattr(exc, 'orig', None)
    return str(orig) if orig is not None else str(exc)


# Driver messages for a bounded wait that ran out (statement_timeout, read_timeout, SQLite busy timeout)
TIMEOUT_MARKERS = ('statement timeout', 'canceling statement', 'timeout expired', 'timed out', 'database is locked')


def _timed_out(exc: BaseException) -> bool:
    detail = _detail(exc).lower()
    return any(marker in detail for marker in TIMEOUT_MARKERS)


def repair_to_patch(repair: Repair) -> Dict[str, Any]:
    """Persisted patch format: every mutable column keyed by name."""
    return {name: getattr(repair, name) for name in MUTABLE_FIELDS}


class RecordStore:
    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def guard(self, action: str):
        """Convert store failures into PersistenceError and roll back the session."""
        try:
            yield self.session
        except StaleDataError:
            self.session.rollback()
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            if isinstance(e, PoolTimeoutError) or (isinstance(e, OperationalError) and _timed_out(e)):
                logger.error('Store timed out during %s: %s', action, _detail(e))
                raise PersistenceError(f"Timed out while trying to {action}", _detail(e))
            logger.error('Store rejected %s: %s', action, _detail(e))
            raise PersistenceError(f"Failed to {action}", _detail(e))

    def commit(self, action: str = 'save changes'):
        with self.guard(action):
            self.session.commit()

    def rollback(self):
        self.session.rollback()

    # ---------- Customers ---------- #

    def find_customer_by_phone(self, phone: str) -> Optional[Customer]:
        # Exact, case-sensitive match; oldest row wins when duplicates exist
        with self.guard('look up customer'):
            return self.session.execute(
                select(Customer).where(Customer.phone == phone).order_by(Customer.id.asc()).limit(1)
            ).scalar_one_or_none()

    def create_customer(self, data: Mapping[str, Any]) -> Customer:
        with self.guard('create customer'):
            fields = {k: data.get(k) for k in CUSTOMER_FIELDS}
            fields.update({k: data[k] for k in CUSTOMER_STAMPS if data.get(k) is not None})
            customer = Customer(**fields)
            self.session.add(customer)
            self.session.commit()
            return customer

    def update_customer(self, customer_id: int, data: Mapping[str, Any]) -> Customer:
        with self.guard('update customer'):
            customer = self.session.get(Customer, customer_id)
            if customer is None:
                raise PersistenceError('Failed to update customer', f"customer {customer_id} vanished")
            for k in CUSTOMER_FIELDS + CUSTOMER_STAMPS:
                if k in data:
                    setattr(customer, k, data[k])
            self.session.commit()
            return customer

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        with self.guard('load customer'):
            return self.session.execute(
                select(Customer).where(Customer.id == customer_id).execution_options(populate_existing=True)
            ).scalar_one_or_none()

    def customers_query(self, filters: Optional[Mapping[str, Any]] = None) -> Query:
        q = self.session.query(Customer)
        filters = filters or {}
        if filters.get('phone'):
            q = q.filter(Customer.phone == filters['phone'])
        if filters.get('q'):
            term = f"%{filters['q']}%"
            q = q.filter(or_(
                Customer.name.ilike(term),
                Customer.phone.ilike(term),
                Customer.company.ilike(term),
            ))
        return q

    def repairs_for_customer(self, customer_id: int) -> List[Repair]:
        with self.guard('list customer repairs'):
            return list(self.session.execute(
                select(Repair).where(Repair.customer_id == customer_id)
                .order_by(Repair.created_at.desc(), Repair.id.desc())
                .execution_options(populate_existing=True)
            ).scalars())

    def delete_customer(self, customer: Customer) -> List[Tuple[int, str]]:
        """Delete a customer, detaching its repairs. Returns (pk, repair id) of each detached repair."""
        with self.guard('delete customer'):
            detached = [
                (pk, rid) for pk, rid in self.session.execute(
                    select(Repair.id, Repair.repair_id).where(Repair.customer_id == customer.id)
                )
            ]
            # SQLite does not enforce ON DELETE SET NULL unless foreign keys are switched on
            self.session.execute(
                update(Repair).where(Repair.customer_id == customer.id)
                .values(customer_id=None, version=Repair.version + 1).execution_options(synchronize_session='fetch')
            )
            self.session.delete(customer)
            self.session.commit()
            return detached

    # ---------- Repairs ---------- #

    def create_repair(self, data: Mapping[str, Any]) -> Repair:
        with self.guard('create repair'):
            repair = Repair(**data)
            self.session.add(repair)
            self.session.commit()
            return repair

    def get_repair(self, repair_pk: int, fresh: bool = True) -> Optional[Repair]:
        with self.guard('load repair'):
            stmt = select(Repair).where(Repair.id == repair_pk)
            if fresh:
                stmt = stmt.execution_options(populate_existing=True)
            return self.session.execute(stmt).scalar_one_or_none()

    def find_repair_by_human_id(self, repair_id: str, fresh: bool = True) -> Optional[Repair]:
        with self.guard('look up repair'):
            stmt = select(Repair).where(Repair.repair_id == repair_id)
            if fresh:
                stmt = stmt.execution_options(populate_existing=True)
            return self.session.execute(stmt).scalar_one_or_none()

    def repair_id_taken(self, repair_id: str) -> bool:
        with self.guard('check repair id'):
            return self.session.execute(
                select(func.count(Repair.id)).where(Repair.repair_id == repair_id)
            ).scalar_one() > 0

    def update_repair(self, repair_pk: int, patch: Mapping[str, Any]) -> Repair:
        """Apply a patch of mutable fields and commit. Unknown keys are rejected."""
        unknown = set(patch) - set(MUTABLE_FIELDS) - {'updated_at'}
        if unknown:
            raise PersistenceError('Failed to update repair', f"not writable: {', '.join(sorted(unknown))}")
        repair = self.get_repair(repair_pk)
        if repair is None:
            raise PersistenceError('Failed to update repair', f"repair {repair_pk} vanished")
        with self.guard('update repair'):
            for k, v in patch.items():
                setattr(repair, k, v)
            self.session.commit()
            return repair

    def delete_repair(self, repair: Repair):
        with self.guard('delete repair'):
            self.session.delete(repair)
            self.session.commit()

    def repairs_query(self, filters: Optional[Mapping[str, Any]] = None) -> Query:
        q = self.session.query(Repair)
        filters = filters or {}
        if filters.get('status'):
            q = q.filter(Repair.status == filters['status'])
        if filters.get('estimate_status'):
            q = q.filter(Repair.estimate_status == filters['estimate_status'])
        if filters.get('phone'):
            q = q.filter(Repair.phone == filters['phone'])
        if filters.get('q'):
            term = f"%{filters['q']}%"
            q = q.filter(or_(
                Repair.patient_name.ilike(term),
                Repair.repair_id.ilike(term),
                Repair.serial_no.ilike(term),
                Repair.model_item_name.ilike(term),
            ))
        return q

    def list_repairs(self, filters: Optional[Mapping[str, Any]] = None) -> List[Repair]:
        with self.guard('list repairs'):
            return self.repairs_query(filters).order_by(Repair.id.asc()).all()

    def latest_repair_for_phone(self, phone: str) -> Optional[Repair]:
        with self.guard('look up repair'):
            return self.session.execute(
                select(Repair).where(Repair.phone == phone)
                .order_by(Repair.created_at.desc(), Repair.id.desc()).limit(1)
            ).scalar_one_or_none()

    # ---------- Aggregates ---------- #

    def status_counts(self) -> List[Tuple[str, int]]:
        with self.guard('count repairs'):
            rows = self.session.query(Repair.status, func.count(Repair.id)).group_by(Repair.status).all()
            return [(status, int(count)) for status, count in rows]

    def creation_times(self) -> List[datetime]:
        with self.guard('read repair dates'):
            return [ts for ts in self.session.execute(select(Repair.created_at)).scalars() if ts is not None]

    # ---------- Status change logs ---------- #

    def add_status_event(self, repair: Repair, old_status: Optional[str], new_status: str, actor: str, changed_at: datetime) -> StatusChangeLog:
        """Stage a log row in the current transaction (caller commits)."""
        event = StatusChangeLog(
            repair_pk=repair.id,
            repair_id=repair.repair_id,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            changed_at=changed_at,
            notification_sent=False,
        )
        self.session.add(event)
        return event

    def mark_notification_sent(self, event: StatusChangeLog):
        with self.guard('flag notification'):
            event.notification_sent = True
            self.session.commit()

    def status_events(self, repair_pk: int) -> List[StatusChangeLog]:
        with self.guard('read status history'):
            return list(self.session.execute(
                select(StatusChangeLog).where(StatusChangeLog.repair_pk == repair_pk)
                .order_by(StatusChangeLog.id.asc())
                .execution_options(populate_existing=True)
            ).scalars())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ['RecordStore', 'MUTABLE_FIELDS', 'repair_to_patch', 'utcnow']
