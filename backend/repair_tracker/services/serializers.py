from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from repair_tracker.models.customer import Customer
from repair_tracker.models.repair import Repair
from repair_tracker.models.status_change import StatusChangeLog


def iso(dt: Optional[datetime]) -> Optional[str]:
    """UTC ISO-8601 with a Z suffix; naive values are assumed to be UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def repair_json(r: Repair) -> Dict[str, Any]:
    return {
        'id': r.id,
        'repair_id': r.repair_id,
        'customer_id': r.customer_id,
        'status': r.status,
        'patient_name': r.patient_name,
        'phone': r.phone,
        'company': r.company,
        'email': r.email,
        'notification_preference': r.notification_preference,
        'model_item_name': r.model_item_name,
        'serial_no': r.serial_no,
        'quantity': r.quantity,
        'warranty': r.warranty,
        'ear': r.ear,
        'mould': r.mould,
        'purpose': r.purpose,
        'date_of_receipt': iso(r.date_of_receipt),
        'date_out_to_manufacturer': iso(r.date_out_to_manufacturer),
        'date_received_from_manufacturer': iso(r.date_received_from_manufacturer),
        'date_out_to_customer': iso(r.date_out_to_customer),
        'repair_estimate': r.repair_estimate,
        'estimate_status': r.estimate_status,
        'estimate_approval_date': iso(r.estimate_approval_date),
        'customer_paid': r.customer_paid,
        'payment_mode': r.payment_mode,
        'programming_done': bool(r.programming_done),
        'remarks': r.remarks,
        'created_at': iso(r.created_at),
        'updated_at': iso(r.updated_at),
        'version': r.version,
    }


def customer_json(c: Customer) -> Dict[str, Any]:
    return {
        'id': c.id,
        'name': c.name,
        'phone': c.phone,
        'company': c.company,
        'created_at': iso(c.created_at),
        'updated_at': iso(c.updated_at),
    }


# Customer tracking page: no contact details or payment data
PUBLIC_FIELDS = (
    'repair_id', 'status', 'patient_name', 'model_item_name', 'serial_no', 'warranty', 'purpose',
    'date_of_receipt', 'date_out_to_manufacturer', 'date_received_from_manufacturer',
    'date_out_to_customer', 'repair_estimate', 'estimate_status', 'estimate_approval_date', 'updated_at',
)


def public_repair_json(view: Dict[str, Any]) -> Dict[str, Any]:
    return {k: view.get(k) for k in PUBLIC_FIELDS}


def status_event_json(e: StatusChangeLog) -> Dict[str, Any]:
    return {
        'id': e.id,
        'repair_id': e.repair_id,
        'old_status': e.old_status,
        'new_status': e.new_status,
        'actor': e.actor,
        'changed_at': iso(e.changed_at),
        'notification_sent': bool(e.notification_sent),
    }
