from __future__ import annotations
"""Audit logging decorator for repair route handlers.

Usage examples:

@audit_log('RPR.CREATE', entity='Repair', entity_id_key='repair_id', meta_keys=['status'])
def create_repair():
    ... return {'success': True, 'message': ..., 'data': repair_json(r)}, 201

@audit_log('RPR.UPDATE', entity='Repair', entity_id_key='repair_id', diff_keys=['status', 'estimate_status'],
           pre_fetch=lambda args, kwargs: {...})

Parameters:
  action: required audit action code (e.g. RPR.STATUS.SET)
  entity: optional entity label (Repair)
  entity_id_key: key in the returned record whose value becomes entity_id.
  entity_id_arg: name of the view argument to use for entity_id (fallback if entity_id_key absent).
  meta_keys: keys to project from the returned record into meta.
  meta_builder: callable returning a meta dict; receives (record, original_return_value, args, kwargs).
  diff_keys / pre_fetch: record before/after values of diff_keys under meta['changes'].

The record inspected is the ``data`` member of the mutation envelope when
present, else the payload itself. Only successful (2xx) responses are audited.
"""
import logging
from functools import wraps
from typing import Any, Callable, Iterable, Optional, Dict
from flask import Response
from sqlalchemy.exc import SQLAlchemyError
from repair_tracker.services.audit import add_audit
from repair_tracker import get_db

logger = logging.getLogger(__name__)


def _extract_payload(rv: Any):
    """Return (record, status) for inspection."""
    status = 200
    body = rv
    if isinstance(rv, tuple) and rv:
        body = rv[0]
        if len(rv) > 1 and isinstance(rv[1], int):
            status = rv[1]
    if isinstance(body, Response):
        status = body.status_code
        body = body.get_json(silent=True)
    if isinstance(body, dict) and isinstance(body.get('data'), dict):
        return body['data'], status
    return body, status


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before = pre_fetch(args, kwargs) if (diff_keys and pre_fetch) else None
            rv = fn(*args, **kwargs)
            data, status = _extract_payload(rv)
            if status >= 300:
                return rv
            if not isinstance(data, dict):
                data = {}
            entity_id = None
            if entity_id_key and entity_id_key in data:
                entity_id = data.get(entity_id_key)
            elif entity_id_arg and entity_id_arg in kwargs:
                entity_id = kwargs.get(entity_id_arg)
            if meta_builder:
                meta = meta_builder(data, rv, args, kwargs) or {}
            else:
                meta = {k: data.get(k) for k in (meta_keys or ()) if k in data}
            if diff_keys and isinstance(before, dict):
                changes = {
                    k: {'before': before.get(k), 'after': data.get(k)}
                    for k in diff_keys
                    if k in before and k in data and before.get(k) != data.get(k)
                }
                if changes:
                    meta['changes'] = changes
            # The mutation is already committed; a failed audit write is logged, not raised
            try:
                add_audit(action, entity, entity_id, meta)
                get_db().commit()
            except SQLAlchemyError:
                get_db().rollback()
                logger.exception('Audit write failed for %s %s', action, entity_id)
            return rv
        return wrapper
    return outer
