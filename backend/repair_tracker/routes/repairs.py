from __future__ import annotations
from flask import Blueprint, request, abort, g
from repair_tracker.constants.permissions import PERM_READ, PERM_MANAGE, PERM_ADMIN
from repair_tracker.constants.statuses import RepairStatus, EstimateStatus
from repair_tracker.decorators.auth import require_permissions
from repair_tracker.decorators.audit import audit_log
from repair_tracker.errors import ValidationError
from repair_tracker.models.repair import Repair
from repair_tracker.services import context
from repair_tracker.services.serializers import repair_json, status_event_json
from repair_tracker.utils.listing import (
    make_cached_list_response, make_detail_response, handle_conditional, apply_pagination, parse_iso,
)
from repair_tracker.utils.responses import mutation_response
from repair_tracker.utils.sorting import apply_multi_sort

rpr_bp = Blueprint('repairs', __name__)

SORT_FIELDS = {
    'id': Repair.id,
    'repair_id': Repair.repair_id,
    'patient_name': Repair.patient_name,
    'status': Repair.status,
    'estimate_status': Repair.estimate_status,
    'created_at': Repair.created_at,
    'updated_at': Repair.updated_at,
}
DEFAULT_SORT = '-created_at'


def _label_filter(name, enum_cls):
    raw = request.args.get(name)
    if raw and enum_cls.parse(raw) is None:
        abort(400, description=f'{name} invalid')
    return raw


def _repair_pk(raw) -> int:
    try:
        pk = int(raw)
    except (TypeError, ValueError):
        raise ValidationError('Repair id is required', fields=['id'])
    if pk < 1:
        raise ValidationError('Repair id is required', fields=['id'])
    return pk


def _snapshot(raw_pk):
    """Current state for audit diffs; empty when the id is unusable."""
    try:
        repair = context.store().get_repair(int(raw_pk))
    except (TypeError, ValueError):
        return {}
    return repair_json(repair) if repair else {}


@rpr_bp.route('', methods=['GET', 'HEAD'])
@require_permissions(PERM_READ)
def list_repairs():
    filters = {
        'status': _label_filter('status', RepairStatus),
        'estimate_status': _label_filter('estimate_status', EstimateStatus),
        'phone': (request.args.get('phone') or '').strip() or None,
        'q': (request.args.get('q') or '').strip() or None,
    }
    q = context.store().repairs_query(filters)
    q = apply_multi_sort(q, request.args.get('sort') or DEFAULT_SORT, SORT_FIELDS, Repair.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    rows_json = [repair_json(r) for r in rows]
    stamps = [r.updated_at for r in rows if r.updated_at]
    latest_ts = max(stamps) if stamps else None
    resp, etag = make_cached_list_response(rows_json, total, limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    if request.method == 'HEAD':
        resp.set_data(b'')
    return resp


@rpr_bp.route('/<int:repair_pk>', methods=['GET', 'HEAD'])
@require_permissions(PERM_READ)
def get_repair(repair_pk: int):
    view = context.views().repair_detail(context.store(), repair_pk)
    body = dict(view)
    if request.args.get('include') == 'history':
        body['history'] = [status_event_json(e) for e in context.store().status_events(repair_pk)]
    latest_ts = parse_iso(view.get('updated_at'))
    resp, etag = make_detail_response(body, latest_ts, view.get('version'))
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    if request.method == 'HEAD':
        resp.set_data(b'')
    return resp


@rpr_bp.post('')
@require_permissions(PERM_MANAGE)
@audit_log('RPR.CREATE', entity='Repair', entity_id_key='repair_id', meta_keys=['status', 'estimate_status', 'phone'])
def create_repair():
    data = request.get_json(silent=True) or {}
    result = context.lifecycle().create_repair(data, actor=g.actor)
    return mutation_response('Repair created successfully', result, repair_json(result.repair), 201)


@rpr_bp.put('')
@require_permissions(PERM_MANAGE)
@audit_log('RPR.UPDATE', entity='Repair', entity_id_key='repair_id',
           diff_keys=['status', 'estimate_status', 'repair_estimate', 'notification_preference'],
           pre_fetch=lambda a, kw: _snapshot((request.get_json(silent=True) or {}).get('id')))
def update_repair():
    data = dict(request.get_json(silent=True) or {})
    repair_pk = _repair_pk(data.pop('id', None))
    engine = context.lifecycle()
    if set(data) == {'status'}:
        result = engine.transition_status(repair_pk, data['status'], g.actor)
        message = 'Repair status updated successfully'
    else:
        result = engine.update_repair(repair_pk, data, g.actor)
        message = 'Repair updated successfully'
    return mutation_response(message, result, repair_json(result.repair))


@rpr_bp.delete('')
@require_permissions(PERM_ADMIN)
@audit_log('RPR.DELETE', entity='Repair', entity_id_key='repair_id')
def delete_repair():
    repair_pk = _repair_pk(request.args.get('id'))
    human_id = context.lifecycle().delete_repair(repair_pk)
    return mutation_response('Repair deleted successfully', data={'id': repair_pk, 'repair_id': human_id})
