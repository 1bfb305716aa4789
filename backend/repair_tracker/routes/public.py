"""Customer-facing endpoints (tracking page). No authentication; errors carry
generic messages only (see the error handler in the app factory)."""
from __future__ import annotations
from flask import Blueprint, request
from repair_tracker.decorators.audit import audit_log
from repair_tracker.errors import ValidationError
from repair_tracker.services import context
from repair_tracker.services.serializers import public_repair_json, repair_json
from repair_tracker.utils.listing import make_detail_response, handle_conditional, parse_iso
from repair_tracker.utils.responses import mutation_response

public_bp = Blueprint('public', __name__)


def _repair_id(raw) -> str:
    value = (raw or '').strip() if isinstance(raw, str) else ''
    if not value:
        raise ValidationError('Repair ID is required', fields=['repairId'])
    return value


@public_bp.get('/repairs/track/<repair_id>')
def track_repair(repair_id: str):
    view = context.views().repair_detail_by_human_id(context.store(), repair_id)
    latest_ts = parse_iso(view.get('updated_at'))
    resp, etag = make_detail_response(public_repair_json(view), latest_ts, view.get('version'))
    cond = handle_conditional(etag, latest_ts)
    return cond or resp


@public_bp.post('/repairs/verify')
def verify_phone():
    data = request.get_json(silent=True) or {}
    repair = context.lifecycle().lookup_by_phone(data.get('phone'))
    return {'success': True, 'repairId': repair.repair_id}


@public_bp.get('/notification-preferences')
def get_notification_preferences():
    repair_id = _repair_id(request.args.get('repairId'))
    view = context.views().repair_detail_by_human_id(context.store(), repair_id)
    return {
        'success': True,
        'data': {
            'repairId': view['repair_id'],
            'preference': view['notification_preference'],
            'email': view['email'],
        },
    }


@public_bp.put('/notification-preferences')
@audit_log('RPR.NOTIFY.SET', entity='Repair', entity_id_key='repairId', meta_keys=['preference'])
def update_notification_preferences():
    data = request.get_json(silent=True) or {}
    result = context.lifecycle().update_notification_preferences(
        _repair_id(data.get('repairId')), data.get('preference'), data.get('email'),
    )
    r = result.repair
    return mutation_response('Notification preferences updated successfully', result, {
        'repairId': r.repair_id,
        'preference': r.notification_preference,
        'email': r.email,
    })


@public_bp.post('/estimate-approval')
@audit_log('RPR.ESTIMATE.DECIDE', entity='Repair', entity_id_key='repair_id',
           meta_builder=lambda data, rv, a, kw: {'estimate_status': data.get('estimate_status'), 'status': data.get('status')})
def estimate_approval():
    data = request.get_json(silent=True) or {}
    result = context.estimates().record_estimate_decision(_repair_id(data.get('repairId')), data.get('status'))
    r = result.repair
    return mutation_response(f"Estimate {r.estimate_status.lower()} successfully", result,
                             public_repair_json(repair_json(r)), cascaded=result.cascaded)
