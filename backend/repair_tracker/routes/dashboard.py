from __future__ import annotations
from flask import Blueprint, current_app, request, make_response, jsonify
from repair_tracker import limiter
from repair_tracker.constants.permissions import PERM_READ, PERM_MANAGE
from repair_tracker.decorators.audit import audit_log
from repair_tracker.decorators.auth import require_permissions
from repair_tracker.errors import ValidationError
from repair_tracker.services import context
from repair_tracker.services.consistency import get_dashboard_stats
from repair_tracker.utils.listing import no_cache
from repair_tracker.utils.responses import mutation_response

dash_bp = Blueprint('dashboard', __name__)


@dash_bp.get('/dashboard-stats')
@require_permissions(PERM_READ)
@limiter.limit(lambda: current_app.config['DASHBOARD_RATE_LIMIT'])
def dashboard_stats():
    stats = get_dashboard_stats(context.views(), context.store(), context.now())
    return no_cache(make_response(jsonify(stats)))


@dash_bp.post('/cache-invalidate')
@require_permissions(PERM_MANAGE)
@audit_log('RPR.CACHE.INVALIDATE', entity='Repair', entity_id_key='repair_id')
def cache_invalidate():
    raw_pk = request.args.get('id')
    repair_pk = None
    if raw_pk not in (None, ''):
        try:
            repair_pk = int(raw_pk)
        except ValueError:
            raise ValidationError('id must be an integer', fields=['id'])
    human_id = (request.args.get('repair_id') or '').strip() or None
    dropped = context.views().invalidate(repair_pk, human_id)
    return mutation_response('Cache invalidated', data={'id': repair_pk, 'repair_id': human_id, 'keys': dropped})
