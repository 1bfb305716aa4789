from __future__ import annotations
from flask import Blueprint, request, g
from repair_tracker.constants.permissions import PERM_READ, PERM_MANAGE
from repair_tracker.decorators.auth import require_permissions
from repair_tracker.decorators.audit import audit_log
from repair_tracker.models.customer import Customer
from repair_tracker.services import context
from repair_tracker.services.serializers import customer_json, repair_json
from repair_tracker.utils.listing import (
    make_cached_list_response, make_detail_response, handle_conditional, apply_pagination,
)
from repair_tracker.utils.responses import mutation_response
from repair_tracker.utils.sorting import apply_multi_sort

cus_bp = Blueprint('customers', __name__)

SORT_FIELDS = {
    'id': Customer.id,
    'name': Customer.name,
    'phone': Customer.phone,
    'company': Customer.company,
    'created_at': Customer.created_at,
    'updated_at': Customer.updated_at,
}
DEFAULT_SORT = '-created_at'


def _snapshot(customer_id):
    customer = context.store().get_customer(customer_id)
    return customer_json(customer) if customer else {}


@cus_bp.route('', methods=['GET', 'HEAD'])
@require_permissions(PERM_READ)
def list_customers():
    filters = {
        'phone': (request.args.get('phone') or '').strip() or None,
        'q': (request.args.get('q') or '').strip() or None,
    }
    q = context.store().customers_query(filters)
    q = apply_multi_sort(q, request.args.get('sort') or DEFAULT_SORT, SORT_FIELDS, Customer.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    rows_json = [customer_json(c) for c in rows]
    stamps = [c.updated_at for c in rows if c.updated_at]
    latest_ts = max(stamps) if stamps else None
    resp, etag = make_cached_list_response(rows_json, total, limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    if request.method == 'HEAD':
        resp.set_data(b'')
    return resp


@cus_bp.route('/<int:customer_id>', methods=['GET', 'HEAD'])
@require_permissions(PERM_READ)
def get_customer(customer_id: int):
    directory = context.customers()
    customer = directory.get(customer_id)
    repairs = directory.repairs(customer_id)
    body = customer_json(customer)
    body['repairs'] = [repair_json(r) for r in repairs]
    stamps = [ts for ts in [customer.updated_at] + [r.updated_at for r in repairs] if ts]
    latest_ts = max(stamps) if stamps else None
    resp, etag = make_detail_response(body, latest_ts, [(r.id, r.version) for r in repairs])
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    if request.method == 'HEAD':
        resp.set_data(b'')
    return resp


@cus_bp.post('')
@require_permissions(PERM_MANAGE)
@audit_log('CUS.CREATE', entity='Customer', entity_id_key='id', meta_keys=['phone'])
def create_customer():
    data = request.get_json(silent=True) or {}
    customer = context.customers().create(data, actor=g.actor)
    return mutation_response('Customer created successfully', data=customer_json(customer), status=201)


@cus_bp.put('/<int:customer_id>')
@require_permissions(PERM_MANAGE)
@audit_log('CUS.UPDATE', entity='Customer', entity_id_arg='customer_id', diff_keys=['name', 'phone', 'company'],
           pre_fetch=lambda a, kw: _snapshot(kw.get('customer_id')))
def update_customer(customer_id: int):
    data = request.get_json(silent=True) or {}
    customer = context.customers().update(customer_id, data, actor=g.actor)
    return mutation_response('Customer updated successfully', data=customer_json(customer))


@cus_bp.delete('/<int:customer_id>')
@require_permissions(PERM_MANAGE)
@audit_log('CUS.DELETE', entity='Customer', entity_id_arg='customer_id', meta_keys=['detached_repairs'])
def delete_customer(customer_id: int):
    detached = context.customers().delete(customer_id, actor=g.actor)
    return mutation_response('Customer deleted successfully',
                             data={'id': customer_id, 'detached_repairs': detached})
