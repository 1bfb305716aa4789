from __future__ import annotations
from typing import Dict, Optional
from flask import abort


def parse_sort(sort_expr: Optional[str], allowed: Dict[str, object]):
    """Yield (key, descending) for each comma-separated token, e.g. ``-created_at,patient_name``."""
    seen = set()
    for raw in (sort_expr or '').split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token.lstrip('-+')
        if key not in allowed:
            abort(400, description=f'Invalid sort field {key}')
        if key in seen:
            continue
        seen.add(key)
        yield key, desc


def apply_multi_sort(query, sort_expr: Optional[str], allowed: dict, tie_breaker):
    """Apply multi-field sort to a SQLAlchemy query; tie_breaker keeps paging deterministic."""
    clauses = [allowed[key].desc() if desc else allowed[key].asc() for key, desc in parse_sort(sort_expr, allowed)]
    clauses.append(tie_breaker.asc())
    return query.order_by(*clauses)
