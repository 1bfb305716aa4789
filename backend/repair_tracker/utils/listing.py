from __future__ import annotations
from typing import Dict, Any, Tuple, Iterable, Optional
from flask import request, abort, make_response, jsonify
from sqlalchemy.orm import Query
from repair_tracker.config.pagination import normalize_pagination
import hashlib
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime, format_datetime

NO_CACHE = 'no-cache, must-revalidate'


def canonicalize_timestamp(dt: datetime) -> datetime:
    """Return UTC tz-aware timestamp truncated to whole seconds (microseconds removed)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0)


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace('+00:00', 'Z')


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    total = q.count()
    return q.offset(offset).limit(limit), total, limit, offset


def compute_etag(ids: Iterable[Any], total: int, limit: int, offset: int, latest_ts: Optional[str] = '', version: Any = '') -> str:
    seed = f"{list(ids)}|{total}|{limit}|{offset}|{latest_ts or ''}|{version}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }


def _http_date(dt: datetime) -> str:
    """Return RFC1123 HTTP-date string in GMT."""
    return format_datetime(canonicalize_timestamp(dt), usegmt=True)


def _stamp_validators(resp, etag: str, latest_ts: Optional[datetime]):
    resp.headers['ETag'] = etag
    if latest_ts:
        latest_c = canonicalize_timestamp(latest_ts)
        resp.headers['Last-Modified'] = _http_date(latest_c)
        resp.headers['X-Last-Modified-ISO'] = _iso(latest_c)
    return resp


def make_cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None):
    ids = [r.get('id') for r in rows]
    latest_iso = _iso(canonicalize_timestamp(latest_ts)) if isinstance(latest_ts, datetime) else ''
    # Row versions keep the tag moving when a write lands within the same second
    etag = compute_etag(ids, total, limit, offset, latest_iso, [r.get('version') for r in rows])
    resp = make_response(build_list_payload(rows, total, limit, offset))
    _stamp_validators(resp, etag, latest_ts)
    resp.headers['Cache-Control'] = NO_CACHE
    return resp, etag


def make_detail_response(body: Dict[str, Any], latest_ts: Optional[datetime], version: Any = ''):
    """Single-resource response with validators that force downstream caches to revalidate."""
    latest_iso = _iso(canonicalize_timestamp(latest_ts)) if latest_ts else ''
    etag = compute_etag([body.get('id') or body.get('repair_id')], 1, 1, 0, latest_iso, version)
    resp = make_response(jsonify(body))
    _stamp_validators(resp, etag, latest_ts)
    resp.headers['Cache-Control'] = NO_CACHE
    return resp, etag


def no_cache(resp):
    resp.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate'
    resp.headers['Pragma'] = 'no-cache'
    resp.headers['Expires'] = '0'
    return resp


def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    if not header_val:
        return None
    # Try ISO 8601 first
    try:
        dt = datetime.fromisoformat(header_val.replace('Z', '+00:00'))
    except ValueError:
        dt = None
    if dt is None:
        # Then HTTP-date (RFC 1123)
        try:
            dt = parsedate_to_datetime(header_val)
        except (TypeError, ValueError):
            return None
    if dt and dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Evaluate conditional request headers.

    Precedence: If-None-Match over If-Modified-Since (per RFC 9110 semantics).
    Returns a 304 response object if conditions satisfied, else None.
    """
    inm = request.headers.get('If-None-Match')
    if inm:
        if inm.strip().strip('"') == etag_value:
            return _stamp_validators(make_response('', 304), etag_value, latest_ts)
        return None
    ims_dt = _parse_if_modified_since(request.headers.get('If-Modified-Since'))
    if ims_dt and latest_ts:
        if canonicalize_timestamp(latest_ts) <= canonicalize_timestamp(ims_dt):
            return _stamp_validators(make_response('', 304), etag_value, latest_ts)
    return None


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value.replace('Z', '+00:00')) if value else None
