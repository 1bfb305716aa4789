from functools import wraps
from flask import abort, current_app, g, request
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from repair_tracker.models.status_change import StatusChangeLog
from repair_tracker.services.policy import current_permissions


def require_permissions(*codes: str):
    """Reject with 403 unless the JWT carries every code; exposes the caller as ``g.actor``."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            missing = [c for c in codes if c not in current_permissions()]
            if missing:
                current_app.logger.info('Denied %s %s: missing %s', request.method, request.path, missing)
                abort(403, description='Missing permission')
            g.actor = StatusChangeLog.staff_actor(get_jwt_identity())
            return fn(*args, **kwargs)
        return wrapper
    return outer
