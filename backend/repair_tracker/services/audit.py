from __future__ import annotations
import logging
from typing import Any, Dict, Optional
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from repair_tracker import get_db
from repair_tracker.models.audit import AuditLog

logger = logging.getLogger(__name__)


def current_actor_id() -> int:
    """Staff user id from the JWT, or 0 for public (customer) requests."""
    try:
        verify_jwt_in_request(optional=True)
        ident = get_jwt_identity()
    except (JWTExtendedException, PyJWTError, RuntimeError):
        return 0
    try:
        return int(ident) if ident is not None else 0
    except (TypeError, ValueError):
        return 0


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None):
    """Stage an audit log entry in the current DB session.

    Parameters:
      action: short action code e.g. RPR.CREATE, RPR.STATUS.SET, RPR.ESTIMATE.DECIDE
      entity: optional entity name (Repair)
      entity_id: human repair id or primary key string
      meta: additional JSON-safe dictionary (will be shallow copied)
    """
    session = get_db()
    log = AuditLog(
        actor_user_id=current_actor_id(),
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=dict(meta or {}),
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log
