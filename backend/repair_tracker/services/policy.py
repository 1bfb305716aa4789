from __future__ import annotations
from typing import Set
from flask import request
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request
from repair_tracker.constants.permissions import permissions_for_role


def current_permissions() -> Set[str]:
    claims = get_jwt()
    return set(claims.get('perms', []))


def login_claims(user) -> dict:
    return {
        'role': user.role,
        'perms': permissions_for_role(user.role),
        'name': user.name,
    }


def client_identity() -> str:
    """Rate-limit key: JWT subject, then X-Client-Id, then remote address."""
    verify_jwt_in_request(optional=True)
    ident = get_jwt_identity()
    if ident is not None:
        return f"user:{ident}"
    header = (request.headers.get('X-Client-Id') or '').strip()
    if header:
        return f"client:{header[:64]}"
    return f"addr:{request.remote_addr or 'unknown'}"
