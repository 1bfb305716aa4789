from __future__ import annotations
from typing import Any, Dict, Optional


def mutation_response(message: str, result=None, data: Optional[Dict[str, Any]] = None, status: int = 200, **extra):
    """Envelope for write endpoints: ``{success, message, data?, warnings?}``."""
    body: Dict[str, Any] = {'success': True, 'message': message}
    if data is not None:
        body['data'] = data
    body.update(extra)
    if result is not None and result.warnings:
        body['warnings'] = list(result.warnings)
    return body, status


def error_body(message: str, code: str) -> Dict[str, Any]:
    return {'success': False, 'message': message, 'code': code}
