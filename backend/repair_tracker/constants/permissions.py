"""Central enum-like definitions to avoid typos in permission strings.
Extend cautiously; never rename codes silently, add new ones instead.
"""
from __future__ import annotations
from typing import List, Dict

SERVICES = ['RPR']

SERVICE_ACTIONS = {
    # READ: dashboard and listings; MANAGE: create/update/transition; ADMIN: delete
    'RPR': ['READ', 'MANAGE', 'ADMIN'],
}

PERM_READ = 'RPR.READ'
PERM_MANAGE = 'RPR.MANAGE'
PERM_ADMIN = 'RPR.ADMIN'


def build_all_permission_codes() -> List[str]:
    codes: List[str] = []
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            codes.append(f"{svc}.{act}")
    return codes

ALL_PERMISSION_CODES = build_all_permission_codes()

ROLE_STAFF = 'staff'
ROLE_ADMIN = 'admin'

ROLE_PRESETS: Dict[str, List[str]] = {
    ROLE_STAFF: [PERM_READ, PERM_MANAGE],
    ROLE_ADMIN: ['*'],
}


def permissions_for_role(role: str) -> List[str]:
    codes = ROLE_PRESETS.get(role, [])
    if '*' in codes:
        return sorted(ALL_PERMISSION_CODES)
    return sorted(codes)
