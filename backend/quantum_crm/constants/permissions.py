"""Central enum-like definitions to avoid typos in section/action/role strings.
Extend cautiously; never rename section keys silently, stored payloads reference them.
"""
from __future__ import annotations
from enum import Enum
from typing import Dict, Any, Optional, List

ACTIONS = ('view', 'create', 'edit', 'delete')

SCOPE_SELF = 'self'
SCOPE_TEAM = 'team'
SCOPE_ALL = 'all'
SCOPE_VALUES = (SCOPE_SELF, SCOPE_TEAM, SCOPE_ALL)

# Top-level sections and the subsections nested under them
SECTIONS = ['dashboard', 'leads', 'sales', 'tasks', 'quotations', 'reservations', 'reports', 'users', 'settings', 'admin']

SUBSECTIONS = {
    'admin': ['roles', 'products', 'countries', 'leads-settings'],
}


def build_all_section_keys() -> List[str]:
    keys: List[str] = list(SECTIONS)
    for parent, children in SUBSECTIONS.items():
        for child in children:
            keys.append(f"{parent}.{child}")
    return keys

ALL_SECTION_KEYS = build_all_section_keys()


class Role(str, Enum):
    SUPERADMIN = 'SUPERADMIN'
    ADMIN = 'ADMIN'
    COUNTRYADMIN = 'COUNTRYADMIN'
    MANAGER = 'MANAGER'
    SELLER = 'SELLER'
    USER = 'USER'

    @classmethod
    def parse(cls, value: Any) -> Optional['Role']:
        """Map a stored role value (enum name or legacy display name) to a Role, None if unknown."""
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            return None
        raw = value.strip()
        if raw in ROLE_ALIASES:
            return ROLE_ALIASES[raw]
        try:
            return cls(raw.upper())
        except ValueError:
            return None

    @property
    def is_super_admin(self) -> bool:
        return self is Role.SUPERADMIN


# Spanish display names used by earlier role records
ROLE_ALIASES: Dict[str, Role] = {
    'Super Administrador': Role.SUPERADMIN,
    'Administrador': Role.ADMIN,
    'Administrador de País': Role.COUNTRYADMIN,
    'Gerente': Role.MANAGER,
    'Vendedor': Role.SELLER,
    'Usuario': Role.USER,
}


def _crud(view, create=False, edit=False, delete=False) -> Dict[str, Any]:
    return {'view': view, 'create': create, 'edit': edit, 'delete': delete}


# Role -> permission payload, applied only when a user has no explicit UserPermission row
ROLE_DEFAULT_PERMISSIONS: Dict[Role, Dict[str, Any]] = {
    Role.USER: {
        'sections': {
            'dashboard': _crud(SCOPE_SELF),
            'leads': _crud(SCOPE_SELF, SCOPE_SELF, SCOPE_SELF),
            'sales': _crud(SCOPE_SELF, SCOPE_SELF, SCOPE_SELF),
            'tasks': _crud(SCOPE_SELF, SCOPE_SELF, SCOPE_SELF),
        }
    },
    Role.SELLER: {
        'sections': {
            'dashboard': _crud(SCOPE_SELF),
            'leads': _crud(SCOPE_SELF, SCOPE_SELF, SCOPE_SELF),
            'sales': _crud(SCOPE_SELF, SCOPE_SELF, SCOPE_SELF),
            'tasks': _crud(SCOPE_SELF, SCOPE_SELF, SCOPE_SELF, SCOPE_SELF),
            'quotations': _crud(SCOPE_SELF, SCOPE_SELF, SCOPE_SELF),
            'reservations': _crud(SCOPE_SELF, SCOPE_SELF, SCOPE_SELF),
        }
    },
    # Manager: team-wide operational authority, read-only on users
    Role.MANAGER: {
        'sections': {
            'dashboard': _crud(SCOPE_TEAM),
            'leads': _crud(SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM),
            'sales': _crud(SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM),
            'tasks': _crud(SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM),
            'quotations': _crud(SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM),
            'reservations': _crud(SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM),
            'reports': _crud(SCOPE_TEAM),
            'users': _crud(SCOPE_TEAM),
        }
    },
    Role.COUNTRYADMIN: {
        'sections': {
            'dashboard': _crud(SCOPE_TEAM),
            'leads': _crud(SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM),
            'sales': _crud(SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM),
            'tasks': _crud(SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM),
            'quotations': _crud(SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM),
            'reservations': _crud(SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM),
            'reports': _crud(SCOPE_TEAM),
            'users': _crud(SCOPE_TEAM, SCOPE_TEAM, SCOPE_TEAM),
        }
    },
    Role.ADMIN: {
        'sections': {
            'dashboard': _crud(SCOPE_ALL),
            'leads': _crud(SCOPE_ALL, SCOPE_ALL, SCOPE_ALL, SCOPE_ALL),
            'sales': _crud(SCOPE_ALL, SCOPE_ALL, SCOPE_ALL, SCOPE_ALL),
            'tasks': _crud(SCOPE_ALL, SCOPE_ALL, SCOPE_ALL, SCOPE_ALL),
            'quotations': _crud(SCOPE_ALL, SCOPE_ALL, SCOPE_ALL, SCOPE_ALL),
            'reservations': _crud(SCOPE_ALL, SCOPE_ALL, SCOPE_ALL, SCOPE_ALL),
            'reports': _crud(SCOPE_ALL),
            'users': _crud(SCOPE_ALL, SCOPE_ALL, SCOPE_ALL, SCOPE_ALL),
            'settings': _crud(SCOPE_ALL, SCOPE_ALL, SCOPE_ALL),
            'admin': {
                'view': SCOPE_ALL,
                'products': _crud(SCOPE_ALL, SCOPE_ALL, SCOPE_ALL, SCOPE_ALL),
                'countries': _crud(SCOPE_ALL, SCOPE_ALL, SCOPE_ALL, SCOPE_ALL),
                'leads-settings': _crud(SCOPE_ALL, SCOPE_ALL, SCOPE_ALL, SCOPE_ALL),
            },
        }
    },
    # Resolution bypasses the payload for this role; kept complete for display and reset
    Role.SUPERADMIN: {
        'sections': dict(
            {key: _crud(SCOPE_ALL, SCOPE_ALL, SCOPE_ALL, SCOPE_ALL) for key in SECTIONS if key != 'admin'},
            admin=dict(
                _crud(SCOPE_ALL, SCOPE_ALL, SCOPE_ALL, SCOPE_ALL),
                **{child: _crud(SCOPE_ALL, SCOPE_ALL, SCOPE_ALL, SCOPE_ALL) for child in SUBSECTIONS['admin']}
            ),
        )
    },
}


def role_default_permissions(role: Any) -> Optional[Dict[str, Any]]:
    """Return a copy of the default payload for a role value, None when the role is unknown."""
    import copy
    parsed = Role.parse(role)
    if parsed is None:
        return None
    return copy.deepcopy(ROLE_DEFAULT_PERMISSIONS[parsed])
