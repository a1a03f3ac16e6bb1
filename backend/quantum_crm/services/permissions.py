"""Permission model and scope resolution shared by the route gate, API handlers and UI helpers.

Payloads are parsed once into typed objects (``PermissionSet``). Stored shape:

    {"sections": {"leads": {"view": "self", "edit": "self"},
                  "admin": {"view": true, "roles": {"view": "all"}}}}

The ``sections`` wrapper is optional (flat legacy shape). Each action value is
``false``, legacy ``true`` (read as ``"all"``) or one of ``self``/``team``/``all``.
Resolution never raises for a missing permission; only a malformed payload raises
``PermissionPayloadError`` and every caller in this module turns that into a deny.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import false

from quantum_crm.constants.permissions import ACTIONS, ALL_SECTION_KEYS, Role, role_default_permissions

logger = logging.getLogger(__name__)


class PermissionPayloadError(ValueError):
    """Raised when a stored or submitted permission payload does not match the section schema."""


class Scope(str, Enum):
    DENY = 'deny'
    SELF = 'self'
    TEAM = 'team'
    ALL = 'all'

    def __bool__(self) -> bool:
        return self is not Scope.DENY

    @classmethod
    def parse(cls, value: Any) -> 'Scope':
        if isinstance(value, Scope):
            return value
        # bool first: legacy payloads store plain true/false
        if value is True:
            return cls.ALL
        if value is False:
            return cls.DENY
        if isinstance(value, str) and value in (cls.SELF.value, cls.TEAM.value, cls.ALL.value):
            return cls(value)
        raise PermissionPayloadError(f'invalid scope value: {value!r}')

    def to_json(self):
        return False if self is Scope.DENY else self.value


@dataclass(frozen=True)
class SectionPermission:
    view: Scope = Scope.DENY
    create: Scope = Scope.DENY
    edit: Scope = Scope.DENY
    delete: Scope = Scope.DENY

    def scope_for(self, action: str) -> Scope:
        if action not in ACTIONS:
            return Scope.DENY
        return getattr(self, action)

    def to_json(self, declared=ACTIONS) -> Dict[str, Any]:
        return {a: self.scope_for(a).to_json() for a in declared}


@dataclass(frozen=True)
class SectionNode:
    own: Optional[SectionPermission] = None
    children: Dict[str, SectionPermission] = field(default_factory=dict)


@dataclass(frozen=True)
class PermissionSet:
    sections: Dict[str, SectionNode] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> 'PermissionSet':
        return cls()

    def resolve(self, section_key: str, action: str) -> Scope:
        if '.' in section_key:
            parent_key, child_key = section_key.split('.', 1)
            node = self.sections.get(parent_key)
            if node is None:
                return Scope.DENY
            child = node.children.get(child_key)
            if child is not None:
                return child.scope_for(action)
            # Blanket parent access is a read-only fallback for subsections
            if node.own is not None and action == 'view':
                return node.own.view
            return Scope.DENY
        node = self.sections.get(section_key)
        if node is None or node.own is None:
            return Scope.DENY
        return node.own.scope_for(action)

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key, node in self.sections.items():
            entry: Dict[str, Any] = node.own.to_json() if node.own else {}
            for child_key, child in node.children.items():
                entry[child_key] = child.to_json()
            out[key] = entry
        return {'sections': out}


def _parse_section(path: str, data: Mapping[str, Any], allow_children: bool):
    if not isinstance(data, Mapping):
        raise PermissionPayloadError(f'section {path} must be an object')
    actions: Dict[str, Scope] = {}
    children: Dict[str, SectionPermission] = {}
    for key, value in data.items():
        if key in ACTIONS:
            try:
                actions[key] = Scope.parse(value)
            except PermissionPayloadError as e:
                raise PermissionPayloadError(f'{path}.{key}: {e}') from e
        elif allow_children and isinstance(value, Mapping):
            own, _ = _parse_section(f'{path}.{key}', value, allow_children=False)
            children[key] = own
        else:
            raise PermissionPayloadError(f'unexpected key {path}.{key}')
    if actions and 'view' not in actions:
        raise PermissionPayloadError(f'section {path} must declare view')
    if not actions and not children:
        raise PermissionPayloadError(f'section {path} is empty')
    own = SectionPermission(**actions) if actions else None
    return own, children


def parse_permissions(raw: Any) -> PermissionSet:
    """Deserialize-or-reject a stored payload (JSON text or already-parsed mapping)."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise PermissionPayloadError(f'permissions are not valid JSON: {e}') from e
    if not isinstance(raw, Mapping):
        raise PermissionPayloadError('permissions must be an object')
    sections = raw['sections'] if 'sections' in raw else raw
    if not isinstance(sections, Mapping):
        raise PermissionPayloadError('sections must be an object')
    nodes: Dict[str, SectionNode] = {}
    for key, value in sections.items():
        if not isinstance(key, str) or not key:
            raise PermissionPayloadError('section keys must be non-empty strings')
        own, children = _parse_section(key, value, allow_children=True)
        nodes[key] = SectionNode(own=own, children=children)
    return PermissionSet(sections=nodes)


def is_valid_permissions_object(data: Any) -> bool:
    if data is None:
        return False
    try:
        parse_permissions(data)
    except PermissionPayloadError:
        return False
    return True


# --- User-facing resolution ---

def is_super_admin(user) -> bool:
    return user is not None and Role.parse(getattr(user, 'role', None)) is Role.SUPERADMIN


def _is_disabled(user) -> bool:
    return user is None or not getattr(user, 'is_active', True) or bool(getattr(user, 'is_deleted', False))


def effective_permissions(user) -> PermissionSet:
    """Explicit payload if stored, else role defaults. A malformed payload yields deny-all."""
    if _is_disabled(user):
        return PermissionSet.empty()
    raw = getattr(user, 'permissions', None)
    if raw is None:
        defaults = role_default_permissions(getattr(user, 'role', None))
        if defaults is None:
            return PermissionSet.empty()
        raw = defaults
    try:
        return parse_permissions(raw)
    except PermissionPayloadError as e:
        logger.warning('Ignoring malformed permissions for user %s: %s', getattr(user, 'id', None), e)
        return PermissionSet.empty()


def get_scope(user, module: str, action: str = 'view') -> Scope:
    if _is_disabled(user):
        return Scope.DENY
    if is_super_admin(user):
        return Scope.ALL
    scope = effective_permissions(user).resolve(module, action)
    logger.debug('[PERMISSION] user=%s %s.%s = %s', getattr(user, 'id', None), module, action, scope.value)
    return scope


def has_permission(user, module: str, action: str = 'view') -> bool:
    return bool(get_scope(user, module, action))


def describe_permissions(user) -> Dict[str, Dict[str, Any]]:
    """Resolved scope for every known section key, as consumed by UI components."""
    return {
        key: {action: get_scope(user, key, action).to_json() for action in ACTIONS}
        for key in ALL_SECTION_KEYS
    }


# --- Resource access guard ---

@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {'allowed': self.allowed}
        if self.reason is not None:
            out['reason'] = self.reason
        return out


def _coerce_scope(scope: Any) -> Scope:
    try:
        return Scope.parse(scope)
    except PermissionPayloadError:
        return Scope.DENY


def can_access_resource(user, resource_owner_id, resource_country_id, scope) -> bool:
    scope = _coerce_scope(scope)
    if user is None or scope is Scope.DENY:
        return False
    if scope is Scope.ALL:
        return True
    if scope is Scope.TEAM:
        user_country = getattr(user, 'country_id', None)
        return user_country is not None and resource_country_id is not None and user_country == resource_country_id
    return user.id == resource_owner_id


def check_permission(user, module: str, action: str, resource_owner_id=None, resource_country_id=None) -> AccessDecision:
    """Coarse check when no resource ids are given, scoped check otherwise."""
    if resource_owner_id is None and resource_country_id is None:
        if not _is_disabled(user) and is_super_admin(user):
            return AccessDecision(True)
        if not has_permission(user, module, action):
            return AccessDecision(False, f'No tienes permiso para {action} en {module}')
        return AccessDecision(True)
    return check_resource_access(user, module, action, resource_owner_id, resource_country_id)


def check_resource_access(user, module: str, action: str, resource_owner_id, resource_country_id) -> AccessDecision:
    """Scoped check for a concrete row. NULL owner or country ids are evaluated, never skipped:
    an unassigned row without a country is only reachable with the ``all`` scope."""
    if not _is_disabled(user) and is_super_admin(user):
        return AccessDecision(True)
    if not has_permission(user, module, action):
        return AccessDecision(False, f'No tienes permiso para {action} en {module}')
    scope = get_scope(user, module, action)
    if not can_access_resource(user, resource_owner_id, resource_country_id, scope):
        return AccessDecision(False, f"No tienes acceso a este recurso con scope '{scope.value}'")
    return AccessDecision(True)


def scope_filter(query, scope: Scope, user, owner_column, country_column):
    """Narrow a list query to the rows the given scope may see."""
    if scope is Scope.ALL:
        return query
    if scope is Scope.TEAM:
        country_id = getattr(user, 'country_id', None)
        if country_id is None:
            return query.filter(false())
        return query.filter(country_column == country_id)
    if scope is Scope.SELF:
        return query.filter(owner_column == user.id)
    return query.filter(false())


__all__ = [
    'PermissionPayloadError', 'Scope', 'SectionPermission', 'SectionNode', 'PermissionSet',
    'parse_permissions', 'is_valid_permissions_object', 'is_super_admin', 'effective_permissions',
    'get_scope', 'has_permission', 'describe_permissions', 'AccessDecision', 'can_access_resource',
    'check_permission', 'check_resource_access', 'scope_filter',
]
