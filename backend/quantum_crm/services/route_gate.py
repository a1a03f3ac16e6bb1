"""Route gate for page navigations.

Every gated page prefix is listed in PROTECTED_ROUTES with the permission key it
requires (``view`` action). The key for a path is the entry with the longest prefix
that matches on a segment boundary; there is no key synthesis from path segments.
Protected paths without an entry only require a signed-in, active user.

API routes (``/api/...``) are not gated here: each handler checks permissions itself.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from flask import redirect, request
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from quantum_crm.services.permissions import has_permission

logger = logging.getLogger(__name__)

SIGN_IN_PATH = '/sign-in'
ACCESS_DENIED_PATH = '/access-denied'
API_PREFIX = '/api/'

PUBLIC_PATHS = frozenset({
    '/',
    SIGN_IN_PATH,
    '/sign-up',
    '/forgot-password',
    '/reset-password',
    ACCESS_DENIED_PATH,
    '/healthz',
})
PUBLIC_PREFIXES = ('/static/',)

PROTECTED_ROUTES = {
    '/dashboard': 'dashboard',
    '/leads': 'leads',
    '/sales': 'sales',
    '/tasks': 'tasks',
    '/quotations': 'quotations',
    '/reservations': 'reservations',
    '/reports': 'reports',
    '/users': 'users',
    '/settings': 'settings',
    '/admin': 'admin',
    '/admin/roles': 'admin.roles',
    '/admin/products': 'admin.products',
    '/admin/countries': 'admin.countries',
    # lead catalogs (sources, statuses, closure reasons) share one permission entry
    '/admin/leads': 'admin.leads-settings',
}


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    redirect_to: Optional[str] = None
    permission_key: Optional[str] = None


def _normalize(path: str) -> str:
    path = path.split('?', 1)[0].split('#', 1)[0]
    if len(path) > 1:
        path = path.rstrip('/')
    return path or '/'


def is_api_path(path: str) -> bool:
    return _normalize(path) == API_PREFIX.rstrip('/') or path.startswith(API_PREFIX)


def is_public_path(path: str) -> bool:
    path = _normalize(path)
    return path in PUBLIC_PATHS or any(path.startswith(p) for p in PUBLIC_PREFIXES)


def resolve_required_permission(path: str) -> Optional[str]:
    """Longest segment-aligned prefix match over PROTECTED_ROUTES."""
    path = _normalize(path)
    best = None
    for prefix in PROTECTED_ROUTES:
        if path == prefix or path.startswith(prefix + '/'):
            if best is None or len(prefix) > len(best):
                best = prefix
    return PROTECTED_ROUTES[best] if best else None


def evaluate_gate(path: str, user) -> GateDecision:
    if is_api_path(path) or is_public_path(path):
        return GateDecision(True)
    if user is None or not getattr(user, 'is_active', False) or getattr(user, 'is_deleted', False):
        return GateDecision(False, f"{SIGN_IN_PATH}?next={quote(_normalize(path))}")
    key = resolve_required_permission(path)
    if key is not None and not has_permission(user, key, 'view'):
        logger.info("Route gate denied %s (requires %s.view) for user %s", path, key, getattr(user, 'id', None))
        return GateDecision(False, ACCESS_DENIED_PATH, key)
    return GateDecision(True, permission_key=key)


def _current_session():
    """Return (user_id, session_key) from the request JWT, or (None, None)."""
    try:
        verify_jwt_in_request(optional=True)
        identity = get_jwt_identity()
    except (JWTExtendedException, PyJWTError) as e:
        logger.info("Ignoring unusable session token on %s: %s", request.path, e)
        return None, None
    if identity is None:
        return None, None
    return int(identity), get_jwt().get('jti')


def register_route_gate(app):
    from quantum_crm.services.profiles import load_app_user, ReauthenticationRequired

    @app.before_request
    def _route_gate():  # type: ignore
        path = request.path
        if is_api_path(path) or is_public_path(path):
            return None
        user_id, session_key = _current_session()
        user = None
        if user_id is not None:
            try:
                user = load_app_user(user_id, session_key)
            except ReauthenticationRequired as e:
                app.logger.warning('Profile unavailable for user %s: %s', user_id, e)
                return redirect(f"{SIGN_IN_PATH}?reauth=1")
        decision = evaluate_gate(path, user)
        if decision.allowed:
            return None
        return redirect(decision.redirect_to)


__all__ = [
    'PROTECTED_ROUTES', 'PUBLIC_PATHS', 'GateDecision', 'is_api_path', 'is_public_path',
    'resolve_required_permission', 'evaluate_gate', 'register_route_gate',
]
