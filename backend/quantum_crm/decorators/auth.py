from functools import wraps
from flask import abort, g
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from quantum_crm import UNAUTHENTICATED_MESSAGE, get_db
from quantum_crm.models.authz import User
from quantum_crm.services.permissions import check_permission, check_resource_access


def load_current_user() -> User:
    """Verify the request JWT and load the caller from the database (never from the cache)."""
    verify_jwt_in_request()
    user = get_db().get(User, int(get_jwt_identity()))
    if user is None or user.is_deleted or not user.is_active:
        abort(401, description=UNAUTHENTICATED_MESSAGE)
    g.current_user = user
    return user


def current_user() -> User:
    user = g.get('current_user')
    if user is None:
        user = load_current_user()
    return user


def require_session(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        load_current_user()
        return fn(*args, **kwargs)
    return wrapper


def require_permission(module: str, action: str = 'view'):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = load_current_user()
            decision = check_permission(user, module, action)
            if not decision.allowed:
                abort(403, description=decision.reason)
            return fn(*args, **kwargs)
        return wrapper
    return outer


def enforce_resource_access(module: str, action: str, owner_id, country_id):
    """Resource-level check for the current caller; aborts 403 with the guard's reason."""
    decision = check_resource_access(current_user(), module, action, owner_id, country_id)
    if not decision.allowed:
        abort(403, description=decision.reason)
