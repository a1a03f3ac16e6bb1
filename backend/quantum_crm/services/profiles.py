from __future__ import annotations
import logging
from typing import Optional

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from quantum_crm import get_db
from quantum_crm.config.cache import DEFAULT_FETCH_MAX_DELAY, FETCH_FAILURE_THRESHOLD, FETCH_RESET_TIMEOUT_SECONDS
from quantum_crm.constants.permissions import role_default_permissions
from quantum_crm.models.authz import User
from quantum_crm.services.cache import AppUser, PermissionCache, invalidate_user_caches
from quantum_crm.services.circuit_breaker import CircuitBreaker, CircuitOpenError, ExponentialBackoff

logger = logging.getLogger(__name__)

permission_fetch_breaker = CircuitBreaker(
    'permission-fetch',
    failure_threshold=FETCH_FAILURE_THRESHOLD,
    reset_timeout=FETCH_RESET_TIMEOUT_SECONDS,
)


class ReauthenticationRequired(Exception):
    """The profile could not be fetched; the user must sign in again."""


def app_user_from_model(user: User) -> AppUser:
    explicit = user.permissions
    return AppUser(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        country_id=user.country_id,
        is_active=bool(user.is_active),
        is_deleted=bool(user.is_deleted),
        permissions=explicit if explicit is not None else role_default_permissions(user.role),
        is_role_default=explicit is None,
    )


def fetch_app_user(user_id: int) -> Optional[AppUser]:
    session = get_db()
    try:
        user = session.execute(select(User).where(User.id==user_id)).scalar_one_or_none()
    except SQLAlchemyError:
        session.rollback()
        raise
    if user is None:
        return None
    return app_user_from_model(user)


def session_cache(session_key: str) -> PermissionCache:
    return PermissionCache(
        current_app.extensions['permission_cache_storage'],
        namespace=f"session:{session_key}",
        ttl_minutes=current_app.config['PERMISSION_CACHE_TTL_MINUTES'],
        retention_minutes=current_app.config['PERMISSION_CACHE_RETENTION_MINUTES'],
    )


def load_app_user(user_id: int, session_key: str) -> Optional[AppUser]:
    """Profile for the route gate: session cache first, database fetch on miss."""
    cache = session_cache(session_key)
    cached = cache.get_user_from_cache()
    if cached is not None and cached.id == user_id:
        return cached
    if cached is not None:
        logger.info("Cache hit for a different user (%s vs %s); refetching", cached.id, user_id)

    backoff = ExponentialBackoff(
        base_delay=current_app.config['PERMISSION_FETCH_BASE_DELAY'],
        max_delay=DEFAULT_FETCH_MAX_DELAY,
        max_retries=current_app.config['PERMISSION_FETCH_RETRIES'],
    )
    try:
        user = backoff.execute(lambda: permission_fetch_breaker.call(fetch_app_user, user_id), name='permission-fetch')
    except CircuitOpenError as e:
        cache.increment_cache_miss()
        raise ReauthenticationRequired(str(e)) from e
    except SQLAlchemyError as e:
        cache.increment_cache_miss()
        raise ReauthenticationRequired('profile fetch failed') from e

    if user is None:
        cache.clear_user()
        return None
    cache.update_cache(user)
    logger.debug("Profile cached for user %s: %s", user_id, cache.stats())
    return user


def clear_session_cache(session_key: str):
    session_cache(session_key).clear_user()


def invalidate_user_cache(user_id: int) -> int:
    return invalidate_user_caches(current_app.extensions['permission_cache_storage'], user_id)
