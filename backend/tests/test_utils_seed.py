"""Test seeding utilities to reduce duplication.

Every helper commits immediately; all tests share one in-memory database, so
emails and country codes are made unique per call.
"""
import itertools
from typing import Any, Dict, Optional
from quantum_crm import get_db
from quantum_crm.models.authz import Country, User, UserPermission
from quantum_crm.models.lead import Lead

_seq = itertools.count(1)


def unique_email(prefix: str = 'user') -> str:
    return f"{prefix}{next(_seq)}@example.com"


def ensure_country(code: Optional[str] = None, name: Optional[str] = None) -> Country:
    session = get_db()
    code = code or f"C{next(_seq)}"
    c = session.query(Country).filter_by(code=code).one_or_none()
    if not c:
        c = Country(name=name or f"Country {code}", code=code)
        session.add(c); session.commit(); session.refresh(c)
    return c


def make_user(role: str = 'USER', country: Optional[Country] = None, permissions: Optional[Dict[str, Any]] = None,
              email: Optional[str] = None, password: str = 'pw', is_active: bool = True, is_deleted: bool = False) -> User:
    """Create a user; ``permissions`` adds an explicit UserPermission row (None keeps role defaults)."""
    session = get_db()
    email = email or unique_email(role.lower())
    u = User(name=email.split('@')[0], email=email, password_hash='', role=role,
             country_id=country.id if country else None, is_active=is_active, is_deleted=is_deleted)
    u.set_password(password)
    if permissions is not None:
        u.user_permission = UserPermission(permissions=permissions)
    session.add(u); session.commit(); session.refresh(u)
    return u


def make_lead(owner: Optional[User], country: Optional[Country], name: Optional[str] = None, status: str = 'NEW') -> Lead:
    session = get_db()
    lead = Lead(
        name=name or f"Lead {next(_seq)}",
        status=status,
        assigned_to_id=owner.id if owner else None,
        country_id=country.id if country else None,
        created_by=owner.id if owner else 0,
    )
    session.add(lead); session.commit(); session.refresh(lead)
    return lead


def login(client, user_or_email, password: str = 'pw') -> str:
    email = user_or_email if isinstance(user_or_email, str) else user_or_email.email
    resp = client.post('/api/auth/login', json={'email': email, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()['access_token']


def auth_headers(client, user_or_email, password: str = 'pw') -> Dict[str, str]:
    return {'Authorization': f'Bearer {login(client, user_or_email, password)}'}


__all__ = ['unique_email', 'ensure_country', 'make_user', 'make_lead', 'login', 'auth_headers']
