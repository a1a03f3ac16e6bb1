from flask import Blueprint, request, abort, jsonify, current_app
from flask_jwt_extended import (
    create_access_token, decode_token, get_jwt, jwt_required, set_access_cookies, unset_jwt_cookies,
    verify_jwt_in_request, get_jwt_identity,
)
from sqlalchemy import select
from quantum_crm import get_db
from quantum_crm.constants.permissions import role_default_permissions
from quantum_crm.decorators.auth import current_user, require_session
from quantum_crm.models.authz import User
from quantum_crm.services.permissions import describe_permissions, is_super_admin
from quantum_crm.services.profiles import app_user_from_model, clear_session_cache, session_cache
from quantum_crm.services.route_gate import evaluate_gate

auth_bp = Blueprint('auth', __name__)


def _profile(user: User) -> dict:
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'role': user.role,
        'country_id': user.country_id,
        'is_super_admin': is_super_admin(user),
    }


@auth_bp.post('/login')
def login():
    data = request.json or {}
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        abort(400, description='Email y contraseña requeridos')
    session = get_db()
    user = session.execute(select(User).where(User.email==email)).scalar_one_or_none()
    if not user or not user.verify_password(password):
        abort(401, description='Credenciales inválidas')
    if user.is_deleted or not user.is_active:
        abort(401, description='Usuario inactivo')
    claims = {'role': user.role, 'country_id': user.country_id}
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=claims)
    # Prime the session cache so the first page navigation skips the profile fetch
    session_cache(decode_token(token)['jti']).update_cache(app_user_from_model(user))
    current_app.logger.info('User %s signed in', user.id)
    resp = jsonify({'success': True, 'access_token': token, 'user': _profile(user)})
    set_access_cookies(resp, token)
    return resp


@auth_bp.post('/logout')
@jwt_required()
def logout():
    jti = get_jwt()['jti']
    clear_session_cache(jti)
    resp = jsonify({'success': True})
    unset_jwt_cookies(resp)
    return resp


@auth_bp.get('/me')
@require_session
def me():
    user = current_user()
    body = _profile(user)
    body['permissions'] = describe_permissions(user)
    return {'success': True, 'data': body}


@auth_bp.get('/user-permissions')
@require_session
def user_permissions():
    user = current_user()
    explicit = user.permissions
    return {
        'success': True,
        'permissions': explicit if explicit is not None else role_default_permissions(user.role),
        'isRoleDefault': explicit is None,
    }


@auth_bp.post('/check-access')
def check_access():
    data = request.json or {}
    path = data.get('path')
    if not isinstance(path, str) or not path.startswith('/'):
        abort(400, description='Ruta inválida')
    verify_jwt_in_request(optional=True)
    identity = get_jwt_identity()
    user = get_db().get(User, int(identity)) if identity is not None else None
    decision = evaluate_gate(path, user)
    return {'hasAccess': decision.allowed, 'permission': decision.permission_key}
