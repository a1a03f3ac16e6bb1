from datetime import datetime, timezone
from flask import Blueprint, request, abort, current_app
from sqlalchemy import select
from quantum_crm import get_db
from quantum_crm.config.pagination import normalize_pagination, build_list_payload
from quantum_crm.constants.permissions import Role, role_default_permissions
from quantum_crm.decorators.activity import activity_log
from quantum_crm.decorators.auth import require_permission, current_user, enforce_resource_access
from quantum_crm.models.authz import User, UserPermission, Country
from quantum_crm.services.activity import add_activity
from quantum_crm.services.permissions import (
    PermissionPayloadError, get_scope, is_super_admin, parse_permissions, scope_filter,
)
from quantum_crm.services.profiles import invalidate_user_cache

users_bp = Blueprint('users', __name__)


def _serialize(u: User) -> dict:
    return {
        'id': u.id,
        'name': u.name,
        'email': u.email,
        'role': u.role,
        'country_id': u.country_id,
        'is_active': u.is_active,
        'has_custom_permissions': u.user_permission is not None,
    }


def _get_target(user_id: int) -> User:
    target = get_db().get(User, user_id)
    if target is None or target.is_deleted:
        abort(404, description='Usuario objetivo no encontrado')
    return target


def _protect_super_admin(target: User, message: str):
    if is_super_admin(target) and not is_super_admin(current_user()):
        abort(403, description=message)


def _parse_role(value) -> Role:
    role = Role.parse(value)
    if role is None:
        abort(400, description='Rol inválido')
    if role is Role.SUPERADMIN and not is_super_admin(current_user()):
        abort(403, description='Solo un Super Administrador puede asignar ese rol')
    return role


def _role_snapshot(args, kwargs):
    target = get_db().get(User, kwargs['user_id'])
    return {'role': target.role} if target else {}


@users_bp.get('')
@require_permission('users', 'view')
def list_users():
    user = current_user()
    session = get_db()
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    q = session.query(User).filter(User.is_deleted.is_(False))
    q = scope_filter(q, get_scope(user, 'users', 'view'), user, User.id, User.country_id)
    total = q.count()
    rows = q.order_by(User.id.asc()).offset(offset).limit(limit).all()
    return build_list_payload([_serialize(u) for u in rows], total, limit, offset)


@users_bp.post('')
@require_permission('users', 'create')
@activity_log('USER', 'CREATE', entity_id_key='id', meta_keys=['email', 'role'],
              description=lambda data, a, kw: f"Usuario {data.get('name')} creado")
def create_user():
    data = request.json or {}
    name = data.get('name'); email = data.get('email'); password = data.get('password')
    if not name or not email or not password:
        abort(400, description='name, email y password son requeridos')
    role = _parse_role(data.get('role', Role.USER.value))
    country_id = data.get('country_id')
    session = get_db()
    if country_id is not None and session.get(Country, country_id) is None:
        abort(400, description='País inválido')
    enforce_resource_access('users', 'create', None, country_id)
    if session.execute(select(User).where(User.email==email)).scalar_one_or_none():
        abort(409, description='El email ya está registrado')
    u = User(name=name, email=email, password_hash='', role=role.value, country_id=country_id)
    u.set_password(password)
    session.add(u)
    session.commit()
    return {'success': True, 'data': _serialize(u)}, 201


@users_bp.put('/<int:user_id>/role')
@require_permission('users', 'edit')
@activity_log('USER', 'UPDATE', entity_id_arg='user_id', diff_keys=['role'], pre_fetch=_role_snapshot,
              description=lambda data, a, kw: f"Rol de usuario {data.get('name')} actualizado")
def update_user_role(user_id: int):
    target = _get_target(user_id)
    enforce_resource_access('users', 'edit', target.id, target.country_id)
    _protect_super_admin(target, 'No puedes modificar el rol de un Super Administrador')
    role = _parse_role((request.json or {}).get('role'))
    target.role = role.value
    get_db().commit()
    invalidate_user_cache(target.id)
    return {'success': True, 'data': _serialize(target)}


@users_bp.delete('/<int:user_id>')
@require_permission('users', 'delete')
@activity_log('USER', 'DELETE', entity_id_arg='user_id',
              description=lambda data, a, kw: f"Usuario {data.get('name')} eliminado")
def delete_user(user_id: int):
    if user_id == current_user().id:
        abort(400, description='No puedes eliminar tu propio usuario')
    target = _get_target(user_id)
    enforce_resource_access('users', 'delete', target.id, target.country_id)
    _protect_super_admin(target, 'No puedes eliminar a un Super Administrador')
    target.is_deleted = True
    target.deleted_at = datetime.now(timezone.utc)
    get_db().commit()
    invalidate_user_cache(target.id)
    return {'success': True, 'data': {'id': target.id, 'name': target.name}}


@users_bp.get('/<int:user_id>/permissions')
@require_permission('users', 'view')
def get_user_permissions(user_id: int):
    target = _get_target(user_id)
    enforce_resource_access('users', 'view', target.id, target.country_id)
    explicit = target.permissions
    if explicit is not None:
        return {'success': True, 'permissions': explicit, 'isRoleDefault': False}
    defaults = role_default_permissions(target.role)
    if defaults is None:
        abort(404, description='No se encontraron permisos para el usuario')
    return {'success': True, 'permissions': defaults, 'isRoleDefault': True}


@users_bp.put('/<int:user_id>/permissions')
@require_permission('users', 'edit')
def update_user_permissions(user_id: int):
    data = request.get_json(silent=True)
    reset = isinstance(data, dict) and data.get('resetToRole') is True
    try:
        if not isinstance(data, dict) or not isinstance(data.get('resetToRole', False), bool):
            raise PermissionPayloadError('body must be an object with permissions and optional resetToRole')
        if not reset:
            if 'permissions' not in data:
                raise PermissionPayloadError('permissions required')
            parse_permissions(data['permissions'])
    except PermissionPayloadError as e:
        current_app.logger.info('Rejected permissions payload for user %s: %s', user_id, e)
        return {'success': False, 'error': 'Datos inválidos', 'details': str(e), 'status': 400}, 400

    target = _get_target(user_id)
    enforce_resource_access('users', 'edit', target.id, target.country_id)
    _protect_super_admin(target, 'No puedes modificar los permisos de un Super Administrador')

    session = get_db()
    if reset:
        # delete-orphan cascade drops the row; resolution falls back to the role defaults
        target.user_permission = None
        description = f'Permisos de usuario {target.name} restablecidos a los del rol'
    else:
        if target.user_permission is None:
            target.user_permission = UserPermission(permissions=data['permissions'])
        else:
            target.user_permission.permissions = data['permissions']
        description = f'Permisos de usuario {target.name} actualizados'
    add_activity('USER_PERMISSION', target.id, 'RESET' if reset else 'UPDATE', description)
    session.commit()
    invalidate_user_cache(target.id)

    explicit = target.permissions
    return {
        'success': True,
        'message': 'Permisos actualizados correctamente',
        'permissions': explicit if explicit is not None else role_default_permissions(target.role),
        'isRoleDefault': explicit is None,
    }
