from quantum_crm import get_db
from quantum_crm.models.activity import ActivityLog
from quantum_crm.models.authz import User, UserPermission
from tests.test_utils_seed import auth_headers, ensure_country, make_user


def _activity(entity_type, entity_id):
    return (get_db().query(ActivityLog)
            .filter_by(entity_type=entity_type, entity_id=str(entity_id))
            .order_by(ActivityLog.id.asc()).all())


def test_get_permissions_reports_role_default_then_custom(client):
    country = ensure_country()
    admin = make_user('ADMIN', country)
    target = make_user('SELLER', country)
    headers = auth_headers(client, admin)
    resp = client.get(f'/api/users/{target.id}/permissions', headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['isRoleDefault'] is True
    assert body['permissions']['sections']['leads']['view'] == 'self'

    payload = {'sections': {'leads': {'view': 'team', 'edit': 'self'}}}
    put = client.put(f'/api/users/{target.id}/permissions', headers=headers, json={'permissions': payload})
    assert put.status_code == 200, put.get_json()
    assert put.get_json()['message'] == 'Permisos actualizados correctamente'
    body = client.get(f'/api/users/{target.id}/permissions', headers=headers).get_json()
    assert body == {'success': True, 'permissions': payload, 'isRoleDefault': False}


def test_put_is_full_replace_and_logged(client):
    admin = make_user('SUPERADMIN')
    target = make_user('USER', permissions={'sections': {'leads': {'view': 'all'}, 'tasks': {'view': 'all'}}})
    headers = auth_headers(client, admin)
    resp = client.put(f'/api/users/{target.id}/permissions', headers=headers,
                      json={'permissions': {'sections': {'tasks': {'view': 'self'}}}})
    assert resp.status_code == 200
    row = get_db().query(UserPermission).filter_by(user_id=target.id).one()
    assert row.permissions == {'sections': {'tasks': {'view': 'self'}}}
    logs = _activity('USER_PERMISSION', target.id)
    assert [l.action for l in logs] == ['UPDATE']
    assert logs[0].performed_by_id == admin.id
    assert 'actualizados' in logs[0].description


def test_reset_to_role_drops_custom_permissions(client):
    admin = make_user('SUPERADMIN')
    target = make_user('SELLER', permissions={'sections': {'reports': {'view': 'all'}}})
    headers = auth_headers(client, admin)
    resp = client.put(f'/api/users/{target.id}/permissions', headers=headers,
                      json={'permissions': {}, 'resetToRole': True})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['isRoleDefault'] is True
    assert 'reports' not in body['permissions']['sections']
    assert get_db().query(UserPermission).filter_by(user_id=target.id).one_or_none() is None
    assert [l.action for l in _activity('USER_PERMISSION', target.id)] == ['RESET']


def test_malformed_payload_is_rejected_not_coerced(client):
    admin = make_user('SUPERADMIN')
    target = make_user('SELLER')
    headers = auth_headers(client, admin)
    for body in (
        {'permissions': {'sections': {'leads': {'view': 'everyone'}}}},
        {'permissions': {'leads': {'edit': 'self'}}},
        {'permissions': 'nope'},
        {'resetToRole': 'yes', 'permissions': {}},
        {},
    ):
        resp = client.put(f'/api/users/{target.id}/permissions', headers=headers, json=body)
        assert resp.status_code == 400, body
        out = resp.get_json()
        assert out['success'] is False
        assert out['error'] == 'Datos inválidos'
    assert get_db().query(UserPermission).filter_by(user_id=target.id).one_or_none() is None


def test_permission_endpoints_require_users_permissions(client):
    country = ensure_country()
    seller = make_user('SELLER', country)
    target = make_user('USER', country)
    headers = auth_headers(client, seller)
    get = client.get(f'/api/users/{target.id}/permissions', headers=headers)
    assert get.status_code == 403
    assert get.get_json()['error'] == 'No tienes permiso para view en users'
    put = client.put(f'/api/users/{target.id}/permissions', headers=headers, json={'permissions': {}})
    assert put.status_code == 403
    assert put.get_json()['error'] == 'No tienes permiso para edit en users'


def test_country_admin_is_limited_to_own_country(client):
    home = ensure_country(); away = ensure_country()
    cadmin = make_user('COUNTRYADMIN', home)
    local = make_user('SELLER', home)
    foreign = make_user('SELLER', away)
    headers = auth_headers(client, cadmin)
    ok = client.put(f'/api/users/{local.id}/permissions', headers=headers,
                    json={'permissions': {'sections': {'leads': {'view': 'self'}}}})
    assert ok.status_code == 200
    denied = client.put(f'/api/users/{foreign.id}/permissions', headers=headers,
                        json={'permissions': {'sections': {'leads': {'view': 'self'}}}})
    assert denied.status_code == 403
    assert denied.get_json()['error'] == "No tienes acceso a este recurso con scope 'team'"


def test_only_super_admin_edits_super_admin_permissions(client):
    admin = make_user('ADMIN')
    root = make_user('SUPERADMIN')
    resp = client.put(f'/api/users/{root.id}/permissions', headers=auth_headers(client, admin),
                      json={'permissions': {'sections': {}}})
    assert resp.status_code == 403


def test_unknown_target_is_404(client):
    headers = auth_headers(client, make_user('SUPERADMIN'))
    resp = client.get('/api/users/999999/permissions', headers=headers)
    assert resp.status_code == 404
    assert resp.get_json()['error'] == 'Usuario objetivo no encontrado'


def test_list_users_is_scope_filtered(client):
    home = ensure_country(); away = ensure_country()
    manager = make_user('MANAGER', home)
    local = make_user('SELLER', home)
    foreign = make_user('SELLER', away)
    resp = client.get('/api/users?limit=200', headers=auth_headers(client, manager))
    assert resp.status_code == 200
    body = resp.get_json()
    ids = {u['id'] for u in body['data']}
    assert {manager.id, local.id} <= ids
    assert foreign.id not in ids
    assert body['pagination']['returned'] == len(body['data'])


def test_create_user_and_role_change_are_logged(client):
    country = ensure_country()
    admin = make_user('ADMIN', country)
    headers = auth_headers(client, admin)
    resp = client.post('/api/users', headers=headers, json={
        'name': 'Nuevo', 'email': 'nuevo.vendedor@example.com', 'password': 'pw', 'role': 'Vendedor', 'country_id': country.id,
    })
    assert resp.status_code == 201, resp.get_json()
    created = resp.get_json()['data']
    assert created['role'] == 'SELLER'
    dup = client.post('/api/users', headers=headers, json={'name': 'X', 'email': 'nuevo.vendedor@example.com', 'password': 'pw'})
    assert dup.status_code == 409

    role = client.put(f"/api/users/{created['id']}/role", headers=headers, json={'role': 'MANAGER'})
    assert role.status_code == 200
    assert get_db().get(User, created['id']).role == 'MANAGER'
    logs = _activity('USER', created['id'])
    assert [l.action for l in logs] == ['CREATE', 'UPDATE']
    assert logs[1].meta['changes'] == {'role': {'before': 'SELLER', 'after': 'MANAGER'}}


def test_role_validation(client):
    admin = make_user('ADMIN')
    target = make_user('USER')
    headers = auth_headers(client, admin)
    bad = client.put(f'/api/users/{target.id}/role', headers=headers, json={'role': 'Invitado'})
    assert bad.status_code == 400
    escalate = client.put(f'/api/users/{target.id}/role', headers=headers, json={'role': 'SUPERADMIN'})
    assert escalate.status_code == 403
    assert get_db().get(User, target.id).role == 'USER'


def test_soft_delete(client):
    admin = make_user('ADMIN')
    target = make_user('USER')
    headers = auth_headers(client, admin)
    assert client.delete(f'/api/users/{admin.id}', headers=headers).status_code == 400
    resp = client.delete(f'/api/users/{target.id}', headers=headers)
    assert resp.status_code == 200
    row = get_db().get(User, target.id)
    assert row.is_deleted is True and row.deleted_at is not None
    assert client.delete(f'/api/users/{target.id}', headers=headers).status_code == 404
    assert [l.action for l in _activity('USER', target.id)] == ['DELETE']


def test_only_super_admin_changes_role_or_deletes_super_admin(client):
    admin = make_user('ADMIN')
    root = make_user('SUPERADMIN')
    headers = auth_headers(client, admin)
    demote = client.put(f'/api/users/{root.id}/role', headers=headers, json={'role': 'USER'})
    assert demote.status_code == 403
    assert demote.get_json()['error'] == 'No puedes modificar el rol de un Super Administrador'
    assert get_db().get(User, root.id).role == 'SUPERADMIN'
    delete = client.delete(f'/api/users/{root.id}', headers=headers)
    assert delete.status_code == 403
    assert delete.get_json()['error'] == 'No puedes eliminar a un Super Administrador'
    assert get_db().get(User, root.id).is_deleted is False
    assert _activity('USER', root.id) == []

    other_root = make_user('SUPERADMIN')
    root_headers = auth_headers(client, other_root)
    assert client.put(f'/api/users/{root.id}/role', headers=root_headers, json={'role': 'ADMIN'}).status_code == 200
    assert get_db().get(User, root.id).role == 'ADMIN'


def test_country_admin_cannot_create_user_without_country(client):
    cadmin = make_user('COUNTRYADMIN', ensure_country())
    resp = client.post('/api/users', headers=auth_headers(client, cadmin), json={
        'name': 'Sin país', 'email': 'sin.pais@example.com', 'password': 'pw',
    })
    assert resp.status_code == 403
    assert resp.get_json()['error'] == "No tienes acceso a este recurso con scope 'team'"
    assert get_db().query(User).filter_by(email='sin.pais@example.com').one_or_none() is None
