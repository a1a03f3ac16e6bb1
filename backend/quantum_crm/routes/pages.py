"""HTML shells for the page routes. Access is decided by the route gate before these run."""
from flask import Blueprint, request
from markupsafe import escape

pages_bp = Blueprint('pages', __name__)

PAGE_TITLES = {
    'dashboard': 'Dashboard',
    'leads': 'Leads',
    'sales': 'Ventas',
    'tasks': 'Tareas',
    'quotations': 'Cotizaciones',
    'reservations': 'Reservas',
    'reports': 'Reportes',
    'users': 'Usuarios',
    'settings': 'Configuración',
    'admin': 'Administración',
}


def _page(title: str, body: str = ''):
    html = (
        '<!doctype html><html lang="es"><head><meta charset="utf-8">'
        f'<title>{escape(title)} | Quantum CRM</title></head>'
        f'<body><main data-path="{escape(request.path)}"><h1>{escape(title)}</h1>{body}</main></body></html>'
    )
    return html, 200, {'Content-Type': 'text/html; charset=utf-8'}


@pages_bp.get('/')
def home():
    return _page('Quantum CRM')


@pages_bp.get('/sign-in')
def sign_in():
    note = ''
    if request.args.get('reauth'):
        note = '<p>Tu sesión necesita verificarse de nuevo. Inicia sesión para continuar.</p>'
    return _page('Iniciar sesión', note)


@pages_bp.get('/sign-up')
def sign_up():
    return _page('Registro')


@pages_bp.get('/forgot-password')
def forgot_password():
    return _page('Recuperar contraseña')


@pages_bp.get('/reset-password')
def reset_password():
    return _page('Restablecer contraseña')


@pages_bp.get('/access-denied')
def access_denied():
    return _page('Acceso denegado', '<p>No tienes permiso para ver esta página.</p>')


@pages_bp.get('/<any(dashboard, leads, sales, tasks, quotations, reservations, reports, users, settings):section>')
@pages_bp.get('/<any(leads, sales, tasks, quotations, reservations, users):section>/<int:item_id>')
def section_page(section: str, item_id: int = None):
    title = PAGE_TITLES[section]
    if item_id is not None:
        title = f'{title} #{item_id}'
    return _page(title)


@pages_bp.get('/admin')
@pages_bp.get('/admin/<path:subpath>')
def admin_page(subpath: str = ''):
    title = PAGE_TITLES['admin']
    if subpath:
        title = f"{title} / {subpath.split('/')[0]}"
    return _page(title)
