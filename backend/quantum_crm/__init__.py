from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import os

from .config.cache import DEFAULT_TTL_MINUTES, DEFAULT_RETENTION_MINUTES, DEFAULT_FETCH_RETRIES, DEFAULT_FETCH_BASE_DELAY

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()

UNAUTHENTICATED_MESSAGE = 'Usuario no autenticado'


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['JWT_TOKEN_LOCATION'] = ['headers', 'cookies']
    app.config['JWT_COOKIE_SECURE'] = os.getenv('JWT_COOKIE_SECURE', '0') == '1'
    app.config['PERMISSION_CACHE_URL'] = os.getenv('PERMISSION_CACHE_URL', '')
    app.config['PERMISSION_CACHE_TTL_MINUTES'] = int(os.getenv('PERMISSION_CACHE_TTL_MINUTES', DEFAULT_TTL_MINUTES))
    app.config['PERMISSION_CACHE_RETENTION_MINUTES'] = int(os.getenv('PERMISSION_CACHE_RETENTION_MINUTES', DEFAULT_RETENTION_MINUTES))
    app.config['PERMISSION_FETCH_RETRIES'] = int(os.getenv('PERMISSION_FETCH_RETRIES', DEFAULT_FETCH_RETRIES))
    app.config['PERMISSION_FETCH_BASE_DELAY'] = float(os.getenv('PERMISSION_FETCH_BASE_DELAY', DEFAULT_FETCH_BASE_DELAY))

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)
    _register_jwt_callbacks()

    from .services.cache import build_storage
    app.extensions['permission_cache_storage'] = build_storage(app.config['PERMISSION_CACHE_URL'])

    from .routes.auth import auth_bp
    from .routes.users import users_bp
    from .routes.leads import leads_bp
    from .routes.pages import pages_bp
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(users_bp, url_prefix='/api/users')
    app.register_blueprint(leads_bp, url_prefix='/api/leads')
    app.register_blueprint(pages_bp)

    # Page navigations are gated here; /api routes check permissions in their handlers
    from .services.route_gate import register_route_gate
    register_route_gate(app)

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    # Unified error handler producing the { success, error } JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'success': False,
                'error': e.description,
                'status': e.code,
            }
            return payload, e.code
        app.logger.exception('Unhandled exception')
        return {
            'success': False,
            'error': 'Error interno del servidor',
            'status': 500,
        }, 500

    return app


def _register_jwt_callbacks():
    @jwt.unauthorized_loader
    def _missing_token(reason):  # type: ignore
        return {'success': False, 'error': UNAUTHENTICATED_MESSAGE, 'status': 401}, 401

    @jwt.invalid_token_loader
    def _invalid_token(reason):  # type: ignore
        return {'success': False, 'error': UNAUTHENTICATED_MESSAGE, 'status': 401}, 401

    @jwt.expired_token_loader
    def _expired_token(jwt_header, jwt_payload):  # type: ignore
        return {'success': False, 'error': 'Sesión expirada', 'status': 401}, 401


def get_db():
    return SessionLocal()
