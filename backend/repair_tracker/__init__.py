from flask import Flask, request, make_response, jsonify
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.errors import RateLimitExceeded
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import logging
import math
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def _rate_limit_key() -> str:
    from .services.policy import client_identity
    return client_identity()


# Strategy, storage and header injection come from the RATELIMIT_* config keys
limiter = Limiter(key_func=_rate_limit_key)

# Blueprints whose callers are customers; their errors never expose internals
PUBLIC_BLUEPRINTS = {'public'}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def load_config() -> Dict[str, Any]:
    """Settings from the environment (.env honoured), before any create_app overrides."""
    return {
        'DATABASE_URL': os.getenv('DATABASE_URL', 'sqlite:///dev.db'),
        'JWT_SECRET_KEY': os.getenv('JWT_SECRET_KEY', 'dev-secret'),
        'STORE_TIMEOUT_SECONDS': float(os.getenv('STORE_TIMEOUT_SECONDS', '5')),
        'LOCK_TIMEOUT_SECONDS': float(os.getenv('LOCK_TIMEOUT_SECONDS', '5')),
        'DASHBOARD_RATE_LIMIT': os.getenv('DASHBOARD_RATE_LIMIT', '1 per second'),
        'RATELIMIT_STRATEGY': os.getenv('RATELIMIT_STRATEGY', 'moving-window'),
        'RATELIMIT_STORAGE_URI': os.getenv('RATELIMIT_STORAGE_URI', 'memory://'),
        'RATELIMIT_HEADERS_ENABLED': True,
        'VIEW_CACHE_TTL_SECONDS': float(os.getenv('VIEW_CACHE_TTL_SECONDS', '30')),
        'SMTP_HOST': os.getenv('SMTP_HOST') or None,
        'SMTP_PORT': int(os.getenv('SMTP_PORT', '587')),
        'SMTP_USERNAME': os.getenv('SMTP_USERNAME') or None,
        'SMTP_PASSWORD': os.getenv('SMTP_PASSWORD') or None,
        'SMTP_TLS': _env_bool('SMTP_TLS', True),
        'MAIL_FROM': os.getenv('MAIL_FROM') or None,
        'NOTIFY_TIMEOUT_SECONDS': float(os.getenv('NOTIFY_TIMEOUT_SECONDS', '5')),
        'LOG_LEVEL': os.getenv('LOG_LEVEL', 'INFO'),
        'NOTIFIER': None,
        'CLOCK': None,
    }


def engine_options(db_url: str, store_timeout: float) -> Dict[str, Any]:
    """create_engine keyword arguments that bound connect, checkout and statement time."""
    if db_url.startswith('sqlite'):
        opts: Dict[str, Any] = {'connect_args': {"check_same_thread": False, "timeout": store_timeout}}
        if db_url.endswith(':memory:'):
            # Ensure a single shared in-memory SQLite database across all sessions
            opts['poolclass'] = StaticPool
        return opts
    opts = {'pool_timeout': store_timeout, 'pool_pre_ping': True}
    seconds = max(1, int(math.ceil(store_timeout)))
    if db_url.startswith('postgresql'):
        opts['connect_args'] = {
            'connect_timeout': seconds,
            'options': f"-c statement_timeout={int(store_timeout * 1000)}",
        }
    elif db_url.startswith('mysql'):
        opts['connect_args'] = {'connect_timeout': seconds, 'read_timeout': seconds, 'write_timeout': seconds}
    return opts


def _make_engine(db_url: str, store_timeout: float):
    return create_engine(db_url, echo=False, future=True, **engine_options(db_url, store_timeout))


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config.update(load_config())
    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    level = logging.getLevelName(str(app.config['LOG_LEVEL']).upper())
    if isinstance(level, int):
        app.logger.setLevel(level)
        logging.getLogger('repair_tracker').setLevel(level)

    # Database
    db_engine = _make_engine(app.config['DATABASE_URL'], float(app.config['STORE_TIMEOUT_SECONDS']))
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)
    limiter.init_app(app)

    # Long-lived collaborators shared by every request of this app
    from .services.consistency import RepairViews, ViewCache
    from .services.locks import KeyedLocks
    from .services.notifier import build_notifier
    from .services.store import utcnow
    app.extensions['repair_clock'] = app.config.get('CLOCK') or utcnow
    app.extensions['notifier'] = build_notifier(app.config)
    app.extensions['repair_views'] = RepairViews(ViewCache(ttl=float(app.config['VIEW_CACHE_TTL_SECONDS'])))
    app.extensions['repair_locks'] = KeyedLocks(timeout=float(app.config['LOCK_TIMEOUT_SECONDS']))

    from .routes.auth import auth_bp
    from .routes.repairs import rpr_bp
    from .routes.public import public_bp
    from .routes.dashboard import dash_bp
    from .routes.customers import cus_bp
    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(rpr_bp, url_prefix='/repairs')
    app.register_blueprint(public_bp)
    app.register_blueprint(dash_bp)
    app.register_blueprint(cus_bp, url_prefix='/customers')

    @app.teardown_appcontext
    def remove_session(exc=None):
        SessionLocal.remove()

    from .utils.listing import no_cache
    from .services.serializers import iso

    @app.route('/health-check', methods=['GET', 'HEAD'])
    def health():
        body = {'status': 'ok', 'timestamp': iso(app.extensions['repair_clock']())}
        status = 200
        try:
            get_db().execute(text('SELECT 1'))
        except SQLAlchemyError:
            app.logger.exception('Health check could not reach the database')
            body['status'] = 'degraded'
            status = 503
        return no_cache(make_response(jsonify(body), status))

    from .errors import RepairTrackerError, ValidationError, RateLimited
    from .utils.responses import error_body

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, RateLimitExceeded):
            # limiter headers (X-RateLimit-*, Retry-After) are added by its after_request hook
            app.logger.warning('Rate limit %s exceeded on %s %s', e.description, request.method, request.path)
            e = RateLimited(e.description)
        if isinstance(e, RepairTrackerError):
            message = e.message
            if request.blueprint in PUBLIC_BLUEPRINTS and not isinstance(e, ValidationError):
                message = e.public_message
            if e.status_code >= 500:
                app.logger.error('%s on %s %s: %s', e.code, request.method, request.path, e.message)
            return make_response(jsonify(error_body(message, e.code)), e.status_code)
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    # OpenAPI spec route (minimal)
    from .openapi import build_openapi_spec

    @app.route('/openapi.json')
    def openapi_spec():
        return build_openapi_spec()

    return app


def get_db():
    return SessionLocal()
