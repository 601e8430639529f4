import os
import logging
from flask import Flask, request, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_cors import CORS
from dotenv import load_dotenv

load_dotenv()

db = SQLAlchemy()
migrate = Migrate()

logger = logging.getLogger(__name__)


def _engine_options(database_url):
    timeout_ms = int(os.getenv('DB_STATEMENT_TIMEOUT_MS', 5000))
    options = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }
    if database_url.startswith('postgresql'):
        # Every store call is bounded; callers decide whether to fail open.
        options['pool_timeout'] = max(1, timeout_ms // 1000)
        options['connect_args'] = {
            'options': f'-c statement_timeout={timeout_ms}',
            'connect_timeout': max(1, timeout_ms // 1000),
        }
    elif database_url.startswith('sqlite'):
        options['connect_args'] = {'timeout': max(1, timeout_ms // 1000)}
    return options


def create_app(test_config=None):
    app = Flask(__name__)

    is_production = os.getenv('FLASK_ENV') == 'production'
    test_config = dict(test_config or {})

    secret_key = test_config.get('SECRET_KEY') or os.getenv('SECRET_KEY')
    if not secret_key:
        raise RuntimeError('SECRET_KEY environment variable is required')
    app.config['SECRET_KEY'] = secret_key

    jwt_secret = test_config.get('JWT_SECRET_KEY') or os.getenv('JWT_SECRET_KEY')
    if not jwt_secret:
        raise RuntimeError('JWT_SECRET_KEY environment variable is required')
    app.config['JWT_SECRET_KEY'] = jwt_secret

    database_url = test_config.get('SQLALCHEMY_DATABASE_URI') or os.getenv('DATABASE_URL')
    if not database_url:
        raise RuntimeError('DATABASE_URL environment variable is required')

    # Upsert and partial-index semantics are only guaranteed on PostgreSQL
    if is_production and not database_url.startswith('postgresql'):
        raise RuntimeError(
            'Production deployments require PostgreSQL. '
            'DATABASE_URL must start with postgresql://'
        )

    app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = _engine_options(database_url)
    app.config['MAX_CONTENT_LENGTH'] = 1 * 1024 * 1024
    app.config['AUDIT_LOG_FILE'] = os.getenv('AUDIT_LOG_FILE', 'logs/audit.log')

    from tenantguard.services.spike_config import load_spike_config_from_env
    app.config['SPIKE_DETECTION_CONFIG'] = load_spike_config_from_env()
    app.config['SPIKE_CONFIG_CACHE_TTL'] = int(os.getenv('SPIKE_CONFIG_CACHE_TTL', 300))

    app.config.update(test_config)

    db.init_app(app)
    migrate.init_app(app, db)

    from tenantguard.services.spike_detection import init_spike_config_cache
    init_spike_config_cache(app)

    allowed_origins = os.getenv('ALLOWED_ORIGINS', '')
    if allowed_origins:
        origins_list = [o.strip() for o in allowed_origins.split(',') if o.strip()]
    elif is_production:
        raise RuntimeError(
            'ALLOWED_ORIGINS environment variable is required in production'
        )
    else:
        origins_list = [
            'http://localhost:*',
            'http://127.0.0.1:*',
        ]

    CORS(app, resources={
        r"/admin/*": {"origins": origins_list},
        r"/projects/*": {"origins": origins_list},
    })

    @app.after_request
    def add_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate'
        response.headers['Referrer-Policy'] = 'no-referrer'
        if is_production or request.is_secure:
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        return response

    @app.before_request
    def validate_content_type():
        if request.method in ('POST', 'PUT') and request.path != '/health':
            content_type = request.content_type or ''
            if 'application/json' not in content_type:
                return jsonify({'error': 'Content-Type must be application/json'}), 415

    from tenantguard.utils.audit_logger import setup_audit_logging
    setup_audit_logging(app)

    from tenantguard.errors import register_error_handlers
    register_error_handlers(app)

    from tenantguard.routes.admin import admin_bp
    from tenantguard.routes.projects import projects_bp

    app.register_blueprint(admin_bp, url_prefix='/admin')
    app.register_blueprint(projects_bp, url_prefix='/projects')

    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    from tenantguard.cli import register_cli_commands
    register_cli_commands(app)

    return app
