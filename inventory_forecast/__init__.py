"""Flask application factory."""

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
import logging
import os

db = SQLAlchemy()

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level_name: str):
    """Configure the root logger once for the whole process."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if not root_logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(console_handler)


def create_app(config=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Configure database - use PostgreSQL if DATABASE_URL is set, otherwise SQLite
    database_url = os.environ.get('DATABASE_URL')
    if database_url:
        # Railway/Heroku PostgreSQL - fix postgres:// to postgresql://
        if database_url.startswith('postgres://'):
            database_url = database_url.replace('postgres://', 'postgresql://', 1)
        app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    else:
        # Local development - use SQLite
        basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
        app.config['SQLALCHEMY_DATABASE_URI'] = f'sqlite:///{os.path.join(basedir, "forecast.db")}'

    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-key-change-in-production')
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO')
    app.config['SUMMARY_CACHE_TTL_SECONDS'] = float(os.environ.get('SUMMARY_CACHE_TTL_SECONDS', 300))
    app.config['FORECAST_WRITE_RETRIES'] = int(os.environ.get('FORECAST_WRITE_RETRIES', 3))

    if config:
        app.config.update(config)

    configure_logging(app.config['LOG_LEVEL'])

    # Initialize extensions
    db.init_app(app)

    from .cache import TTLCache
    app.extensions['summary_cache'] = TTLCache(ttl_seconds=app.config['SUMMARY_CACHE_TTL_SECONDS'])

    # Import and register blueprints
    from . import routes
    app.register_blueprint(routes.forecast_bp, url_prefix='/api/inventory-forecast')
    app.register_blueprint(routes.scenario_bp, url_prefix='/api/inventory-scenarios')
    app.register_blueprint(routes.inventory_bp, url_prefix='/api/inventory')
    app.register_blueprint(routes.sales_bp, url_prefix='/api/sales')
    app.register_blueprint(routes.api_bp, url_prefix='/api')
    routes.register_error_handlers(app)

    # Create tables and seed defaults
    with app.app_context():
        db.create_all()

        from .data_import import init_default_settings, init_default_scenarios
        init_default_settings()
        init_default_scenarios()

    return app
