import logging
import click
from dotenv import load_dotenv
from flask import Flask
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.middleware.proxy_fix import ProxyFix

load_dotenv()

from .config import Config  # noqa: E402  (reads the environment loaded above)
from .models import db  # noqa: E402
from .responses import error_response  # noqa: E402
from .services.errors import AccessError, StorageUnavailable  # noqa: E402
from .services.mailer import SmtpMailer  # noqa: E402
from .services.store import SqlCredentialStore  # noqa: E402

logger = logging.getLogger(__name__)


def _configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config())
    if test_config:
        app.config.update(test_config)
    _configure_logging(app.config['LOG_LEVEL'])

    db.init_app(app)
    Migrate(app, db)
    # Trust reverse proxy headers (Render/Heroku)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    app.extensions['credential_store'] = SqlCredentialStore()
    app.extensions['mailer'] = SmtpMailer.from_config(app.config)

    with app.app_context():
        db.create_all()

    from .routes_public import bp as public_bp
    from .routes_api import bp as api_bp
    from .routes_admin import bp as admin_bp
    app.register_blueprint(public_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(admin_bp, url_prefix='/admin')

    @app.errorhandler(AccessError)
    def handle_access_error(err):
        return error_response(err)

    @app.errorhandler(SQLAlchemyError)
    def handle_storage_error(err):
        db.session.rollback()
        logger.error('storage error: %s', err.__class__.__name__)
        return error_response(StorageUnavailable())

    @app.get('/health')
    def health():
        return {'ok': True}

    @app.cli.command('reap-credentials')
    @click.option('--retention-minutes', type=int, default=None,
                  help='Override RETENTION_MINUTES for this run.')
    def reap_credentials(retention_minutes):
        """Delete closed credentials older than the retention window."""
        from .services.reaper import reap
        removed = reap(retention_minutes=retention_minutes)
        click.echo(f'removed {removed} credential(s)')

    return app
