import logging
import os

import click
from flask import Flask, jsonify
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError
from werkzeug.exceptions import HTTPException

from config import Config, engine_options
from errors import ApiError, ConflictError, InternalError, TransientError
from models import db, ensure_admin

LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s] - %(message)s'

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)


def register_error_handlers(app: Flask) -> None:
    """Map every failure onto the ``{success: false, message}`` response shape."""

    @app.errorhandler(ApiError)
    def handle_api_error(error):
        db.session.rollback()
        if error.status_code >= 500:
            logger.error("%s: %s", type(error).__name__, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error):
        db.session.rollback()
        logger.warning("Integrity error: %s", error.orig)
        conflict = ConflictError()
        return jsonify(conflict.to_dict()), conflict.status_code

    @app.errorhandler(OperationalError)
    @app.errorhandler(PoolTimeoutError)
    def handle_storage_unavailable(error):
        db.session.rollback()
        logger.error("Storage unavailable: %s", error)
        transient = TransientError()
        return jsonify(transient.to_dict()), transient.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        return jsonify({'success': False, 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        db.session.rollback()
        logger.exception("Unhandled error")
        internal = InternalError()
        return jsonify(internal.to_dict()), internal.status_code


def register_commands(app: Flask) -> None:
    @app.cli.command('init-db')
    def init_db_command():
        """Create all database tables."""
        db.create_all()
        click.echo('Initialized the database.')

    @app.cli.command('create-admin')
    @click.argument('email')
    @click.password_option()
    def create_admin_command(email, password):
        """Create or promote an administrator account."""
        admin = ensure_admin(email, password)
        click.echo(f'Administrator ready: {admin.email}')

    @app.cli.command('purge-credentials')
    def purge_credentials_command():
        """Delete expired or revoked tokens and expired one-time codes."""
        from services import otp, tokens

        removed_tokens = tokens.purge_expired()
        removed_codes = otp.purge_expired()
        click.echo(f'Removed {removed_tokens} tokens and {removed_codes} codes.')


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    configure_logging(app.config.get('LOG_LEVEL', 'INFO'))

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if database_uri.startswith('sqlite:///') and ':memory:' not in database_uri:
        os.makedirs(os.path.dirname(database_uri[len('sqlite:///'):]) or '.', exist_ok=True)
    app.config.setdefault(
        'SQLALCHEMY_ENGINE_OPTIONS',
        engine_options(database_uri, app.config['STORAGE_TIMEOUT_SECONDS']),
    )

    db.init_app(app)
    app.extensions['email_outbox'] = []

    from blueprints import admin_bp, matches_bp, players_bp, universities_bp

    app.register_blueprint(players_bp)
    app.register_blueprint(universities_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(matches_bp)

    @app.route('/health')
    def health():
        return jsonify({'success': True, 'status': 'ok'})

    register_error_handlers(app)
    register_commands(app)

    with app.app_context():
        db.create_all()

    logger.info("Application configured with database %s", database_uri.split('@')[-1])
    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=int(os.environ.get('PORT', 5000)))
