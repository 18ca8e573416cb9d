# Main Flask app
import logging

import click
from flask import Flask, current_app, jsonify
from flask_cors import CORS
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from config import config
from errors import ApiError, StorageUnavailable, Unauthorized, ValidationFailure
from extensions import bcrypt, jwt, mail
from identity import IdentityService, IdentitySettings
from images import LocalImageStore
from mailer import Mailer
from models import db, User
from posts import PostService
from routes import auth_bp, main_bp, posts_bp, users_bp


def create_app(config_name='default', overrides=None):
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    app.config.update(overrides or {})
    logging.basicConfig(level=app.config['LOG_LEVEL'],
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    app.logger.setLevel(app.config['LOG_LEVEL'])

    # Initialize extensions
    db.init_app(app)
    bcrypt.init_app(app)
    jwt.init_app(app)
    mail.init_app(app)
    CORS(app, origins=[app.config['CLIENT_URL']], supports_credentials=True)

    # Components get their settings and collaborators here, never from the environment
    image_store = LocalImageStore(app.config['UPLOAD_FOLDER'])
    app.extensions['identity'] = IdentityService(
        Mailer(mail), image_store, IdentitySettings.from_config(app.config))
    app.extensions['posts'] = PostService(image_store, app.config['FEED_MAX_PAGE_SIZE'])

    register_error_handlers(app)
    register_commands(app)

    # Register blueprints
    app.register_blueprint(main_bp, url_prefix='/')
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(users_bp, url_prefix='/api/users')
    app.register_blueprint(posts_bp, url_prefix='/api/posts')

    return app


def error_response(error):
    return jsonify(error.to_dict()), error.status_code


# Session token callbacks
@jwt.user_lookup_loader
def load_session_user(_jwt_header, jwt_data):
    return db.session.get(User, int(jwt_data['sub']))


@jwt.token_in_blocklist_loader
def is_token_revoked(_jwt_header, jwt_payload):
    return current_app.extensions['identity'].is_revoked(jwt_payload['jti'])


@jwt.unauthorized_loader
def missing_token(_reason):
    return error_response(Unauthorized("Not logged in"))


@jwt.invalid_token_loader
def invalid_token(_reason):
    return error_response(Unauthorized())


@jwt.expired_token_loader
def expired_token(_jwt_header, _jwt_payload):
    return error_response(Unauthorized("Session expired"))


@jwt.revoked_token_loader
def revoked_token(_jwt_header, _jwt_payload):
    return error_response(Unauthorized("Session has been logged out"))


@jwt.user_lookup_error_loader
def unknown_session_user(_jwt_header, _jwt_payload):
    return error_response(Unauthorized())


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(e):
        return error_response(e)

    def handle_storage_error(e):
        db.session.rollback()
        app.logger.exception("Storage error: %s", e)
        return error_response(StorageUnavailable())

    app.register_error_handler(OperationalError, handle_storage_error)
    app.register_error_handler(PoolTimeoutError, handle_storage_error)

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(e):
        return jsonify({"error": ValidationFailure.__name__,
                        "message": "Upload too large"}), 413

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"error": e.name.replace(' ', ''), "message": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        db.session.rollback()
        app.logger.exception("Unhandled error: %s", e)
        return jsonify({"error": "InternalError", "message": "Internal Server Error"}), 500


def register_commands(app):
    @app.cli.command('init-db')
    def init_db():
        """Create all tables."""
        db.create_all()
        click.echo("Database tables created")

    @app.cli.command('purge-expired')
    def purge_expired():
        """Delete stale unverified accounts and expired revoked tokens."""
        users, tokens = app.extensions['identity'].purge_expired()
        click.echo(f"Removed {users} unverified accounts and {tokens} revoked tokens")
