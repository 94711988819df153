# /newsletter/__init__.py
# Application factory: builds the Flask app and wires its extensions.

import logging

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_mail import Mail
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from .config import Config

# --- Extensions (bound to the app in create_app) ---
db = SQLAlchemy()
mail = Mail()
limiter = Limiter(key_func=get_remote_address, default_limits=[])
login_manager = LoginManager()


def configure_logging(level):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


def create_app(config=None):
    """Create and configure the Flask application.

    `config` is a mapping of overrides applied on top of `Config.from_env()`;
    pass `{'TESTING': True, ...}` from tests instead of touching the environment.
    """
    app = Flask(__name__)

    app.config.update(Config.from_env() if config is None else Config.defaults())
    if config:
        app.config.update(config)

    configure_logging(app.config['LOG_LEVEL'])

    db.init_app(app)
    mail.init_app(app)
    limiter.init_app(app)

    # Session cookie -> identity. Only the request loader is used: the
    # credential is our own opaque cookie, never Flask's signed session.
    login_manager.session_protection = None
    login_manager.init_app(app)

    from .auth.sessions import load_user_from_request
    from .errors import Unauthenticated, register_error_handlers

    login_manager.request_loader(load_user_from_request)

    @login_manager.unauthorized_handler
    def _unauthorized():
        raise Unauthenticated()

    register_error_handlers(app)

    # Blueprints
    from .auth.routes import auth as auth_blueprint
    app.register_blueprint(auth_blueprint)

    from .main.routes import main as main_blueprint
    app.register_blueprint(main_blueprint)

    from .webhooks.routes import webhooks as webhooks_blueprint
    app.register_blueprint(webhooks_blueprint)

    from .cli import register_cli
    register_cli(app)

    # Import models so their tables are known, then create them if missing
    from . import models  # noqa: F401
    with app.app_context():
        db.create_all()

    return app
