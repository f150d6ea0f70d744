import logging

from flask import Flask
from flasgger import Swagger
from flask_cors import CORS

from .config import get_config
from .errors import register_error_handlers
from models import storage  # DBStorage singleton (scoped_session)
from services import build_services
from services.identity import DiscordIdentityProvider, FirebaseIdentityProvider
from services.mailer import SmtpMailer
from services.settings import AuthSettings

# Minimal Swagger config: exposes /swagger.json and UI at /apidocs
SWAGGER_TEMPLATE = {
    "swagger": "2.0.0",
    "info": {
        "title": "Identity API",
        "version": "1.0.0",
        "description": "Accounts, sessions and dual-token (access + refresh) authentication.",
    },
    "basePath": "/",  # blueprints are mounted under /api/v1
    "schemes": ["http"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": "Enter the token with the `Bearer ` prefix, e.g. \"Bearer abcde12345\"."
        },
        "RefreshToken": {
            "type": "apiKey",
            "name": "x-refresh-token",
            "in": "header",
        },
    }
}

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec_1",
            "route": "/swagger.json",
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/apidocs/",
}


def _default_mailer(config) -> SmtpMailer:
    return SmtpMailer(
        host=config.get("SMTP_HOST"),
        port=int(config.get("SMTP_PORT") or 587),
        user=config.get("SMTP_USER"),
        password=config.get("SMTP_PASSWORD"),
        use_tls=bool(config.get("SMTP_USE_TLS", True)),
        from_email=config.get("MAIL_FROM"),
    )


def _default_providers(config) -> dict:
    providers = {}
    if config.get("FIREBASE_PROJECT_ID"):
        providers["google"] = FirebaseIdentityProvider(config["FIREBASE_PROJECT_ID"])
    if config.get("DISCORD_ENABLED") or config.get("DISCORD_CLIENT_ID"):
        providers["discord"] = DiscordIdentityProvider(
            client_id=config.get("DISCORD_CLIENT_ID"),
            client_secret=config.get("DISCORD_CLIENT_SECRET"),
            redirect_uri=config.get("DISCORD_CALLBACK_URL"),
        )
    return providers


def create_app(config_name: str | None = None, *, mailer=None, identity_providers=None) -> Flask:
    """
    Application factory: creates and configures the Flask app.

    mailer and identity_providers replace the SMTP mailer and the
    Firebase/Discord providers built from config (tests pass fakes).
    """
    app = Flask(__name__)
    app.config.from_object(get_config(config_name))

    logging.basicConfig(
        level=getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    CORS(app, resources={r"/*": {"origins": app.config.get("CORS_ORIGINS", "*")}})
    Swagger(app, template=SWAGGER_TEMPLATE, config=SWAGGER_CONFIG)
    register_error_handlers(app)

    settings = AuthSettings.from_config(app.config)
    if identity_providers is None:
        identity_providers = _default_providers(app.config)
    app.extensions["identity"] = build_services(
        settings,
        storage,
        mailer or _default_mailer(app.config),
        providers=identity_providers,
    )

    from .health import bp as health_bp
    from .auth import bp as auth_bp
    from .users import bp as users_bp

    app.register_blueprint(health_bp, url_prefix="/api/v1")
    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")
    app.register_blueprint(users_bp, url_prefix="/api/v1/users")

    # scoped_session.remove() at the end of each request/app context
    @app.teardown_appcontext
    def remove_session(exception=None):
        storage.close()

    @app.route("/")
    def root():
        return {
            "message": "Welcome to the Identity API",
            "docs": "/apidocs/",
            "health": "/api/v1/health",
        }, 200

    return app
