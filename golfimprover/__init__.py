"""Flask application factory."""

import os
import secrets
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv
from flask import Flask
from flask_session import Session
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from .config import Settings, _bool_from_env
from .extensions import db
from .services.ai_service import AIService
from .services.auth_service import AuthService
from .services.document_store import build_document_store, init_supabase
from .services.mailer import Mailer
from .services.recap_service import RecapService
from .services.storage_service import StorageService


def _resolve_secret_key() -> str:
    """Return a secret key for Flask sessions.

    Production deployments set ``FLASK_SECRET_KEY`` (or ``SECRET_KEY``). Without
    one a temporary key is generated so the app still boots locally.
    """

    for name in ("FLASK_SECRET_KEY", "SECRET_KEY"):
        value = os.environ.get(name)
        if value:
            return value
    return secrets.token_hex(32)


def _init_services(app: Flask, settings: Settings) -> None:
    supabase = init_supabase(settings)
    store = build_document_store(settings, supabase)

    app.settings = settings
    app.storage_service = StorageService(store)
    app.auth_service = AuthService(app.storage_service, store, supabase)
    app.ai_service = AIService(settings.gemini)
    app.recap_service = RecapService(
        app.storage_service,
        Mailer(settings.mail, app_url=settings.recap_job.app_url),
        settings.recap_job,
    )


def create_app(test_config: Optional[Mapping[str, Any]] = None) -> Flask:
    """Configure and return the Flask application.

    ``test_config`` overrides Flask config keys; a ``GOLF_SETTINGS`` entry
    replaces the settings normally read from the environment.
    """

    load_dotenv()

    app = Flask(__name__)
    test_config = dict(test_config or {})
    settings = test_config.pop("GOLF_SETTINGS", None) or Settings.from_env()

    # Optional integrations (Supabase, Gemini, SMTP) are disabled individually
    # when their credentials are missing.
    _init_services(app, settings)

    app.config["SECRET_KEY"] = _resolve_secret_key()

    # --- Session configuration -----------------------------------------
    is_vercel = _bool_from_env("VERCEL", False) or bool(os.environ.get("VERCEL_ENV"))
    flask_env = os.environ.get("FLASK_ENV", "").lower()
    is_production = flask_env in {"production", "prod"} or is_vercel

    same_site_default = "Lax"
    same_site_env = os.environ.get("SESSION_COOKIE_SAMESITE")
    if same_site_env and same_site_env.lower() == "none":
        same_site_default = "None"

    app.config.update(
        SESSION_TYPE="sqlalchemy",
        SESSION_SQLALCHEMY=db,
        SESSION_SQLALCHEMY_TABLE=os.environ.get("SESSION_TABLE", "sessions"),
        SESSION_PERMANENT=True,
        PERMANENT_SESSION_LIFETIME=timedelta(
            days=int(os.environ.get("SESSION_LIFETIME_DAYS", "14"))
        ),
        SESSION_COOKIE_SECURE=_bool_from_env("SESSION_COOKIE_SECURE", is_production),
        SESSION_COOKIE_SAMESITE=os.environ.get("SESSION_COOKIE_SAMESITE", same_site_default),
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_NAME=os.environ.get("SESSION_COOKIE_NAME", "golfimprover_session"),
        SESSION_COOKIE_DOMAIN=os.environ.get("SESSION_COOKIE_DOMAIN"),
        SESSION_USE_SIGNER=False,
    )

    database_uri = os.environ.get("SUPABASE_DB_POOL_URL")
    if not database_uri:
        if is_production:
            raise RuntimeError(
                "SUPABASE_DB_POOL_URL is required in production to persist sessions."
            )
        database_uri = os.environ.get("LOCAL_DATABASE_URI")
        if not database_uri:
            default_sqlite_path = Path(app.instance_path) / "dev.db"
            default_sqlite_path.parent.mkdir(parents=True, exist_ok=True)
            database_uri = f"sqlite:///{default_sqlite_path}"

    if database_uri.startswith("sqlite:///"):
        sqlite_path = database_uri.replace("sqlite:///", "", 1)
        if sqlite_path and sqlite_path != ":memory:":
            Path(sqlite_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

    sslmode = os.environ.get("DATABASE_SSLMODE")
    if sslmode and "sslmode=" not in database_uri:
        separator = "&" if "?" in database_uri else "?"
        database_uri = f"{database_uri}{separator}sslmode={sslmode}"

    app.config["SQLALCHEMY_DATABASE_URI"] = database_uri
    engine_options = {"pool_pre_ping": True}
    if is_vercel:
        engine_options["poolclass"] = NullPool
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)

    app.config.update(test_config)

    db.init_app(app)

    # Fail on cold start rather than mid-request when sessions cannot persist.
    if is_production:
        try:
            with app.app_context():
                connection = db.engine.connect()
                connection.close()
        except SQLAlchemyError as exc:  # pragma: no cover - network dependent
            raise RuntimeError("Database connectivity failed for session storage") from exc

    if "sessions" in db.metadata.tables:
        db.metadata.remove(db.metadata.tables["sessions"])

    Session(app)

    if not is_production:
        with app.app_context():
            db.create_all()

    from .routes import main_bp

    app.register_blueprint(main_bp)

    return app
