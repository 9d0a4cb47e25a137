import logging
import os

from flask import Flask, current_app, jsonify
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text

db = SQLAlchemy()

from .models import User  # noqa: E402
from .shared.errors import LifecycleError  # noqa: E402


TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in TRUTHY


def create_app():
    app = Flask(__name__)
    app.secret_key = os.getenv("SECRET_KEY", "dev")
    app.config["JSON_SORT_KEYS"] = False

    DB_USER = os.getenv("DB_USER", "colombus")
    DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
    DB_HOST = os.getenv("DB_HOST", "db")
    DB_NAME = os.getenv("DB_NAME", "colombus")
    DATABASE_URL = os.getenv(
        "DATABASE_URL",
        f"postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}/{DB_NAME}",
    )

    app.config["SQLALCHEMY_DATABASE_URI"] = DATABASE_URL
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SECURE"] = os.getenv("FLASK_ENV") == "production"
    app.config["COACH_VALIDATION_ONLY"] = _env_flag("COACH_VALIDATION_ONLY")

    db.init_app(app)

    @app.get("/health")
    def health():  # pragma: no cover - simple healthcheck
        return "OK", 200

    @app.errorhandler(LifecycleError)
    def lifecycle_error(exc: LifecycleError):
        db.session.rollback()
        current_app.logger.info(f"[RULE] {exc.kind}: {exc.message}")
        return jsonify(exc.to_dict()), exc.status_code

    from .routes.auth import bp as auth_bp
    from .routes.catalog import bp as catalog_bp
    from .routes.interests import bp as interests_bp
    from .routes.registrations import bp as registrations_bp
    from .routes.coach import bp as coach_bp
    from .routes.users import bp as users_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(interests_bp)
    app.register_blueprint(registrations_bp)
    app.register_blueprint(coach_bp)
    app.register_blueprint(users_bp)

    with app.app_context():
        if not os.getenv("FLASK_SKIP_SEED"):
            seed_initial_rh_safely()

    return app


class AppSetting(db.Model):
    __tablename__ = "app_settings"

    key = db.Column(db.String(120), primary_key=True)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )


def get_setting(key: str, default=None):
    s = db.session.get(AppSetting, key)
    return s.value if s else default


def set_setting(key: str, value: str) -> None:
    existing = db.session.get(AppSetting, key)
    if existing:
        existing.value = value
    else:
        db.session.add(AppSetting(key=key, value=value))


def coach_validation_only() -> bool:
    """Whether a coach approval is final or still has to go through RH.

    The ``app_settings`` row wins over the ``COACH_VALIDATION_ONLY`` env value.
    """

    from .shared.constants import COACH_VALIDATION_ONLY_KEY

    stored = get_setting(COACH_VALIDATION_ONLY_KEY)
    if stored is not None:
        return stored.strip().lower() in TRUTHY
    return bool(current_app.config.get("COACH_VALIDATION_ONLY", False))


def seed_initial_rh_safely() -> None:
    """Seed an RH account from FIRST_RH_EMAIL when the users table is empty."""

    email = (os.getenv("FIRST_RH_EMAIL") or "").strip().lower()
    if not email:
        return
    try:
        if db.engine.url.drivername.startswith("sqlite"):
            return
        cols = {
            row[0]
            for row in db.session.execute(
                text(
                    "SELECT column_name FROM information_schema.columns WHERE table_name='users'"
                )
            )
        }
        required = {"id", "email", "password_hash", "is_rh"}
        if not required.issubset(cols):
            logging.info("seed skipped (columns missing)")
            return

        if db.session.query(User).count() > 0:
            return

        rh = User(email=email, name=email, is_rh=True, is_consultant=True)
        password = os.getenv("FIRST_RH_PASSWORD")
        if password:
            rh.set_password(password)
        db.session.add(rh)
        db.session.commit()
        logging.info("Seeded initial RH account %s", email)
    except Exception:
        db.session.rollback()
        logging.exception("seed_initial_rh_safely failed")
