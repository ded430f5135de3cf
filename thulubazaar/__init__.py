import os
import json
import click
from pathlib import Path
from flask import Flask, jsonify, request, g
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from thulubazaar.config import current_env, env_flag, env_int, is_production, normalize_database_url
from thulubazaar.extensions import db, migrate, cors
from thulubazaar.models import User
from thulubazaar.segments.segment_payments import payments_bp
from thulubazaar.segments.segment_mock_payment import mock_payment_bp
from thulubazaar.segments.segment_promotions import promotions_bp
from thulubazaar.segments.segment_admin_promotions import admin_promotions_bp
from thulubazaar.services.errors import ServiceError
from thulubazaar.utils.jwt_utils import decode_token, get_bearer_token
from thulubazaar.utils.observability import init_sentry, init_otel, get_request_id, install_request_observers, set_sentry_user


def _resolve_alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
        cfg = Config(str(migrations_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(migrations_dir))
        script = ScriptDirectory.from_config(cfg)
        heads = script.get_heads()
        return heads[0] if heads else "unknown"
    except Exception:
        return "unknown"


def _resolve_git_sha() -> str:
    for env_key in ("GIT_SHA", "RENDER_GIT_COMMIT", "SOURCE_VERSION"):
        val = (os.getenv(env_key) or "").strip()
        if val:
            return val
    return "unknown"


def _trace_payload(payload: dict) -> dict:
    rid = (get_request_id() or "").strip()
    if rid:
        payload["trace_id"] = rid
    return payload


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = current_env()

    # Production safety checks
    if is_production():
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # Database config
    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
        os.makedirs(instance_dir, exist_ok=True)
        database_url = f"sqlite:///{os.path.join(instance_dir, 'thulubazaar.db').replace(os.sep, '/')}"
    database_url = normalize_database_url(database_url)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    engine_options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_size": env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s pool_recycle=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
            engine_options["pool_timeout"],
            engine_options["pool_recycle"],
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    # CORS configuration
    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    if is_production():
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)
    with app.app_context():
        init_otel(app, enabled=env_flag("OTEL_ENABLED"))

    @app.errorhandler(ServiceError)
    def _api_service_error(error: ServiceError):
        db.session.rollback()
        return jsonify(_trace_payload(error.to_payload())), error.status

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        # Keep API failures JSON-only for predictable frontend handling.
        if not request.path.startswith("/api/"):
            return error
        payload = {
            "ok": False,
            "error": error.name,
            "message": error.description or error.name,
            "status": int(error.code or 500),
        }
        return jsonify(_trace_payload(payload)), int(error.code or 500)

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        db.session.rollback()
        payload = {
            "ok": False,
            "error": "InternalServerError",
            "message": "Internal server error",
            "status": 500,
        }
        return jsonify(_trace_payload(payload)), 500

    # Register API routes
    app.register_blueprint(payments_bp)
    app.register_blueprint(mock_payment_bp)
    app.register_blueprint(promotions_bp)
    app.register_blueprint(admin_promotions_bp)

    # Health check
    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            db_state = "fail"
            msg = str(e)
            if msg:
                db_error = (msg[:300] + "...") if len(msg) > 300 else msg
        payload = {
            "ok": True,
            "service": "thulubazaar-api",
            "env": env,
            "db": db_state,
            "git_sha": _resolve_git_sha(),
            "alembic_head": _resolve_alembic_head(),
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.get("/")
    def root():
        return jsonify({
            "ok": True,
            "service": "thulubazaar-api",
            "env": env,
        })

    @app.before_request
    def _reset_db_session():
        db.session.rollback()

    @app.before_request
    def _capture_auth_context():
        g.auth_user_id = None
        g.auth_role = None
        token = get_bearer_token(request.headers.get("Authorization", ""))
        if not token:
            return
        payload = decode_token(token)
        if not payload:
            return
        try:
            uid = int(payload.get("sub"))
        except (TypeError, ValueError):
            return
        g.auth_user_id = uid
        user = db.session.get(User, uid)
        if user:
            g.auth_role = (user.role or "user").strip().lower()
            set_sentry_user(uid, g.auth_role)

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    @app.cli.command("sweep-promotions")
    @click.option("--limit", "limit", default=500, show_default=True, help="Max promotions to expire in one run")
    def sweep_promotions(limit: int):
        from thulubazaar.jobs.promotion_sweeper import run_promotion_expiry_sweep

        result = run_promotion_expiry_sweep(limit=limit)
        click.echo(json.dumps(result))
        if not result.get("ok"):
            raise click.ClickException("Promotion sweep finished with errors.")

    @app.cli.command("seed-pricing")
    def seed_pricing():
        from thulubazaar.services.pricing_service import seed_default_pricing

        db.create_all()
        created = seed_default_pricing()
        click.echo(f"promotion_pricing_seeded rows={created}")

    return app
