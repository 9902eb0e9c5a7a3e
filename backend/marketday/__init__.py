import os
import subprocess
from datetime import datetime, timezone
from pathlib import Path

import click
from flask import Flask, jsonify, request, g
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from marketday.extensions import db, migrate, cors
from marketday.integrations.payments.factory import payment_health
from marketday.segments.segment_availability import availability_bp
from marketday.segments.segment_order_lifecycle import buyer_orders_bp, vendor_orders_bp, orders_bp
from marketday.segments.segment_payment_webhooks import webhooks_bp
from marketday.services.wiring import notification_dispatcher, payments_provider, register_providers
from marketday.utils.observability import init_sentry, init_otel, install_request_observers


def _resolve_alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
        cfg = Config()
        cfg.set_main_option("script_location", str(migrations_dir))
        script = ScriptDirectory.from_config(cfg)
        heads = script.get_heads()
        return heads[0] if heads else "unknown"
    except Exception:
        return "unknown"


def _resolve_git_sha() -> str:
    for env_key in ("RENDER_GIT_COMMIT", "GIT_SHA", "SOURCE_VERSION"):
        val = (os.getenv(env_key) or "").strip()
        if val:
            return val
    try:
        repo_root = Path(__file__).resolve().parents[1]
        out = subprocess.check_output(
            ["git", "rev-parse", "HEAD"],
            cwd=str(repo_root),
            stderr=subprocess.DEVNULL,
        )
        return out.decode().strip()
    except Exception:
        return "unknown"


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except Exception:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def _env_float(name: str, default: float | None) -> float | None:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except Exception:
        return default


def _load_config(env: str) -> dict:
    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        os.makedirs(instance_dir, exist_ok=True)
        database_url = f"sqlite:///{os.path.join(instance_dir, 'marketday.db').replace(os.sep, '/')}"
    # Hosted Postgres URLs still use the legacy scheme.
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]

    return {
        "MARKETDAY_ENV": env,
        "SECRET_KEY": os.getenv("SECRET_KEY", "dev-secret"),
        "SQLALCHEMY_DATABASE_URI": database_url,
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "CORS_ORIGINS": (os.getenv("CORS_ORIGINS") or "").strip(),
        "PAYMENTS_PROVIDER": (os.getenv("PAYMENTS_PROVIDER") or "mock").strip().lower(),
        "STRIPE_SECRET_KEY": (os.getenv("STRIPE_SECRET_KEY") or "").strip(),
        "STRIPE_WEBHOOK_SECRET": (os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip(),
        "MESSAGING_PROVIDER": (os.getenv("MESSAGING_PROVIDER") or "mock").strip().lower(),
        "TWILIO_ACCOUNT_SID": (os.getenv("TWILIO_ACCOUNT_SID") or "").strip(),
        "TWILIO_AUTH_TOKEN": (os.getenv("TWILIO_AUTH_TOKEN") or "").strip(),
        "TWILIO_FROM_NUMBER": (os.getenv("TWILIO_FROM_NUMBER") or "").strip(),
        "SENTRY_DSN": (os.getenv("SENTRY_DSN") or "").strip(),
        "SENTRY_TRACES_SAMPLE_RATE": _env_float("SENTRY_TRACES_SAMPLE_RATE", 0.0),
        "OTEL_ENABLED": (os.getenv("OTEL_ENABLED") or "").strip() == "1",
        "CELERY_BROKER_URL": (os.getenv("CELERY_BROKER_URL") or os.getenv("REDIS_URL") or "redis://localhost:6379/0").strip(),
        "PAYOUT_RETRY_INTERVAL_SECONDS": _env_int("PAYOUT_RETRY_INTERVAL_SECONDS", 3600, minimum=60, maximum=86400),
        "DEFAULT_CUTOFF_HOURS": {
            "traditional": _env_float("CUTOFF_HOURS_TRADITIONAL", 18.0),
            "private_pickup": _env_float("CUTOFF_HOURS_PRIVATE_PICKUP", 10.0),
        },
    }


def _engine_options(database_url: str) -> dict:
    options = {
        "pool_pre_ping": True,
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        options.update(
            {
                "pool_size": _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
    return options


def create_app(overrides: dict | None = None):
    app = Flask(__name__)

    env = (os.getenv("MARKETDAY_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        if (os.getenv("PAYMENTS_PROVIDER") or "mock").strip().lower() == "mock":
            raise RuntimeError("PAYMENTS_PROVIDER=mock is not allowed in production")

    app.config.update(_load_config(env))
    if overrides:
        app.config.update(overrides)
    app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", _engine_options(app.config["SQLALCHEMY_DATABASE_URI"]))

    init_sentry(app)

    # CORS configuration
    cors_origins = app.config.get("CORS_ORIGINS") or ""
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=str(Path(__file__).resolve().parents[1] / "migrations"))
    install_request_observers(app)
    register_providers(app)
    init_otel(app, enabled=bool(app.config.get("OTEL_ENABLED")))

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
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), int(error.code or 500)

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        payload = {
            "ok": False,
            "error": "InternalServerError",
            "message": "Internal server error",
            "status": 500,
        }
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), 500

    # Register API routes
    app.register_blueprint(availability_bp)
    app.register_blueprint(buyer_orders_bp)
    app.register_blueprint(vendor_orders_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(webhooks_bp)

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
            "service": "marketday-backend",
            "env": env,
            "db": db_state,
            "payments": payment_health(app.config),
            "git_sha": _resolve_git_sha(),
            "alembic_head": _resolve_alembic_head(),
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.cli.command("retry-failed-payouts")
    def retry_failed_payouts_command():
        """Retry failed vendor cancellation-fee transfers once, outside the beat schedule."""
        from marketday.services.marketplace_store import MarketplaceStore
        from marketday.services.payout_retry_service import retry_failed_payouts

        summary = retry_failed_payouts(
            MarketplaceStore(),
            payments_provider(app),
            notification_dispatcher(app),
            datetime.now(timezone.utc),
        )
        click.echo(" ".join(f"{k}={v}" for k, v in summary.items()))

    return app
