from models.base import init_engine_and_session, Base
import os
import logging
from logging.handlers import RotatingFileHandler
from time import time

from flask import Flask, request, g, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from dotenv import load_dotenv
from sqlalchemy import text
from controllers.auth import login_manager
from controllers.payments import payments_bp
from models import schema  # noqa: F401 - ensure models are registered on Base
from services.metrics import init_app as init_metrics, REQUEST_COUNT, REQUEST_LATENCY

# --- Load .env exactly once, here ---
load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def _setup_logging(app):
    # default on in containers
    log_to_stdout = os.getenv("LOG_TO_STDOUT", "1") == "1"
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    if log_to_stdout:
        handler = logging.StreamHandler()
    else:
        log_dir = os.path.join(os.path.dirname(__file__), "log")
        try:
            os.makedirs(log_dir, exist_ok=True)
            handler = RotatingFileHandler(
                os.path.join(log_dir, "app.log"),
                maxBytes=5 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        except OSError:
            # If file logging fails (e.g., read-only container), fall back to stdout
            handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    ))

    # avoid duplicate handlers on reload
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    if _env_bool("PAYMENT_DEBUG", False):
        logging.getLogger("services.payments").setLevel(logging.DEBUG)
    app.logger.setLevel(logging.INFO)


def create_app(test_config: dict | None = None):
    app = Flask(__name__, instance_relative_config=True)

    # ---- Base config from environment (no hardcoded secrets) ----
    APP_ENV = os.getenv("APP_ENV", "development").lower()

    # SECRET_KEY:
    # - In production: must be provided
    # - In dev: fall back to a random key each run (sessions will reset on restart)
    secret_key = os.getenv("FLASK_SECRET_KEY")
    if not secret_key and APP_ENV == "production":
        raise RuntimeError("FLASK_SECRET_KEY must be set in production (.env)")
    if not secret_key:
        secret_key = os.urandom(32)  # dev-only fallback

    app.config.from_mapping(
        SECRET_KEY=secret_key,
        APP_ENV=APP_ENV,

        # Tenant / gateway defaults (env wins, see services/payments/registry.py)
        SITE_ID=os.getenv("SITE_ID", "1"),
        PAYMENT_CURRENCY=os.getenv("PAYMENT_CURRENCY", "USD"),
        AMAZON_FPS_MODE=os.getenv("AMAZON_FPS_MODE", "sandbox"),
        AMAZON_FPS_TIMEOUT=os.getenv("AMAZON_FPS_TIMEOUT", "15"),
        PAYMENT_TOKEN_TTL_SEC=os.getenv("PAYMENT_TOKEN_TTL_SEC", "3600"),
    )
    if test_config:
        app.config.update(test_config)

    # ---- CSRF ----
    csrf = CSRFProtect()
    csrf.init_app(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning("CSRF failed: %s", getattr(e, "description", ""))
        return jsonify(error="csrf", reason=getattr(e, "description", "")), 400

    _setup_logging(app)

    # Ensure instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    # ---- DB init ----
    engine, _Session = init_engine_and_session()
    if _env_bool("AUTO_CREATE_SCHEMA", True):
        Base.metadata.create_all(engine, checkfirst=True)

    login_manager.init_app(app)

    # ---- Blueprints ----
    app.register_blueprint(payments_bp)

    # Prometheus
    if _env_bool("METRICS_ENABLED", True):
        init_metrics(app)

    # ---- Errors ----

    @app.errorhandler(404)
    def not_found(e):
        app.logger.warning("404 %s %s", request.method, request.path)
        return jsonify(error="not_found", path=request.path), 404

    @app.errorhandler(405)
    def not_allowed(e):
        app.logger.warning("405 %s %s", request.method, request.path)
        return jsonify(error="method_not_allowed", path=request.path), 405

    # ---- Routes ----
    @app.before_request
    def _start_timer():
        g._t0 = time()

    @app.after_request
    def _log_request(resp):
        ms = (time() - getattr(g, "_t0", time())) * 1000
        app.logger.info("%s %s %s %s %.1fms",
                        request.remote_addr, request.method, request.path, resp.status_code, ms)

        # --- Skip self-scrapes & static to keep series clean ---
        ep = request.endpoint or ""
        if ep == "static" or request.path.startswith("/metrics"):
            return resp

        endpoint = ep.replace(".", "_") or "unknown"
        REQUEST_COUNT.labels(
            method=request.method, endpoint=endpoint, status=str(resp.status_code)).inc()
        REQUEST_LATENCY.labels(
            endpoint=endpoint, method=request.method).observe(ms / 1000.0)
        return resp

    @app.get("/healthz")
    def healthz():
        # Liveness: process is up, Flask can serve a simple request
        return jsonify(status="ok"), 200

    @app.get("/readyz")
    def readyz():
        # Readiness: app can talk to the DB
        try:
            engine, _ = init_engine_and_session()
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return jsonify(status="ok"), 200
        except Exception as e:
            app.logger.exception("Readiness check failed")
            return jsonify(status="error", error=str(e)), 500

    return app


if __name__ == "__main__":
    # TIP: use APP_ENV=production FLASK_SECRET_KEY=... when deploying
    app = create_app()
    app.run(host="0.0.0.0", port=8000, debug=(
        app.config["APP_ENV"] != "production"))
