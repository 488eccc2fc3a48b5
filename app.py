import os, json, logging, time, uuid

from flask import has_request_context
from flask import Flask, request, jsonify, g
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, BadRequest

# ---- Rate limiting (lightweight) ----
# Tiny in-memory limiter; swap for a Redis-backed one in multi-instance deployments.
from collections import defaultdict, deque

# ---- SQLAlchemy Core (no ORM) ----
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from db import get_engine, init_db
from services.errors import LeagueIntegrityError

# ---- Optional: Prometheus metrics ----
try:
    from prometheus_flask_exporter import PrometheusMetrics
    PROMETHEUS_AVAILABLE = True
except ImportError:
    PROMETHEUS_AVAILABLE = False


# ----------------------------
# Pull local env
# ----------------------------
if os.path.exists(".env"):
    from dotenv import load_dotenv
    load_dotenv(override=False)  # never override the runtime env


# ----------------------------
# Config
# ----------------------------
class Config:
    ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = ENV == "development"
    TESTING = False

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Database URL (mysql://, mysql+pymysql:// or sqlite:///)
    DATABASE_URL = os.getenv("DATABASE_URL")
    # Create missing tables and the season row at boot
    DB_AUTO_CREATE = os.getenv("DB_AUTO_CREATE", "false").lower() == "true"

    # Request / server settings
    REQUEST_MAX_BODY_BYTES = int(os.getenv("REQUEST_MAX_BODY_BYTES", "1048576"))  # 1 MB

    # Rate limiting
    RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "100"))  # per window
    RATE_LIMIT_WINDOW_S = int(os.getenv("RATE_LIMIT_WINDOW_S", "60"))   # seconds

    # Feature flags
    ENABLE_PROMETHEUS = os.getenv("ENABLE_PROMETHEUS", "true").lower() == "true"


# ----------------------------
# Logging (JSON)
# ----------------------------
class JsonFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "pid": os.getpid(),
        }

        # Only touch request/g if we actually have a request context
        if has_request_context():
            payload["path"] = request.path
            payload["method"] = request.method
            rid = getattr(g, "request_id", None)
            if rid:
                payload["request_id"] = rid

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging():
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    formatter = JsonFormatter()
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        h = logging.StreamHandler()
        h.setFormatter(formatter)
        root.addHandler(h)
    else:
        for h in root.handlers:
            if isinstance(h, logging.StreamHandler):
                h.setFormatter(formatter)
    logging.getLogger("app").info(
        "App boot: PID=%s, PORT=%s, DATABASE_URL set=%s, ADMIN_PASSWORD set=%s",
        os.getpid(), os.getenv("PORT"), bool(os.getenv("DATABASE_URL")),
        bool(os.getenv("ADMIN_PASSWORD")),
    )


# ----------------------------
# Tiny in-memory rate limiter
# ----------------------------
class SimpleRateLimiter:
    def __init__(self, max_requests, window_s):
        self.max_requests = max_requests
        self.window_s = window_s
        self.buckets = defaultdict(deque)

    def is_allowed(self, key: str) -> bool:
        now = time.time()
        q = self.buckets[key]
        # Drop old timestamps
        while q and q[0] <= now - self.window_s:
            q.popleft()
        if len(q) >= self.max_requests:
            return False
        q.append(now)
        return True


# ----------------------------
# App Factory
# ----------------------------
def create_app(config_object=Config):
    setup_logging()
    log = logging.getLogger("app")
    log.info("stage: flask_start")

    app = Flask(__name__)
    app.config.from_object(config_object)
    log.info("stage: config_loaded")

    # Register Blueprints
    try:
        from drafting import drafting_bp
        app.register_blueprint(drafting_bp, url_prefix="/api/v1")
    except Exception as e:
        app.logger.exception("Failed to register drafting blueprint: %s", e)

    try:
        from trading import trading_bp
        app.register_blueprint(trading_bp, url_prefix="/api/v1")
    except Exception as e:
        app.logger.exception("Failed to register trading blueprint: %s", e)

    try:
        from teams import teams_bp
        app.register_blueprint(teams_bp, url_prefix="/api/v1")
    except Exception as e:
        app.logger.exception("Failed to register teams blueprint: %s", e)

    try:
        from events import events_bp
        app.register_blueprint(events_bp, url_prefix="/api/v1")
    except Exception as e:
        app.logger.exception("Failed to register events blueprint: %s", e)

    from admin import admin_bp
    # Secure session cookie
    app.secret_key = os.getenv("FLASK_SECRET", os.urandom(32))
    app.config.update(
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=not (app.debug or app.testing),
    )
    app.register_blueprint(admin_bp, url_prefix="/api/v1")
    log.info("stage: admin_bp_ok")

    @app.get("/")
    def root():
        return jsonify(status="up")

    @app.get("/favicon.ico")
    def favicon():
        return ("", 204)

    # CORS
    CORS(app, resources={r"/*": {"origins": app.config["CORS_ORIGINS"]}})
    log.info("stage: cors_ok")

    # Request ID middleware
    @app.before_request
    def attach_request_id():
        g.request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        # lightweight body size guard
        cl = request.headers.get("Content-Length")
        if cl and int(cl) > app.config["REQUEST_MAX_BODY_BYTES"]:
            raise BadRequest("Request body too large")

    @app.after_request
    def echo_request_id(response):
        rid = getattr(g, "request_id", None)
        if rid:
            response.headers["X-Request-ID"] = rid
        return response

    # Simple rate limit
    limiter = SimpleRateLimiter(
        app.config["RATE_LIMIT_REQUESTS"], app.config["RATE_LIMIT_WINDOW_S"]
    )

    @app.before_request
    def apply_rate_limit():
        key = request.headers.get("X-Forwarded-For", request.remote_addr) or "unknown"
        if not limiter.is_allowed(key):
            return jsonify(error="rate_limited", message="Too many requests"), 429

    # Database engine (SQLAlchemy Core)
    try:
        engine = get_engine()
    except RuntimeError:
        log.warning("DATABASE_URL not set. /readyz will fail.")
        engine = None

    if engine is not None and app.config.get("DB_AUTO_CREATE"):
        init_db(engine)
        log.info("stage: schema_ok")
    log.info("stage: engine_ok")

    # make the engine visible to tools that look for it on the app
    app.engine = engine
    app.extensions["sqlalchemy_engine"] = engine

    # Prometheus metrics
    if app.config["ENABLE_PROMETHEUS"] and PROMETHEUS_AVAILABLE:
        try:
            PrometheusMetrics(app, group_by="endpoint")
            log.info("Prometheus metrics enabled at /metrics")
        except Exception:
            log.exception("prometheus_init_failed")

    @app.get("/routes")
    def _routes():
        from flask import Response
        lines = []
        for r in sorted(app.url_map.iter_rules(), key=lambda x: x.rule):
            lines.append(f"{','.join(sorted(r.methods))}  {r.rule}  -> {r.endpoint}")
        return Response("\n".join(lines), mimetype="text/plain")

    # -------- Error Handlers --------
    @app.errorhandler(HTTPException)
    def handle_http_ex(e: HTTPException):
        return jsonify(error=e.name, message=e.description), e.code

    @app.errorhandler(LeagueIntegrityError)
    def handle_integrity_ex(e):
        logging.exception("League integrity error")
        return jsonify(error="integrity_error", message=str(e)), 500

    @app.errorhandler(SQLAlchemyError)
    def handle_db_ex(e):
        logging.exception("Database error")
        return jsonify(error="database_error", message=str(getattr(e, "__cause__", e))), 500

    @app.errorhandler(Exception)
    def handle_generic_ex(e):
        logging.exception("Unhandled error")
        return jsonify(error="internal_error", message="Something went wrong"), 500

    # -------- Health / Readiness --------
    @app.get("/healthz")
    def healthz():
        return jsonify(status="ok", time=time.time())

    @app.get("/readyz")
    def readyz():
        if engine is None:
            return jsonify(status="degraded", error="no database configured"), 503
        # quick DB ping
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return jsonify(status="ready")
        except SQLAlchemyError as e:
            return jsonify(status="degraded", error=str(e)), 503
    log.info("stage: handlers_ok")

    log.info("stage: routes_ok")
    return app


# ----------------------------
# Entrypoint
# ----------------------------
if __name__ == "__main__":
    app = create_app()
    # For local dev only; use gunicorn in production
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
