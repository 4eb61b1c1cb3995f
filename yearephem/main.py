# yearephem/main.py
from __future__ import annotations

import logging
import os
import traceback
from time import perf_counter
from typing import Any, Mapping, Optional

from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from yearephem.api.routes import api as _astrology_bp
from yearephem.core.constants import CACHE_CAPACITY_DEFAULT
from yearephem.core.engine import EngineSettings
from yearephem.core.ephemeris_adapter import PositionOracle, get_default_oracle
from yearephem.utils.cache import YearResultCache
from yearephem.utils.config import load_config
from yearephem.utils.metrics import GAUGE_APP_UP, MET_REQUESTS, REQ_LATENCY
from yearephem.version import VERSION

_TRACKED_PREFIXES = ("/api/",)
_TRACKED_PATHS = ("/", "/health", "/healthz", "/metrics")

# ───────────────────────── helpers: logging & errors ─────────────────────────
def _configure_logging(app: Flask) -> None:
    gerr = logging.getLogger("gunicorn.error")
    if gerr.handlers:
        app.logger.handlers = gerr.handlers
        app.logger.setLevel(gerr.level)
        logging.getLogger("yearephem").handlers = gerr.handlers
        logging.getLogger("yearephem").setLevel(gerr.level)
    else:
        logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))

def _register_errors(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        app.logger.warning("HTTP %s at %s %s: %s", e.code, request.method, request.path, e.description)
        return jsonify(
            success=False,
            error="http_error",
            code=e.code,
            name=e.name,
            message=e.description,
            path=request.path,
        ), e.code

    @app.errorhandler(Exception)
    def _any(e: Exception):
        tb = traceback.format_exc()
        app.logger.error("UNHANDLED %s at %s %s\n%s", type(e).__name__, request.method, request.path, tb)
        return jsonify(
            success=False,
            error="internal_error",
            type=type(e).__name__,
            message=str(e),
            path=request.path,
        ), 500

# ───────────────────────── health & utils ─────────────────────────
def _register_health(app: Flask) -> None:
    @app.route("/", methods=["GET"])
    def root():
        return jsonify(ok=True, service="yearephem", version=VERSION, health="/health"), 200

    @app.route("/health", methods=["GET"])
    @app.route("/healthz", methods=["GET"])
    def health():
        return jsonify(ok=True, status="ok"), 200

def _metrics_auth_ok() -> bool:
    auth = request.authorization
    user = os.getenv("METRICS_USER", "")
    pw = os.getenv("METRICS_PASS", "")
    return bool(
        auth and auth.type == "basic" and auth.username == user and auth.password == pw and user and pw
    )

def _tracked(path: str) -> bool:
    return path.startswith(_TRACKED_PREFIXES) or path in _TRACKED_PATHS

# ───────────────────────── app factory ─────────────────────────
def create_app(oracle: Optional[PositionOracle] = None,
               config: Optional[Mapping[str, Any]] = None) -> Flask:
    """
    Build the Flask app. ``oracle`` defaults to the process-wide Skyfield
    oracle (kernel loaded lazily on first query); ``config`` defaults to
    load_config() ($YEAREPHEM_CONFIG or config/defaults.yaml).
    """
    app = Flask(__name__)
    app.json.sort_keys = False
    app.json.ensure_ascii = False
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)  # type: ignore

    _configure_logging(app)

    cfg = config if config is not None else load_config()
    app.cfg = cfg  # type: ignore[attr-defined]
    settings = EngineSettings.from_config(cfg)
    capacity = int(((cfg.get("cache") or {}).get("capacity")) or CACHE_CAPACITY_DEFAULT)
    app.extensions["yearephem"] = {
        "oracle": oracle if oracle is not None else get_default_oracle(),
        "cache": YearResultCache(capacity),
        "settings": settings,
    }

    # Seed metrics
    for route in ("/", "/health", "/healthz", "/metrics", "/api/astrology/year-ephemeris"):
        MET_REQUESTS.labels(route=route).inc(0)
        REQ_LATENCY.labels(route=route).observe(0.0)
    GAUGE_APP_UP.set(1.0)

    @app.before_request
    def _before():
        p = request.path or ""
        if _tracked(p):
            MET_REQUESTS.labels(route=p).inc()
            request._t0 = perf_counter()

    @app.after_request
    def _after(resp):
        p = request.path or ""
        if _tracked(p) and hasattr(request, "_t0"):
            REQ_LATENCY.labels(route=p).observe(perf_counter() - request._t0)
        return resp

    _register_health(app)
    _register_errors(app)
    app.register_blueprint(_astrology_bp)

    # /metrics (Basic Auth)
    @app.route("/metrics", methods=["GET"])
    def metrics_endpoint():
        if not _metrics_auth_ok():
            return Response("Unauthorized", 401, {"WWW-Authenticate": 'Basic realm="metrics"'})
        GAUGE_APP_UP.set(1.0)
        return Response(generate_latest(REGISTRY), mimetype=CONTENT_TYPE_LATEST)

    # CORS for browser UIs
    allowed_origin = os.environ.get("CORS_ALLOW_ORIGIN") or "*"
    CORS(
        app,
        resources={r"/.*": {"origins": allowed_origin}},
        supports_credentials=False,
        methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=600,
    )

    app.logger.info(
        "App initialized; version=%s refine_profile=%s cache_capacity=%d bodies=%s",
        VERSION, settings.policy.name, capacity, ",".join(settings.bodies),
    )
    return app

# ───────────────────────── app instance ─────────────────────────
app = create_app()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
