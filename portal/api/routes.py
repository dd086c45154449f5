"""
Client Portal API Blueprint
All /api routes live on one blueprint; the route modules at the bottom of
this file register themselves on ``bp`` when imported.
"""

import time
import logging
import functools

from flask import Blueprint, g, jsonify, request

from portal.core.session import session_from_request

log = logging.getLogger("portal.api")

bp = Blueprint("portal", __name__)


# ── Request-level structured logging ────────────────────────────────────────
@bp.before_app_request
def _log_request_start():
    g.request_started = time.time()


@bp.after_app_request
def _log_request_end(response):
    started = g.get("request_started")
    if started is not None and request.path != "/api/health":
        duration_ms = round((time.time() - started) * 1000, 1)
        log.info("%s %s → %d (%.0fms)",
                 request.method, request.path, response.status_code, duration_ms,
                 extra={"route": request.path, "method": request.method,
                        "status": response.status_code, "duration_ms": duration_ms})
    return response


# ── Auth ────────────────────────────────────────────────────────────────────
def client_required(f):
    """401 JSON unless the request carries a valid client session cookie."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        session = session_from_request()
        if not session:
            return jsonify({"error": "Unauthorized"}), 401
        g.client_session = session
        return f(*args, **kwargs)
    return wrapper


def current_client() -> dict:
    return g.client_session


# ── Helpers ─────────────────────────────────────────────────────────────────
def json_error(message, status, **details):
    return jsonify({"error": message, **details}), status


def int_arg(name: str, default: int) -> int:
    """Integer query parameter; unparseable values fall back to ``default``."""
    try:
        return int(request.args.get(name) or default)
    except ValueError:
        return default


def request_json() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


# Route modules register on bp
from portal.api.modules import (  # noqa: E402,F401
    routes_auth, routes_portal, routes_quote, routes_supplier, routes_system,
)
