# routes_system.py
# Health check for the deploy platform: database reachability and which
# settings are configured (values masked).

import logging

from flask import jsonify

from portal import __version__
from portal.api.routes import bp
from portal.core.config import is_production, validate_all
from portal.core.db import get_connection_error, get_db, is_database_configured

log = logging.getLogger("portal.system")


@bp.route("/api/health")
def api_health():
    """Database status and configured settings. 503 while the database is unusable."""
    health = {"status": "ok", "version": __version__,
              "environment": "production" if is_production() else "development",
              "checks": {}}

    if not is_database_configured():
        health["checks"]["database"] = {"ok": False, "error": get_connection_error() or "DB_URL not set"}
    else:
        try:
            with get_db() as conn:
                conn.execute("SELECT 1").fetchone()
            health["checks"]["database"] = {"ok": True}
        except Exception as e:
            log.error("Health check database error: %s", e)
            health["checks"]["database"] = {"ok": False, "error": str(e)}

    report = validate_all()
    health["checks"]["settings"] = {
        "set": report["set"],
        "total": report["total"],
        "warnings": report["warnings"],
        "values": {name: s["masked"] for name, s in report["settings"].items()},
    }

    if not health["checks"]["database"]["ok"]:
        health["status"] = "degraded"
        return jsonify(health), 503
    return jsonify(health)
