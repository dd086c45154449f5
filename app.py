#!/usr/bin/env python3
"""
Client Portal: Application Entry Point
Creates the Flask app and registers the portal API Blueprint.
"""

import os
import logging
from datetime import date, datetime

from flask import Flask
from flask.json.provider import DefaultJSONProvider

log = logging.getLogger("portal")


class PortalJSONProvider(DefaultJSONProvider):
    """ISO-8601 dates in API responses; non-ASCII (Slovak) text kept as is."""

    ensure_ascii = False
    sort_keys = False

    @staticmethod
    def default(o):
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        return DefaultJSONProvider.default(o)


def create_app(testing: bool = False):
    """Application factory. Tests keep pytest's log capture by skipping setup_logging()."""
    from portal.core.config import get_key
    app = Flask(__name__)
    app.config["TESTING"] = testing
    app.json = PortalJSONProvider(app)
    app.secret_key = get_key("secret_key")

    # ── Logging ───────────────────────────────────────────────────────────────
    if not testing:
        try:
            from logging_config import setup_logging
            setup_logging()
        except Exception as e:
            log.warning("Logging setup skipped: %s", e)

    # ── Local database schema ─────────────────────────────────────────────────
    try:
        from portal.core.db import init_db, is_database_configured
        if is_database_configured():
            init_db()
        else:
            log.warning("DB_URL not set: login and client data are unavailable")
    except Exception as e:
        log.warning("DB init skipped: %s", e)

    # Register the portal blueprint (all routes)
    from portal.api.routes import bp
    app.register_blueprint(bp)

    # ── Security middleware (rate limiting, headers) ──────────────────────────
    try:
        from portal.core.security import init_security
        init_security(app)
    except Exception as e:
        log.warning("Security init skipped: %s", e)

    # ── Settings report ───────────────────────────────────────────────────────
    try:
        from portal.core.config import startup_check
        startup_check()
    except Exception as e:
        log.warning("Startup checks skipped: %s", e)

    return app


# For gunicorn: gunicorn app:app
app = create_app()

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=False)
