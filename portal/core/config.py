"""
config.py: Centralized settings for the client portal

Single source of truth for every value the portal reads from the environment.
Values are read at call time so tests and long-running workers pick up
changes without a restart.

Env vars:
  DB_URL: Shared CRM database (file: URL or path)
  SECRET_KEY: Flask secret key
  BUSINESS_FLOW_API_URL: Upstream CRM REST API base URL
  BUSINESS_FLOW_API_KEY: X-API-Key for the upstream public API
  PUBLIC_MAIN_APP_URL: Main app base URL (quote-response webhook)
  GOOGLE_API_KEY: Google Cloud Translation (PDF quotes in en/de-AT)
  PORTAL_DATA_DIR: Logs, logo and local assets
  PORTAL_ENV: "production" switches URL defaults and hides debug routes
  PROXY_HOPS: Trusted proxies appending X-Forwarded-For (1 in production, 0 locally)

Security:
  - Sensitive values are never logged in full
  - Health endpoint shows which settings are set (not values)
"""

import os
import logging

log = logging.getLogger("portal.config")

PRODUCTION_API_URL = "https://business-flow-ai.up.railway.app"
LOCAL_API_URL = "http://localhost:3000"

_THIS_FILE = os.path.abspath(__file__)
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(_THIS_FILE)))

# ─── Setting Definitions ─────────────────────────────────────────────────────

_REGISTRY = {
    "db_url": {
        "env": "DB_URL",
        "required": True,
        "desc": "Shared CRM database (file: URL or path)",
        "areas": ["database"],
    },
    "secret_key": {
        "env": "SECRET_KEY",
        "required": False,
        "desc": "Flask secret key",
        "areas": ["app"],
        "default": "client-portal-dev",
        "sensitive": True,
    },
    "business_flow_url": {
        "env": "BUSINESS_FLOW_API_URL",
        "required": False,
        "desc": "Upstream CRM REST API base URL",
        "areas": ["product_templates", "order_request"],
        "default": PRODUCTION_API_URL,
        "dev_default": LOCAL_API_URL,
    },
    "business_flow_key": {
        "env": "BUSINESS_FLOW_API_KEY",
        "required": False,
        "desc": "API key for the upstream public API",
        "areas": ["product_templates", "order_request"],
        "sensitive": True,
    },
    "main_app_url": {
        "env": "PUBLIC_MAIN_APP_URL",
        "required": False,
        "desc": "Main app base URL for quote-response webhooks",
        "areas": ["quote_response"],
        "default": PRODUCTION_API_URL,
    },
    "google_api_key": {
        "env": "GOOGLE_API_KEY",
        "required": False,
        "desc": "Google Cloud Translation API key",
        "areas": ["quote_pdf"],
        "sensitive": True,
    },
    "proxy_hops": {
        "env": "PROXY_HOPS",
        "required": False,
        "desc": "Reverse proxies in front of the app that append X-Forwarded-For",
        "areas": ["security"],
        "default": "1",
        "dev_default": "0",
    },
}


# ─── Public API ──────────────────────────────────────────────────────────────

def is_production() -> bool:
    """True on the production deployment (PORTAL_ENV or Railway)."""
    if os.environ.get("PORTAL_ENV", "").strip().lower() == "production":
        return True
    return os.environ.get("RAILWAY_ENVIRONMENT") is not None


def get_key(name: str) -> str:
    """Get a setting by registry name. Blank values count as unset."""
    entry = _REGISTRY.get(name)
    if not entry:
        log.warning("Unknown setting requested: %s", name)
        return ""

    val = os.environ.get(entry["env"], "").strip()
    if val:
        return val
    if "dev_default" in entry and not is_production():
        return entry["dev_default"]
    return entry.get("default", "")


def data_dir() -> str:
    """Directory for logs and local assets (logo, fonts)."""
    env_dir = os.environ.get("PORTAL_DATA_DIR", "").strip()
    if env_dir:
        return env_dir
    return os.path.join(PROJECT_ROOT, "data")


def mask(value: str) -> str:
    """Mask a secret for safe logging. Shows first 8 chars."""
    if not value:
        return "(not set)"
    if len(value) <= 12:
        return value[:4] + "****"
    return value[:8] + "****" + f"({len(value)} chars)"


def validate_all() -> dict:
    """Validate all settings. Returns status report."""
    results = {}
    warnings = []
    for name, entry in _REGISTRY.items():
        val = get_key(name)
        is_set = bool(os.environ.get(entry["env"], "").strip())
        results[name] = {
            "set": is_set,
            "env": entry["env"],
            "desc": entry["desc"],
            "masked": mask(val) if not entry.get("sensitive") else ("set" if is_set else "not set"),
            "required": entry.get("required", False),
            "areas": entry["areas"],
        }
        if entry.get("required") and not is_set:
            warnings.append(f"REQUIRED setting missing: {entry['env']} ({entry['desc']})")

    return {
        "settings": results,
        "total": len(results),
        "set": sum(1 for r in results.values() if r["set"]),
        "missing": sum(1 for r in results.values() if not r["set"]),
        "warnings": warnings,
    }


def startup_check():
    """Run on startup. Logs warnings for missing critical settings."""
    report = validate_all()
    log.info("Settings: %d/%d configured (%s)", report["set"], report["total"],
             "production" if is_production() else "development")

    from portal.forms.quote_pdf import SYSTEM_FONT_DIRS, find_pdf_font
    if not find_pdf_font():
        report["warnings"].append(
            "DejaVuSans.ttf not found in %s; PDF quotes use Helvetica, which has no "
            "glyphs for ľ, ť, č, ň" % ", ".join([os.path.join(data_dir(), "fonts"), *SYSTEM_FONT_DIRS]))
    for w in report["warnings"]:
        log.warning("CONFIG: %s", w)
    return report
