"""
portal/core/db.py: Shared CRM database access

The portal does not own its data. Customers, orders, calculations and shares
are written by the main business-flow application; the portal reads them and
records client responses. The database is a libSQL/SQLite file addressed by
DB_URL (``file:/path/to/crm.db`` or a plain path).

TABLES (as used by the portal):
  customers: CRM clients with billing/correspondence data and rating
  orders_v2: production orders (timestamps in unix seconds)
  order_services: services per order, input_fields_data JSON
  order_tasks_v2: department tasks per service
  organization: tenant with invoicing metadata JSON
  tools: per-organization settings (global_settings config)
  table_definitions: EAV table registry (calculations, projects, supplier_*)
  entities / attributes: EAV rows, one attribute per typed value column
  calculation_shares: share tokens handed to clients
  calculation_quote_bundles: multi-calculation share bundles
  calculation_activities: audit of client responses and questions
"""

import json
import time
import uuid
import sqlite3
import logging
import threading
from datetime import datetime, timezone
from contextlib import contextmanager

from portal.core.config import get_key

log = logging.getLogger("portal.db")

_db_lock = threading.Lock()
_connection_error = None


# ── Path resolution ───────────────────────────────────────────────────────────

def is_database_configured() -> bool:
    return bool(get_key("db_url"))


def get_connection_error():
    """Last connection problem, for the health endpoint."""
    return _connection_error


def db_path() -> str:
    """Resolve DB_URL to a local SQLite path."""
    global _connection_error
    url = get_key("db_url")
    if not url:
        _connection_error = "DB_URL nie je nastavená. Pridajte DB_URL do prostredia."
        raise RuntimeError(_connection_error)
    if url.startswith(("libsql://", "http://", "https://", "wss://")):
        _connection_error = f"Nepodarilo sa pripojiť k databáze: remote URL {url.split('://')[0]} is not supported"
        raise RuntimeError(_connection_error)
    if url.startswith("file://"):
        return url[len("file://"):]
    if url.startswith("file:"):
        return url[len("file:"):]
    return url


# ── Connection factory ────────────────────────────────────────────────────────

@contextmanager
def get_db():
    """Serialized SQLite connection with WAL mode for multi-worker gunicorn."""
    global _connection_error
    path = db_path()
    with _db_lock:
        try:
            conn = sqlite3.connect(path, timeout=30, check_same_thread=False)
        except sqlite3.Error as e:
            _connection_error = f"Nepodarilo sa pripojiť k databáze: {e}"
            raise RuntimeError(_connection_error) from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


# ── Schema ────────────────────────────────────────────────────────────────────
# Mirrors the columns the main application writes. Created only when missing
# (local development and tests); production tables already exist.
SCHEMA = """
CREATE TABLE IF NOT EXISTS customers (
    id                        TEXT PRIMARY KEY,
    entity_id                 TEXT,
    name                      TEXT NOT NULL,
    email                     TEXT,
    contact_email             TEXT,
    business_name             TEXT,
    phone                     TEXT,
    organization_id           TEXT,
    billing_street            TEXT,
    billing_city              TEXT,
    billing_postal_code       TEXT,
    billing_country           TEXT,
    corr_street               TEXT,
    corr_city                 TEXT,
    corr_postal_code          TEXT,
    corr_country              TEXT,
    ico                       TEXT,
    dic                       TEXT,
    ic_dph                    TEXT,
    overall_rating            REAL,
    rating_class              TEXT,
    risk_level                TEXT,
    risk_score                REAL,
    financial_score           REAL,
    stability_score           REAL,
    rating_recommendation     TEXT,
    rating_badges             TEXT,           -- JSON array of badge labels
    rating_details            TEXT,           -- JSON {risks, strengths, concerns}
    rating_last_update        INTEGER,
    total_revenue             REAL,
    yearly_revenue            REAL,
    current_profit            REAL,
    payment_discipline_rating TEXT,
    customer_category         TEXT
);

CREATE TABLE IF NOT EXISTS orders_v2 (
    id                  TEXT PRIMARY KEY,
    order_number        TEXT,
    name                TEXT,
    status              TEXT DEFAULT 'DRAFT',
    priority            TEXT DEFAULT 'medium',
    client_name         TEXT,
    client_entity_id    TEXT,
    calculation_id      TEXT,
    total_value         REAL,
    services_count      INTEGER,
    start_date          INTEGER,
    planned_end_date    INTEGER,
    actual_end_date     INTEGER,
    created_at          INTEGER,
    updated_at          INTEGER
);

CREATE TABLE IF NOT EXISTS order_services (
    id                  TEXT PRIMARY KEY,
    order_id            TEXT NOT NULL,
    service_id          TEXT,
    service_name        TEXT,
    department_name     TEXT,
    service_category    TEXT,
    status              TEXT DEFAULT 'pending',
    quantity            REAL,
    unit                TEXT,
    base_price          REAL,
    sale_price          REAL,
    total_price         REAL,
    input_fields_data   TEXT,           -- JSON calculator inputs (width_mm_1, ...)
    sequence            INTEGER DEFAULT 0,
    created_at          INTEGER
);

CREATE TABLE IF NOT EXISTS order_tasks_v2 (
    id                  TEXT PRIMARY KEY,
    order_id            TEXT NOT NULL,
    service_id          TEXT,
    department_name     TEXT,
    status              TEXT DEFAULT 'pending',
    estimated_duration  REAL,
    started_at          INTEGER,
    completed_at        INTEGER,
    sequence            INTEGER DEFAULT 0,
    created_at          INTEGER
);

CREATE TABLE IF NOT EXISTS organization (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    metadata    TEXT                    -- JSON, invoicing block under "invoicing"
);

CREATE TABLE IF NOT EXISTS tools (
    id              TEXT PRIMARY KEY,
    organization_id TEXT,
    type            TEXT,
    config          TEXT                -- JSON, sometimes double-encoded
);

CREATE TABLE IF NOT EXISTS table_definitions (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    organization_id TEXT,
    description     TEXT,
    created_at      TEXT
);

CREATE TABLE IF NOT EXISTS entities (
    id          TEXT PRIMARY KEY,
    table_id    TEXT NOT NULL,
    entity_id   TEXT,
    created_at  INTEGER,
    updated_at  INTEGER
);

CREATE TABLE IF NOT EXISTS attributes (
    id              TEXT PRIMARY KEY,
    entity_id       TEXT NOT NULL,
    attribute_name  TEXT NOT NULL,
    value_type      TEXT,
    string_value    TEXT,
    number_value    REAL,
    boolean_value   INTEGER,
    date_value      TEXT,
    json_value      TEXT,
    created_at      INTEGER
);

CREATE TABLE IF NOT EXISTS calculation_shares (
    id              TEXT PRIMARY KEY,
    calculation_id  TEXT NOT NULL,
    token           TEXT NOT NULL,
    expires_at      INTEGER,
    status          TEXT DEFAULT 'active',
    client_response TEXT,
    client_comment  TEXT,
    responded_at    INTEGER,
    organization_id TEXT,
    created_at      INTEGER
);

CREATE TABLE IF NOT EXISTS calculation_quote_bundles (
    id                  TEXT PRIMARY KEY,
    token               TEXT NOT NULL,
    calculation_ids     TEXT,           -- JSON array of calculation ids
    item_share_tokens   TEXT,           -- JSON {calculationId: shareToken}
    expires_at          INTEGER,
    status              TEXT DEFAULT 'active',
    organization_id     TEXT,
    project_name        TEXT,
    created_at          INTEGER
);

CREATE TABLE IF NOT EXISTS calculation_activities (
    id              TEXT PRIMARY KEY,
    calculation_id  TEXT NOT NULL,
    action          TEXT NOT NULL,
    description     TEXT,
    metadata        TEXT,               -- JSON {comment, respondedAt, clientName}
    organization_id TEXT,
    created_at      INTEGER
);

CREATE INDEX IF NOT EXISTS idx_attr_entity ON attributes(entity_id);
CREATE INDEX IF NOT EXISTS idx_attr_name_str ON attributes(attribute_name, string_value);
CREATE INDEX IF NOT EXISTS idx_entities_table ON entities(table_id);
CREATE INDEX IF NOT EXISTS idx_shares_calc ON calculation_shares(calculation_id);
CREATE INDEX IF NOT EXISTS idx_orders_client ON orders_v2(client_entity_id);
CREATE INDEX IF NOT EXISTS idx_services_order ON order_services(order_id);
CREATE INDEX IF NOT EXISTS idx_tasks_order ON order_tasks_v2(order_id);
CREATE INDEX IF NOT EXISTS idx_activities_calc ON calculation_activities(calculation_id);
"""


def init_db():
    """Create missing tables. Safe to run on every boot."""
    with get_db() as conn:
        conn.executescript(SCHEMA)
    log.info("Database schema ready at %s", db_path())


# ── Value helpers ─────────────────────────────────────────────────────────────

def new_id() -> str:
    return str(uuid.uuid4())


def now_ts() -> int:
    """Current time in unix seconds (relational tables store seconds)."""
    return int(time.time())


def now_iso() -> str:
    """Current UTC time as an ISO string with milliseconds and Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def ts_to_datetime(ts):
    """Unix seconds to an aware UTC datetime. Falsy input gives None."""
    if not ts:
        return None
    try:
        return datetime.fromtimestamp(float(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def parse_datetime(value):
    """Parse an ISO string or epoch-milliseconds number stored in an attribute."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def loads_json(raw, default=None):
    """Decode a JSON column. Already-decoded values pass through."""
    if raw is None or raw == "":
        return default
    if not isinstance(raw, (str, bytes)):
        return raw
    try:
        return json.loads(raw)
    except (ValueError, TypeError):
        return default
