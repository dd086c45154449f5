"""
Shared pytest fixtures for the client portal test suite.

Every test gets its own SQLite database (DB_URL) and data directory; the
quote-response webhook is replaced by a mock so nothing leaves the process.
"""
import json
import time
import uuid
from unittest.mock import MagicMock
from urllib.parse import quote

import pytest
from flask.testing import FlaskClient

from portal.core.db import get_db, init_db
from portal.core.eav import CALCULATIONS_TABLE_ID, PROJECTS_TABLE_ID, create_entity
from portal.core.security import _limiter
from portal.core.session import create_session_token
from portal.integrations import business_flow, translate

ORG_ID = "org-adsun"
CUSTOMER_ID = "cust-001"
CUSTOMER_ENTITY_ID = "ent-cust-001"
CUSTOMER_NAME = "Reklama Plus s.r.o."
CUSTOMER_EMAIL = "objednavky@reklamaplus.sk"

_ENV_CLEARED = ("GOOGLE_API_KEY", "BUSINESS_FLOW_API_URL", "BUSINESS_FLOW_API_KEY",
                "PUBLIC_MAIN_APP_URL", "PORTAL_ENV", "RAILWAY_ENVIRONMENT", "SECRET_KEY",
                "PROXY_HOPS")


# ── Isolated database + data directory (per test) ─────────────────────────────

@pytest.fixture(autouse=True)
def portal_env(tmp_path, monkeypatch):
    """Fresh SQLite file with the portal schema; rate limiting off."""
    data = tmp_path / "data"
    data.mkdir()
    for var in _ENV_CLEARED:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("DB_URL", f"file:{tmp_path / 'portal.db'}")
    monkeypatch.setenv("PORTAL_DATA_DIR", str(data))
    monkeypatch.setenv("DISABLE_RATE_LIMIT", "true")
    init_db()
    translate.clear_cache()
    _limiter.reset()
    return str(data)


@pytest.fixture(autouse=True)
def webhook(monkeypatch):
    """Mock for the quote-response webhook to the main application."""
    sent = MagicMock(return_value=True)
    monkeypatch.setattr(business_flow, "notify_quote_response", sent)
    return sent


# ── Flask test client ─────────────────────────────────────────────────────────

def session_cookie_header(**overrides):
    session = {
        "customerId": CUSTOMER_ID,
        "customerEntityId": CUSTOMER_ENTITY_ID,
        "customerName": CUSTOMER_NAME,
        "email": CUSTOMER_EMAIL,
        "organizationId": ORG_ID,
    }
    session.update(overrides)
    return {"Cookie": f"client_session={quote(create_session_token(session), safe='')}"}


class AuthenticatedClient:
    """Wraps Flask test client to send the client session cookie on every request."""
    def __init__(self, client, headers):
        self._client = client
        self._headers = headers

    def get(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.get(*args, **kwargs)

    def post(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.post(*args, **kwargs)


class _HeaderCookieClient(FlaskClient):
    """Test client that keeps an explicit ``Cookie`` header when its cookie jar is empty.

    Werkzeug >= 2.3 drops a caller-supplied ``Cookie`` header whenever the jar
    has no matching cookies; the suite sends session cookies as raw headers.
    """
    def _add_cookies_to_wsgi(self, environ):
        explicit = environ.get("HTTP_COOKIE")
        super()._add_cookies_to_wsgi(environ)
        if explicit and "HTTP_COOKIE" not in environ:
            environ["HTTP_COOKIE"] = explicit


@pytest.fixture
def app(portal_env):
    """Flask app built by the factory against the per-test database."""
    from app import create_app
    application = create_app(testing=True)
    application.test_client_class = _HeaderCookieClient
    return application


@pytest.fixture
def client(app):
    """Logged-in client (session for the seeded customer)."""
    with app.test_client() as c:
        yield AuthenticatedClient(c, session_cookie_header())


@pytest.fixture
def anon_client(app):
    """Test client without a session cookie."""
    with app.test_client() as c:
        yield c


# ── Seed helpers ──────────────────────────────────────────────────────────────

def _now():
    return int(time.time())


@pytest.fixture
def seed_organization():
    def _seed(org_id=ORG_ID, name="ADSUN s.r.o.", metadata=None):
        if metadata is None:
            metadata = {
                "email": "info@adsun.sk",
                "phone": "+421 900 123 456",
                "invoicing": {
                    "companyName": "ADSUN s.r.o.",
                    "street": "Priemyselna 12",
                    "postalCode": "917 01",
                    "city": "Trnava",
                    "ico": "12345678",
                    "dic": "2020123456",
                    "icDph": "SK2020123456",
                    "email": "info@adsun.sk",
                    "phone": "+421 900 123 456",
                    "vatRate": 23,
                },
            }
        with get_db() as conn:
            conn.execute("INSERT INTO organization (id, name, metadata) VALUES (?, ?, ?)",
                         (org_id, name, json.dumps(metadata)))
        return org_id
    return _seed


@pytest.fixture
def seed_customer():
    def _seed(**fields):
        row = {
            "id": CUSTOMER_ID,
            "entity_id": CUSTOMER_ENTITY_ID,
            "name": CUSTOMER_NAME,
            "email": CUSTOMER_EMAIL,
            "contact_email": "jana.kovacova@reklamaplus.sk",
            "business_name": "Reklama Plus",
            "phone": "+421 905 111 222",
            "organization_id": ORG_ID,
            "billing_street": "Hlavna 5",
            "billing_city": "Bratislava",
            "billing_postal_code": "811 01",
            "billing_country": "Slovensko",
            "ico": "87654321",
            "dic": "2021987654",
            "ic_dph": "SK2021987654",
        }
        row.update(fields)
        cols = ", ".join(row)
        with get_db() as conn:
            conn.execute(f"INSERT INTO customers ({cols}) VALUES ({', '.join('?' * len(row))})",
                         list(row.values()))
        return row["id"]
    return _seed


@pytest.fixture
def calculation_data():
    """calculationData with products, services and materials as the main app saves it."""
    return {
        "products": [
            {
                "id": "prod-banner",
                "name": "Banner 3x1m",
                "quantity": 2,
                "totalSale": 100,
                "variant": {"unit": "ks"},
                "templateConfigLabels": {"id": "x", "material": "PVC 510g", "finish": "Oka"},
                "customFieldValues": {"width_mm": 3000, "height_mm": 1000, "pieces": 2},
            },
        ],
        "services": [
            {"id": "svc-install", "service": {"name": "Montaz"}, "totalSale": 50},
            {"id": "svc-free", "name": "Konzultacia", "totalSale": 0},
        ],
        "materials": [
            {"id": "mat-rope", "name": "Lanko", "quantity": 4, "unit": "ks", "totalSale": 50},
        ],
        "selectedClient": {"entityId": CUSTOMER_ID, "name": CUSTOMER_NAME},
        "overallDeliveryDays": 7,
    }


@pytest.fixture
def seed_calculation(calculation_data):
    """Calculation entity; returns its id."""
    def _seed(calc_id=None, name="Banner na fasadu", data=None, table_id=CALCULATIONS_TABLE_ID,
              extra=None, **attrs):
        calc_id = calc_id or str(uuid.uuid4())
        values = {
            "id": calc_id,
            "name": name,
            "calculationNumber": "K-2025-0042",
            "clientEntityId": CUSTOMER_ID,
            "approvalStatus": "SENT",
            "projectId": "proj-001",
            "actualTotalPrice": 200,
            "createdAt": "2025-03-01T08:00:00.000Z",
            "updatedAt": "2025-03-02T08:00:00.000Z",
            "calculationData": calculation_data if data is None else data,
        }
        values.update(attrs)
        values.update(extra or {})
        with get_db() as conn:
            create_entity(conn, table_id, values)
        return calc_id
    return _seed


@pytest.fixture
def seed_project():
    def _seed(project_id="proj-001", name="Jarna kampan", **attrs):
        values = {
            "id": project_id,
            "name": name,
            "projectNumber": "P-2025-007",
            "companyName": CUSTOMER_NAME,
            "clientEntityId": CUSTOMER_ID,
            "totalPrice": 1200,
            "calculationsCount": 2,
            "createdAt": "2025-02-01T08:00:00.000Z",
            "updatedAt": "2025-02-03T08:00:00.000Z",
        }
        values.update(attrs)
        with get_db() as conn:
            create_entity(conn, PROJECTS_TABLE_ID, values)
        return project_id
    return _seed


@pytest.fixture
def seed_share():
    def _seed(calc_id, token=None, expires_in=7 * 86400, status="active", org_id=ORG_ID,
              created_at=None):
        token = token or uuid.uuid4().hex
        with get_db() as conn:
            conn.execute(
                """INSERT INTO calculation_shares
                   (id, calculation_id, token, expires_at, status, organization_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (str(uuid.uuid4()), calc_id, token, _now() + expires_in, status, org_id,
                 created_at or _now()),
            )
        return token
    return _seed


@pytest.fixture
def seed_order():
    def _seed(order_id=None, client_entity_id=CUSTOMER_ID, client_name=CUSTOMER_NAME,
              total_value=500.0, status="IN_PRODUCTION", created_at=None, **fields):
        order_id = order_id or str(uuid.uuid4())
        row = {
            "id": order_id,
            "order_number": "Z-2025-0100",
            "name": "Kalkulácia - Banner na fasadu",
            "status": status,
            "priority": "medium",
            "client_name": client_name,
            "client_entity_id": client_entity_id,
            "total_value": total_value,
            "created_at": created_at or _now(),
            "updated_at": _now(),
        }
        row.update(fields)
        with get_db() as conn:
            conn.execute(
                f"INSERT INTO orders_v2 ({', '.join(row)}) VALUES ({', '.join('?' * len(row))})",
                list(row.values()),
            )
        return order_id
    return _seed


@pytest.fixture
def rows():
    """Run a query against the test database and return all rows."""
    def _rows(sql, params=()):
        with get_db() as conn:
            return [dict(r) for r in conn.execute(sql, params).fetchall()]
    return _rows
