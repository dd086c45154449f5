"""
Supplier RFQ links: lookup by token, quote submission, auto-apply into the
calculation and HTML form parsing.
"""
import json

from conftest import ORG_ID
from portal.core.db import get_db
from portal.core.eav import create_entity, ensure_table, find_entity_id, load_attributes
from portal.core.supplier_rfq import (
    apply_supplier_quote_to_calculation, get_supplier_rfq_by_token,
    parse_supplier_form, submit_supplier_quote,
)

TOKEN = "rfq-token-123"


def _seed_rfq(token=TOKEN, org_id=ORG_ID, **attrs):
    values = {
        "id": "rfq-1",
        "token": token,
        "supplierEmail": "ponuky@dodavatel.sk",
        "supplierName": "Dodavatel s.r.o.",
        "expiresAt": "2099-01-01T00:00:00.000Z",
        "items": [{"id": "prod-banner", "name": "Banner 3x1m", "quantity": 2}],
    }
    values.update(attrs)
    with get_db() as conn:
        table_id = ensure_table(conn, "supplier_requests", org_id)
        create_entity(conn, table_id, values)
    return token


def _calculation_table():
    with get_db() as conn:
        return ensure_table(conn, "calculations", ORG_ID)


def _calculation_data(calc_id):
    with get_db() as conn:
        entity_id = find_entity_id(conn, None, "id", calc_id)
        return json.loads(conn.execute(
            "SELECT json_value FROM attributes WHERE entity_id = ? AND attribute_name = 'calculationData'",
            (entity_id,)).fetchone()[0])


ITEMS = [{"itemId": "prod-banner", "unitPrice": 18.5, "vatRate": None, "leadTimeDays": 4},
         {"itemId": "mat-rope", "unitPrice": 0.9, "vatRate": 23, "leadTimeDays": 2}]


# ═══════════════════════════════════════════════════════════════════════════════
# Lookup
# ═══════════════════════════════════════════════════════════════════════════════

class TestLookup:

    def test_found_with_organization(self, seed_organization):
        seed_organization()
        _seed_rfq(autoApply=True)
        found = get_supplier_rfq_by_token(TOKEN)
        assert found["organization"] == {"id": ORG_ID, "name": "ADSUN s.r.o."}
        rfq = found["rfq"]
        assert rfq["organizationId"] == ORG_ID
        assert rfq["items"][0]["name"] == "Banner 3x1m"
        assert rfq["autoApply"] == 1

    def test_unknown_token(self):
        _seed_rfq()
        assert get_supplier_rfq_by_token("nope") is None

    def test_database_error(self, monkeypatch):
        monkeypatch.delenv("DB_URL")
        assert get_supplier_rfq_by_token(TOKEN) is None


# ═══════════════════════════════════════════════════════════════════════════════
# Submission
# ═══════════════════════════════════════════════════════════════════════════════

class TestSubmit:

    def test_stores_quote(self, rows):
        _seed_rfq()
        result = submit_supplier_quote(TOKEN, ITEMS, notes="Dodanie do tyzdna")
        assert result["success"] is True

        with get_db() as conn:
            table = conn.execute("SELECT id FROM table_definitions WHERE name = 'supplier_quotes'").fetchone()
            entity_id = find_entity_id(conn, table["id"], "id", result["quoteId"])
            attrs = load_attributes(conn, entity_id)
        assert attrs["requestId"] == "rfq-1"
        assert attrs["status"] == "received"
        assert attrs["supplierEmail"] == "ponuky@dodavatel.sk"
        assert attrs["notes"] == "Dodanie do tyzdna"
        assert json.loads(attrs["items"])[0]["unitPrice"] == 18.5
        assert rows("SELECT entity_id FROM entities WHERE id = ?", (entity_id,))[0]["entity_id"] \
            == result["quoteId"]

    def test_supplier_fields_override_request(self):
        _seed_rfq()
        result = submit_supplier_quote(TOKEN, ITEMS, supplier_email="iny@dodavatel.sk")
        with get_db() as conn:
            attrs = load_attributes(conn, find_entity_id(conn, None, "id", result["quoteId"]))
        assert attrs["supplierEmail"] == "iny@dodavatel.sk"
        assert attrs["supplierName"] == "Dodavatel s.r.o."

    def test_unknown_token(self):
        assert submit_supplier_quote("nope", ITEMS) == {"success": False, "error": "RFQ not found"}

    def test_expired(self):
        _seed_rfq(expiresAt="2020-01-01T00:00:00.000Z")
        assert submit_supplier_quote(TOKEN, ITEMS) == {"success": False, "error": "Link expired"}

    def test_request_without_organization(self):
        _seed_rfq(org_id=None)
        assert submit_supplier_quote(TOKEN, ITEMS)["error"] == "Organization not found"

    def test_database_error(self, monkeypatch):
        monkeypatch.delenv("DB_URL")
        assert submit_supplier_quote(TOKEN, ITEMS) == {"success": False, "error": "Internal error"}


class TestAutoApply:

    def test_applied_when_requested(self, seed_calculation):
        calc_id = seed_calculation(table_id=_calculation_table())
        _seed_rfq(autoApply=True, calculationId=calc_id)
        result = submit_supplier_quote(TOKEN, ITEMS, supplier_name="Dodavatel")
        assert result["success"]

        data = _calculation_data(calc_id)
        banner = data["products"][0]
        assert banner["variant"]["purchaseBasePrice"] == 18.5
        assert banner["purchase"]["selectedQuoteId"] == result["quoteId"]
        assert banner["purchase"]["cost"]["vatRate"] == 20
        assert banner["purchase"]["leadTimeDays"] == 4
        assert banner["purchase"]["supplierInfo"]["name"] == "Dodavatel"
        rope = data["materials"][0]
        assert rope["purchase"]["cost"] == {"unitPrice": 0.9, "currency": "EUR", "vatRate": 23}
        assert "purchase" not in data["services"][0]

    def test_not_applied_without_flag(self, seed_calculation):
        calc_id = seed_calculation(table_id=_calculation_table())
        _seed_rfq(calculationId=calc_id)
        submit_supplier_quote(TOKEN, ITEMS)
        assert "purchase" not in _calculation_data(calc_id)["products"][0]

    def test_apply_failure_keeps_submission(self):
        _seed_rfq(autoApply=True, calculationId="missing-calc")
        assert submit_supplier_quote(TOKEN, ITEMS)["success"] is True

    def test_apply_without_calculation_table(self, seed_calculation):
        calc_id = seed_calculation()
        assert apply_supplier_quote_to_calculation(calc_id, ORG_ID, ITEMS, "q1") is False

    def test_apply_updates_timestamp(self, seed_calculation):
        calc_id = seed_calculation(table_id=_calculation_table())
        assert apply_supplier_quote_to_calculation(calc_id, ORG_ID, ITEMS, "q1")
        with get_db() as conn:
            attrs = load_attributes(conn, find_entity_id(conn, None, "id", calc_id), ["updatedAt"])
        assert attrs["updatedAt"] != "2025-03-02T08:00:00.000Z"


class TestParseForm:

    def test_items_by_index(self):
        parsed = parse_supplier_form({
            "items[1][itemId]": "mat-rope",
            "items[1][unitPrice]": "0.9",
            "items[0][itemId]": "prod-banner",
            "items[0][unitPrice]": "18.50",
            "items[0][vatRate]": "20",
            "items[0][leadTimeDays]": "4.0",
            "supplierName": "Dodavatel",
            "notes": "",
            "ignored": "x",
        })
        assert parsed["items"] == [
            {"itemId": "prod-banner", "unitPrice": 18.5, "vatRate": 20.0, "leadTimeDays": 4},
            {"itemId": "mat-rope", "unitPrice": 0.9, "vatRate": None, "leadTimeDays": None},
        ]
        assert parsed["supplierName"] == "Dodavatel"
        assert parsed["notes"] == ""
        assert parsed["supplierEmail"] is None

    def test_invalid_numbers(self):
        parsed = parse_supplier_form({"items[0][unitPrice]": "abc", "items[0][leadTimeDays]": "x"})
        assert parsed["items"][0]["unitPrice"] is None
        assert parsed["items"][0]["leadTimeDays"] is None
        assert parsed["items"][0]["itemId"] is None
