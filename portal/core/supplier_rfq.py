"""
Supplier RFQ (request for quotation) links.

The main application sends suppliers a tokenised link to a
``supplier_requests`` entity. The supplier answers with unit prices, VAT
and lead times per item; the answer is stored as a ``supplier_quotes``
entity and, when the request has ``autoApply`` set, written into the
calculation as the selected purchase price.
"""

import re
import json
import logging
from datetime import datetime, timezone

from portal.core.db import get_db, now_iso, new_id, parse_datetime
from portal.core.eav import VALUE_COLUMNS, create_entity, ensure_table, find_entity_id, resolve_table_id

log = logging.getLogger("portal.supplier_rfq")

_ITEM_FIELD = re.compile(r"^items\[(\d+)\]\[(.+)\]$")


def _rfq_value(row):
    """Scalar columns coalesce on NULL only; a JSON column wins when present."""
    value = None
    for column in VALUE_COLUMNS[:-1]:
        if row[column] is not None:
            value = row[column]
            break
    if row["json_value"]:
        try:
            value = json.loads(row["json_value"])
        except ValueError:
            value = row["json_value"]
    return value


def _find_rfq(conn, token):
    tables = conn.execute(
        "SELECT id, organization_id FROM table_definitions WHERE name = 'supplier_requests'"
    ).fetchall()
    for table in tables:
        entity_id = find_entity_id(conn, table["id"], "token", token)
        if not entity_id:
            continue
        rows = conn.execute(
            f"SELECT attribute_name, {', '.join(VALUE_COLUMNS)} FROM attributes WHERE entity_id = ?",
            (entity_id,),
        ).fetchall()
        rfq = {"organizationId": table["organization_id"]}
        for row in rows:
            rfq[row["attribute_name"]] = _rfq_value(row)
        org = conn.execute(
            "SELECT id, name FROM organization WHERE id = ?", (table["organization_id"],)
        ).fetchone()
        organization = {"id": org["id"], "name": org["name"]} if org else None
        return {"rfq": rfq, "organization": organization}
    return None


def get_supplier_rfq_by_token(token: str):
    """``{"rfq", "organization"}`` for the request with this token, else None."""
    try:
        with get_db() as conn:
            return _find_rfq(conn, token)
    except Exception as e:
        log.error("get_supplier_rfq_by_token: %s", e)
        return None


def submit_supplier_quote(token: str, items: list, supplier_email=None, supplier_name=None,
                          notes=None) -> dict:
    """Store a supplier's answer. Returns ``{"success", "quoteId"}`` or ``{"success", "error"}``."""
    try:
        with get_db() as conn:
            found = _find_rfq(conn, token)
            if not found:
                log.info("Supplier quote for unknown RFQ token")
                return {"success": False, "error": "RFQ not found"}
            rfq = found["rfq"]

            expires_at = parse_datetime(rfq.get("expiresAt"))
            if expires_at and expires_at < datetime.now(timezone.utc):
                log.info("Supplier quote on expired RFQ %s", rfq.get("id"))
                return {"success": False, "error": "Link expired"}

            organization_id = rfq.get("organizationId")
            if not organization_id:
                return {"success": False, "error": "Organization not found"}

            table_id = ensure_table(conn, "supplier_quotes", organization_id,
                                    "Supplier responses to RFQs")
            quote_id = new_id()
            create_entity(conn, table_id, {
                "id": quote_id,
                "requestId": rfq.get("id"),
                "supplierEmail": supplier_email or rfq.get("supplierEmail") or None,
                "supplierName": supplier_name or rfq.get("supplierName") or None,
                "status": "received",
                "notes": notes or None,
                "submittedAt": now_iso(),
                "items": list(items),
            }, entity_id=quote_id)
    except Exception as e:
        log.error("submit_supplier_quote: %s", e)
        return {"success": False, "error": "Internal error"}

    log.info("Supplier quote %s stored for RFQ %s (%d items)", quote_id, rfq.get("id"), len(items))

    if rfq.get("autoApply") and rfq.get("calculationId"):
        try:
            apply_supplier_quote_to_calculation(
                rfq["calculationId"], organization_id, items, quote_id,
                supplier_email, supplier_name,
            )
        except Exception as e:
            log.error("Auto-apply of supplier quote %s failed: %s", quote_id, e)

    return {"success": True, "quoteId": quote_id}


def _apply_to(collection, items, quote_id, supplier_email, supplier_name):
    result = []
    for entry in collection:
        if not isinstance(entry, dict):
            result.append(entry)
            continue
        product_id = (entry.get("product") or {}).get("id") if isinstance(entry.get("product"), dict) else None
        match = next((q for q in items if q.get("itemId") in (entry.get("id"), product_id)
                      and q.get("itemId") is not None), None)
        if not match:
            result.append(entry)
            continue
        updated = dict(entry)
        if isinstance(entry.get("variant"), dict):
            variant = dict(entry["variant"])
            unit_price = match.get("unitPrice")
            variant["purchaseBasePrice"] = unit_price if unit_price is not None else variant.get("purchaseBasePrice")
            updated["variant"] = variant
        updated["purchase"] = {
            **(entry.get("purchase") or {}),
            "type": "supplier",
            "status": "selected",
            "selectedQuoteId": quote_id,
            "cost": {
                "unitPrice": match.get("unitPrice"),
                "currency": "EUR",
                "vatRate": match.get("vatRate") if match.get("vatRate") is not None else 20,
            },
            "leadTimeDays": match.get("leadTimeDays"),
            "supplierInfo": {"name": supplier_name or None, "email": supplier_email or None},
        }
        result.append(updated)
    return result


def apply_supplier_quote_to_calculation(calculation_id, organization_id, items, quote_id,
                                        supplier_email=None, supplier_name=None) -> bool:
    """Write the quoted purchase prices into the calculation's products, materials and services."""
    with get_db() as conn:
        table_id = resolve_table_id(conn, "calculations", organization_id)
        if not table_id:
            return False
        entity_id = find_entity_id(conn, table_id, "id", calculation_id)
        if not entity_id:
            return False
        attr = conn.execute(
            "SELECT id, json_value FROM attributes WHERE entity_id = ? AND attribute_name = 'calculationData'",
            (entity_id,),
        ).fetchone()
        if not attr:
            return False
        try:
            calculation_data = json.loads(attr["json_value"])
        except (TypeError, ValueError):
            return False
        if not isinstance(calculation_data, dict):
            return False

        for key in ("products", "materials", "services"):
            collection = calculation_data.get(key)
            calculation_data[key] = _apply_to(collection if isinstance(collection, list) else [],
                                              items, quote_id, supplier_email, supplier_name)

        conn.execute("UPDATE attributes SET json_value = ? WHERE id = ?",
                     (json.dumps(calculation_data, ensure_ascii=False), attr["id"]))
        conn.execute(
            "UPDATE attributes SET string_value = ? WHERE entity_id = ? AND attribute_name = 'updatedAt'",
            (now_iso(), entity_id),
        )
    log.info("Applied supplier quote %s to calculation %s", quote_id, calculation_id)
    return True


def _float_or_none(value):
    try:
        return float(value) if value else None
    except ValueError:
        return None


def _int_or_none(value):
    try:
        return int(float(value)) if value else None
    except ValueError:
        return None


def parse_supplier_form(form) -> dict:
    """Items and supplier fields from an HTML form post (``items[0][unitPrice]`` keys)."""
    by_index = {}
    result = {"items": [], "supplierEmail": None, "supplierName": None, "notes": None}
    for key, value in form.items():
        match = _ITEM_FIELD.match(key)
        if match:
            by_index.setdefault(int(match.group(1)), {})[match.group(2)] = str(value)
        elif key in ("supplierEmail", "supplierName", "notes"):
            result[key] = str(value)

    for idx in sorted(by_index):
        fields = by_index[idx]
        result["items"].append({
            "itemId": fields.get("itemId") or None,
            "unitPrice": _float_or_none(fields.get("unitPrice")),
            "vatRate": _float_or_none(fields.get("vatRate")),
            "leadTimeDays": _int_or_none(fields.get("leadTimeDays")),
        })
    return result
