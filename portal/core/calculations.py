"""
Calculations, projects, shares and quote responses.

Calculations and projects are EAV entities (see ``portal.core.eav``); the
share, bundle and activity tables are relational. Reads log and return an
empty result on failure. Quote responses return a success flag; the
activity log entry and the webhook to the main application are secondary
and never fail the response.
"""

import json
import random
import string
import sqlite3
import logging
from datetime import datetime, timezone

from portal.core.db import (get_db, loads_json, new_id, now_iso, now_ts,
                            parse_datetime, ts_to_datetime)
from portal.core.eav import (CALCULATIONS_TABLE_ID, PROJECTS_TABLE_ID, create_entity,
                             find_entity_id, find_entity_ids, load_attributes,
                             load_attributes_batch, reconstruct_nested, resolve_table_id,
                             set_attribute)
from portal.integrations import business_flow
from portal.knowledge.pricing import as_number, extract_dimensions, reconstruct_product_prices

log = logging.getLogger("portal.calculations")

QUOTE_ACTIONS = ("approved", "rejected", "requested_changes", "question_received")

APPROVAL_STATUS_BY_ACTION = {
    "approved": "CLIENT_APPROVED",
    "rejected": "CLIENT_REJECTED",
    "requested_changes": "CLIENT_REQUESTED_CHANGES",
}

_EMPTY_PAGE = {"items": [], "total": 0, "hasMore": False}


def _empty_page():
    return dict(_EMPTY_PAGE, items=[])


def _date_or_now(value):
    return parse_datetime(value) or datetime.now(timezone.utc)


def _total_price(data):
    return as_number(data.get("actualTotalPrice") or data.get("totalPrice")) or None


def _calculation_summary(entity_id, data, share=None):
    return {
        "id": data.get("id") or "",
        "entityId": entity_id,
        "name": data.get("name") or "Bez názvu",
        "calculationNumber": data.get("calculationNumber") or "",
        "description": data.get("description") or None,
        "status": data.get("status") or "draft",
        "approvalStatus": data.get("approvalStatus") or "DRAFT",
        "projectId": data.get("projectId") or None,
        "clientEntityId": data.get("clientEntityId") or None,
        "totalPrice": _total_price(data),
        "shareToken": share["token"] if share else None,
        "shareExpiresAt": ts_to_datetime(share["expires_at"]) if share else None,
        "createdAt": _date_or_now(data.get("createdAt")),
        "updatedAt": _date_or_now(data.get("updatedAt")),
    }


def _by_updated_desc(items):
    return sorted(items, key=lambda item: item["updatedAt"], reverse=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Projects and calculation lists
# ═══════════════════════════════════════════════════════════════════════════════

def get_client_projects(client_entity_id: str, client_name: str, limit: int = 20, offset: int = 0) -> dict:
    """One page of the client's projects, newest update first."""
    try:
        with get_db() as conn:
            entity_ids = find_entity_ids(conn, PROJECTS_TABLE_ID, [
                ("clientEntityId", client_entity_id, "eq"),
                ("companyName", client_name, "like"),
            ])
            page_ids = entity_ids[offset:offset + limit]
            data_by_entity = load_attributes_batch(conn, page_ids)
    except Exception as e:
        log.error("get_client_projects(%s): %s", client_entity_id, e)
        return _empty_page()

    total = len(entity_ids)
    projects = []
    for entity_id in page_ids:
        data = data_by_entity.get(entity_id, {})
        projects.append({
            "id": data.get("id") or "",
            "entityId": entity_id,
            "name": data.get("name") or "Bez názvu",
            "projectNumber": data.get("projectNumber") or "",
            "companyName": data.get("companyName") or "",
            "clientEntityId": data.get("clientEntityId") or "",
            "totalPrice": as_number(data.get("totalPrice")),
            "calculationsCount": int(as_number(data.get("calculationsCount"))),
            "createdAt": _date_or_now(data.get("createdAt")),
            "updatedAt": _date_or_now(data.get("updatedAt")),
        })
    return {"items": _by_updated_desc(projects), "total": total, "hasMore": offset + limit < total}


def _shares_for(conn, calculation_ids, where, params=()):
    """Newest share per calculation matching ``where``."""
    if not calculation_ids:
        return {}
    rows = conn.execute(
        f"""SELECT calculation_id, token, expires_at FROM calculation_shares
            WHERE {where} AND calculation_id IN ({','.join('?' * len(calculation_ids))})
            ORDER BY created_at DESC""",
        (*params, *calculation_ids),
    ).fetchall()
    shares = {}
    for row in rows:
        shares.setdefault(row["calculation_id"], row)
    return shares


def get_client_calculations(client_entity_id: str, client_name: str, limit: int = 20, offset: int = 0) -> dict:
    """One page of the client's calculations with their newest share token.

    Responded shares count too, so approved quotes stay linkable.
    """
    try:
        with get_db() as conn:
            entity_ids = find_entity_ids(conn, CALCULATIONS_TABLE_ID, [
                ("clientEntityId", client_entity_id, "eq"),
                ("calculationData.selectedClient.name", client_name, "like"),
            ])
            page_ids = entity_ids[offset:offset + limit]
            data_by_entity = load_attributes_batch(conn, page_ids)
            calc_ids = [d["id"] for d in data_by_entity.values() if d.get("id")]
            shares = _shares_for(conn, calc_ids, "(status = 'active' OR status = 'responded')")
    except Exception as e:
        log.error("get_client_calculations(%s): %s", client_entity_id, e)
        return _empty_page()

    total = len(entity_ids)
    items = []
    for entity_id in page_ids:
        data = data_by_entity.get(entity_id, {})
        items.append(_calculation_summary(entity_id, data, shares.get(data.get("id"))))
    return {"items": _by_updated_desc(items), "total": total, "hasMore": offset + limit < total}


def get_project_calculations(project_id: str, limit: int = 10, offset: int = 0) -> dict:
    """Calculations of one project, loaded lazily when the project is expanded."""
    try:
        with get_db() as conn:
            entity_ids = find_entity_ids(conn, CALCULATIONS_TABLE_ID, [("projectId", project_id, "eq")])
            page_ids = entity_ids[offset:offset + limit]
            data_by_entity = load_attributes_batch(conn, page_ids)
            calc_ids = [d["id"] for d in data_by_entity.values() if d.get("id")]
            shares = _shares_for(conn, calc_ids, "status = 'active' AND expires_at > ?", (now_ts(),))
    except Exception as e:
        log.error("get_project_calculations(%s): %s", project_id, e)
        return _empty_page()

    total = len(entity_ids)
    items = []
    for entity_id in page_ids:
        data = data_by_entity.get(entity_id, {})
        items.append(_calculation_summary(entity_id, data, shares.get(data.get("id"))))
    return {"items": _by_updated_desc(items), "total": total, "hasMore": offset + limit < total}


# ═══════════════════════════════════════════════════════════════════════════════
# Single calculation
# ═══════════════════════════════════════════════════════════════════════════════

def get_calculation_by_id(calculation_id: str):
    """Calculation summary plus its decoded ``calculationData``."""
    try:
        with get_db() as conn:
            entity_id = find_entity_id(conn, CALCULATIONS_TABLE_ID, "id", calculation_id)
            if not entity_id:
                return None
            attrs = load_attributes(conn, entity_id)
            share = conn.execute(
                """SELECT token, expires_at FROM calculation_shares
                   WHERE calculation_id = ? AND status = 'active' AND expires_at > ?
                   ORDER BY created_at DESC LIMIT 1""",
                (calculation_id, now_ts()),
            ).fetchone()
    except Exception as e:
        log.error("get_calculation_by_id(%s): %s", calculation_id, e)
        return None

    record, nested = reconstruct_nested(attrs)
    data = {"id": calculation_id, **record}
    calculation = _calculation_summary(entity_id, data, share)
    calculation["calculationData"] = nested or None
    return calculation


def _name_contains(a, b):
    return bool(a and b) and b.lower() in a.lower()


def can_customer_access_calculation(customer_id: str, customer_name: str, calculation_id: str) -> bool:
    """Access through the calculation's selected client or its clientEntityId."""
    calculation = get_calculation_by_id(calculation_id)
    if not calculation:
        log.info("Access check: calculation %s not found", calculation_id)
        return False

    client = (calculation.get("calculationData") or {}).get("selectedClient")
    if isinstance(client, dict):
        if customer_id and customer_id in (client.get("entityId"), client.get("id")):
            return True
        client_name = str(client.get("name") or client.get("Názov") or "")
        if _name_contains(client_name, customer_name) or _name_contains(customer_name, client_name):
            return True

    if calculation.get("clientEntityId") and calculation["clientEntityId"] == customer_id:
        return True
    log.info("Access denied: customer %s to calculation %s", customer_id, calculation_id)
    return False


def can_client_access_calculation(client_entity_id: str, client_name: str, calculation_id: str) -> bool:
    """Attribute-level check: clientEntityId equals or companyName contains the name."""
    try:
        with get_db() as conn:
            entity_id = find_entity_id(conn, CALCULATIONS_TABLE_ID, "id", calculation_id)
            if not entity_id:
                return False
            row = conn.execute(
                """SELECT 1 FROM attributes
                   WHERE entity_id = ?
                     AND ((attribute_name = 'clientEntityId' AND string_value = ?)
                          OR (attribute_name = 'companyName' AND string_value LIKE ?))
                   LIMIT 1""",
                (entity_id, client_entity_id, f"%{client_name}%"),
            ).fetchone()
    except Exception as e:
        log.error("can_client_access_calculation(%s): %s", calculation_id, e)
        return False
    return row is not None


def _product_rows(conn, calculation_id, names):
    entity_id = find_entity_id(conn, None, "id", calculation_id)
    if not entity_id:
        return []
    return conn.execute(
        f"""SELECT attribute_name, json_value, string_value, number_value FROM attributes
            WHERE entity_id = ? AND attribute_name IN ({','.join('?' * len(names))})""",
        (entity_id, *names),
    ).fetchall()


def get_calculation_products(calculation_id: str) -> list:
    """Quote products of a calculation with reconstructed client prices."""
    if not calculation_id:
        return []
    try:
        with get_db() as conn:
            rows = _product_rows(conn, calculation_id, (
                "calculationData", "products", "calculationData.products",
                "totalPrice", "actualTotalPrice",
            ))
    except Exception as e:
        log.error("get_calculation_products(%s): %s", calculation_id, e)
        return []

    products, breakdown = [], None
    total_price = actual_total_price = None
    for row in rows:
        name = row["attribute_name"]
        # totalPrice includes referrer commission, actualTotalPrice does not
        if name == "totalPrice":
            if row["number_value"] is not None:
                total_price = row["number_value"]
            continue
        if name == "actualTotalPrice":
            if row["number_value"] is not None:
                actual_total_price = row["number_value"]
            continue
        parsed = loads_json(row["json_value"] or row["string_value"])
        if name == "calculationData" and isinstance(parsed, dict):
            if parsed.get("products"):
                products = parsed["products"]
            if parsed.get("globalPricingBreakdown"):
                breakdown = parsed["globalPricingBreakdown"]
        elif isinstance(parsed, list):
            products = parsed

    return reconstruct_product_prices(products, breakdown, total_price, actual_total_price)


def get_calculation_product_dimensions(calculation_id: str) -> dict:
    """``{product id: [dimension, ...]}`` for products with sticker sizes."""
    if not calculation_id:
        return {}
    try:
        with get_db() as conn:
            rows = _product_rows(conn, calculation_id,
                                 ("calculationData", "products", "calculationData.products"))
    except Exception as e:
        log.error("get_calculation_product_dimensions(%s): %s", calculation_id, e)
        return {}

    products = []
    for row in rows:
        parsed = loads_json(row["json_value"] or row["string_value"])
        if row["attribute_name"] == "calculationData" and isinstance(parsed, dict) and parsed.get("products"):
            products = parsed["products"]
            break
        if row["attribute_name"] != "calculationData" and isinstance(parsed, list):
            products = parsed
            break

    dimensions = {}
    for product in products:
        if not isinstance(product, dict):
            continue
        fields = product.get("customFieldValues") or product.get("calculatorInputValues") or {}
        found = extract_dimensions(fields)
        if found:
            dimensions[product.get("id") or product.get("productId") or "first"] = found
    return dimensions


def get_calculation_share_link(calculation_id: str):
    """Main-application quote URL path for a calculation, if it was shared."""
    if not calculation_id:
        return None
    try:
        with get_db() as conn:
            share = conn.execute(
                """SELECT token FROM calculation_shares
                   WHERE calculation_id = ? AND expires_at > ?
                   ORDER BY created_at DESC LIMIT 1""",
                (calculation_id, now_ts()),
            ).fetchone()
            if share:
                return f"/quote/{share['token']}"
            bundle = conn.execute(
                """SELECT token, item_share_tokens FROM calculation_quote_bundles
                   WHERE calculation_ids LIKE ? AND expires_at > ? AND status = 'active'
                   ORDER BY created_at DESC LIMIT 1""",
                (f"%{calculation_id}%", now_ts()),
            ).fetchone()
    except Exception as e:
        log.error("get_calculation_share_link(%s): %s", calculation_id, e)
        return None

    if not bundle:
        return None
    tokens = loads_json(bundle["item_share_tokens"], {})
    item_token = tokens.get(calculation_id) if isinstance(tokens, dict) else None
    if item_token:
        return f"/quote/bundle/{bundle['token']}?item={item_token}"
    return f"/quote/bundle/{bundle['token']}"


# ═══════════════════════════════════════════════════════════════════════════════
# Public quote (share token)
# ═══════════════════════════════════════════════════════════════════════════════

def _organization(conn, organization_id, full=True):
    if not organization_id:
        return None
    row = conn.execute(
        "SELECT name, metadata FROM organization WHERE id = ? LIMIT 1", (organization_id,)
    ).fetchone()
    if not row:
        return None
    metadata = loads_json(row["metadata"], {})
    if not isinstance(metadata, dict):
        metadata = {}
    if not full:
        return {
            "name": row["name"],
            "email": metadata.get("email") or None,
            "phone": metadata.get("phone") or None,
            "address": metadata.get("address") or None,
            "ico": metadata.get("ico") or None,
            "vatRate": metadata.get("vatRate") or metadata.get("vat_rate") or 23,
        }
    invoicing = metadata.get("invoicing") or {}
    return {
        "name": row["name"],
        "email": metadata.get("email") or invoicing.get("email") or None,
        "phone": metadata.get("phone") or invoicing.get("phone") or None,
        "address": metadata.get("address") or None,
        "ico": metadata.get("ico") or invoicing.get("ico") or None,
        "dic": metadata.get("dic") or invoicing.get("dic") or None,
        "icDph": metadata.get("icDph") or metadata.get("ic_dph") or invoicing.get("icDph") or None,
        "vatRate": metadata.get("vatRate") or metadata.get("vat_rate") or invoicing.get("vatRate") or 23,
        "invoicing": invoicing,
    }


def get_calculation_by_share_token(calculation_id: str, token: str):
    """``{"calculation", "share", "organization"}`` for a valid share, else None.

    Expiry is not checked here: an expired quote stays readable, only
    responding to it is refused.
    """
    try:
        with get_db() as conn:
            share = conn.execute(
                """SELECT token, expires_at, status, client_response, client_comment,
                          responded_at, organization_id
                   FROM calculation_shares WHERE calculation_id = ? AND token = ? LIMIT 1""",
                (calculation_id, token),
            ).fetchone()
            if not share:
                log.info("No share %s for calculation %s", token[:8] if token else token, calculation_id)
                return None
            organization_id = share["organization_id"]
            table_id = resolve_table_id(conn, "calculations", organization_id,
                                        fallback=CALCULATIONS_TABLE_ID)
            entity_id = find_entity_id(conn, table_id, "id", calculation_id)
            if not entity_id:
                log.warning("Share %s points to missing calculation %s", share["token"][:8], calculation_id)
                return None
            attrs = load_attributes(conn, entity_id)
            organization = _organization(conn, organization_id)
    except Exception as e:
        log.error("get_calculation_by_share_token(%s): %s", calculation_id, e)
        return None

    record, calculation_data = reconstruct_nested(attrs)
    selected_client = calculation_data.get("selectedClient")
    client_name = selected_client.get("name") if isinstance(selected_client, dict) else None
    return {
        "calculation": {
            "id": calculation_id,
            "name": record.get("name") or "Cenová ponuka",
            "calculationNumber": record.get("calculationNumber") or "",
            "description": record.get("description") or None,
            "approvalStatus": record.get("approvalStatus") or "DRAFT",
            "clientEntityId": record.get("clientEntityId") or None,
            "calculationData": calculation_data,
            "totalPrice": _total_price(record),
            "companyName": record.get("companyName") or client_name or None,
        },
        "share": {
            "token": share["token"],
            "expiresAt": ts_to_datetime(share["expires_at"]),
            "status": share["status"],
            "clientResponse": share["client_response"],
            "clientComment": share["client_comment"],
            "respondedAt": ts_to_datetime(share["responded_at"]),
        },
        "organization": organization,
    }


def _activity_description(action, comment):
    if action == "approved":
        return "client_approved", "Klient schválil ponuku"
    if action == "rejected":
        return "client_rejected", "Klient zamietol ponuku"
    if action == "requested_changes":
        return "client_requested_changes", f'Klient požiadal o zmeny: "{comment or "(bez textu)"}"'
    return "question_received", f'Klient položil otázku: "{comment or "(bez textu)"}"'


def _insert_activity(conn, calculation_id, action, description, metadata, organization_id):
    try:
        conn.execute(
            """INSERT INTO calculation_activities
               (id, calculation_id, action, description, metadata, organization_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (new_id(), calculation_id, action, description,
             json.dumps(metadata, ensure_ascii=False), organization_id, now_ts()),
        )
    except sqlite3.Error as e:
        log.error("Activity %s for calculation %s not recorded: %s", action, calculation_id, e)


def _notify(payload):
    try:
        business_flow.notify_quote_response(payload)
    except Exception as e:
        log.error("Quote response webhook failed (non-blocking): %s", e)


def update_quote_response(calculation_id: str, token: str, action: str, comment=None) -> bool:
    """Record a client's answer to a shared quote.

    Returns False for an unknown or expired share. Questions leave the
    calculation's approval status untouched.
    """
    comment = comment or None
    try:
        with get_db() as conn:
            share = conn.execute(
                """SELECT id, expires_at, status, organization_id FROM calculation_shares
                   WHERE calculation_id = ? AND token = ? LIMIT 1""",
                (calculation_id, token),
            ).fetchone()
            if not share:
                log.info("Quote response for unknown share on %s", calculation_id)
                return False
            if share["expires_at"] and share["expires_at"] < now_ts():
                log.info("Quote response on expired share for %s", calculation_id)
                return False

            try:
                conn.execute(
                    """UPDATE calculation_shares
                       SET status = ?, client_response = ?, client_comment = ?, responded_at = ?
                       WHERE calculation_id = ? AND token = ?""",
                    ("responded" if action == "approved" else "active", action, comment,
                     now_ts(), calculation_id, token),
                )
            except sqlite3.Error as e:
                log.error("Share update failed for %s: %s", calculation_id, e)

            approval_status = APPROVAL_STATUS_BY_ACTION.get(action)
            if approval_status:
                table_id = resolve_table_id(conn, "calculations", share["organization_id"],
                                            fallback=CALCULATIONS_TABLE_ID)
                entity_id = find_entity_id(conn, table_id, "id", calculation_id)
                if entity_id:
                    set_attribute(conn, entity_id, "approvalStatus", approval_status)
                else:
                    log.warning("No calculation entity for %s, approval status not set", calculation_id)

            activity_action, description = _activity_description(action, comment)
            responded_at = now_iso()
            _insert_activity(conn, calculation_id, activity_action, description,
                             {"comment": comment, "respondedAt": responded_at},
                             share["organization_id"])
    except Exception as e:
        log.error("update_quote_response(%s, %s): %s", calculation_id, action, e)
        return False

    log.info("Quote response recorded", extra={
        "calculation_id": calculation_id, "action": action})
    _notify({
        "calculationId": calculation_id,
        "token": token,
        "action": action,
        "comment": comment,
        "respondedAt": responded_at,
    })
    return True


def record_question(calculation_id: str, comment: str, client_name: str):
    """Question from a logged-in client on a quote waiting for their input.

    Uses the newest active share. Returns the share token, or None when the
    calculation has no active share. Database errors propagate.
    """
    comment = comment.strip()
    with get_db() as conn:
        share = conn.execute(
            """SELECT id, token, organization_id FROM calculation_shares
               WHERE calculation_id = ? AND status = 'active'
               ORDER BY created_at DESC LIMIT 1""",
            (calculation_id,),
        ).fetchone()
        if not share:
            log.warning("No active share for calculation %s", calculation_id)
            return None
        conn.execute(
            """UPDATE calculation_shares
               SET client_response = 'question_received', client_comment = ?, responded_at = ?
               WHERE id = ?""",
            (comment, now_ts(), share["id"]),
        )
        responded_at = now_iso()
        _insert_activity(conn, calculation_id, "question_received",
                         f'Klient položil otázku: "{comment}"',
                         {"comment": comment, "respondedAt": responded_at, "clientName": client_name},
                         share["organization_id"])

    _notify({
        "calculationId": calculation_id,
        "token": share["token"],
        "action": "question_received",
        "comment": comment,
        "respondedAt": responded_at,
        "clientName": client_name,
    })
    return share["token"]


def get_quote_bundle_by_token(bundle_id: str, token: str):
    """Several calculations shared under one link."""
    try:
        with get_db() as conn:
            bundle = conn.execute(
                """SELECT id, token, calculation_ids, item_share_tokens, expires_at, status,
                          organization_id, project_name
                   FROM calculation_quote_bundles WHERE id = ? AND token = ? LIMIT 1""",
                (bundle_id, token),
            ).fetchone()
            if not bundle:
                return None
            calculation_ids = loads_json(bundle["calculation_ids"], []) or []
            item_tokens = loads_json(bundle["item_share_tokens"], {})
            if not isinstance(item_tokens, dict):
                item_tokens = {}
            items = []
            for calc_id in calculation_ids:
                entity_id = find_entity_id(conn, CALCULATIONS_TABLE_ID, "id", calc_id)
                if not entity_id:
                    continue
                data = load_attributes(conn, entity_id,
                                      ["name", "description", "actualTotalPrice", "totalPrice"])
                item_token = item_tokens.get(calc_id)
                items.append({
                    "id": calc_id,
                    "name": data.get("name") or "Kalkulácia",
                    "description": data.get("description") or None,
                    "totalPrice": _total_price(data),
                    "shareUrl": f"/quote/{calc_id}/{item_token}" if item_token else None,
                })
            organization = _organization(conn, bundle["organization_id"], full=False)
    except Exception as e:
        log.error("get_quote_bundle_by_token(%s): %s", bundle_id, e)
        return None

    return {
        "bundle": {
            "id": bundle["id"],
            "name": bundle["project_name"],
            "expiresAt": ts_to_datetime(bundle["expires_at"]),
            "status": bundle["status"],
        },
        "items": items,
        "organization": organization,
    }


# ═══════════════════════════════════════════════════════════════════════════════
# Activities and notifications
# ═══════════════════════════════════════════════════════════════════════════════

def _comment(metadata):
    meta = loads_json(metadata)
    return meta.get("comment") if isinstance(meta, dict) else None


def get_calculation_activities(calculation_id: str) -> list:
    try:
        with get_db() as conn:
            rows = conn.execute(
                """SELECT id, action, description, metadata, created_at
                   FROM calculation_activities WHERE calculation_id = ?
                   ORDER BY created_at DESC LIMIT 50""",
                (calculation_id,),
            ).fetchall()
    except Exception as e:
        log.error("get_calculation_activities(%s): %s", calculation_id, e)
        return []
    return [{
        "id": r["id"],
        "action": r["action"],
        "description": r["description"],
        "comment": _comment(r["metadata"]) or None,
        "createdAt": ts_to_datetime(r["created_at"]),
    } for r in rows]


def get_client_notifications(customer_id: str, customer_name: str, limit: int = 10) -> list:
    """Dashboard notifications: quotes waiting for the client and sent questions."""
    calculations = get_client_calculations(customer_id, customer_name, limit=50)["items"]
    if not calculations:
        return []

    notifications = []
    for calc in calculations:
        if calc["approvalStatus"] == "WAITING_FOR_CLIENT":
            notifications.append({
                "id": f"waiting-{calc['id']}",
                "type": "waiting_for_you",
                "title": "⏳ Čaká na Vás",
                "message": f'Prosím dodajte požadované informácie k ponuke "{calc["name"]}"',
                "calculationId": calc["id"],
                "calculationName": calc["name"],
                "createdAt": calc["updatedAt"],
                "shareToken": calc["shareToken"],
            })
        if calc["approvalStatus"] == "CLIENT_VIEWED":
            notifications.append({
                "id": f"pending-{calc['id']}",
                "type": "status_changed",
                "title": "📋 Na schválenie",
                "message": f'Ponuka "{calc["name"]}" čaká na Vaše schválenie',
                "calculationId": calc["id"],
                "calculationName": calc["name"],
                "createdAt": calc["updatedAt"],
                "shareToken": calc["shareToken"],
            })

    by_id = {c["id"]: c for c in calculations}
    try:
        with get_db() as conn:
            rows = conn.execute(
                f"""SELECT id, calculation_id, action, metadata, created_at
                    FROM calculation_activities
                    WHERE calculation_id IN ({','.join('?' * len(by_id))})
                    ORDER BY created_at DESC LIMIT ?""",
                (*by_id, limit),
            ).fetchall()
    except Exception as e:
        log.error("get_client_notifications(%s): %s", customer_id, e)
        return []

    for row in rows:
        if row["action"] != "question_received":
            continue
        calc = by_id.get(row["calculation_id"], {})
        comment = _comment(row["metadata"]) or ""
        if comment:
            message = f'"{comment[:50]}{"..." if len(comment) > 50 else ""}"'
        else:
            message = "Vaša otázka bola odoslaná"
        notifications.append({
            "id": row["id"],
            "type": "question_sent",
            "title": "✅ Otázka odoslaná",
            "message": message,
            "calculationId": row["calculation_id"],
            "calculationName": calc.get("name") or "Kalkulácia",
            "createdAt": ts_to_datetime(row["created_at"]) or datetime.now(timezone.utc),
            "shareToken": calc.get("shareToken"),
        })

    notifications.sort(key=lambda n: n["createdAt"], reverse=True)
    return notifications[:limit]


# ═══════════════════════════════════════════════════════════════════════════════
# Portal projects (order requests)
# ═══════════════════════════════════════════════════════════════════════════════

def _project_number():
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"PP-{datetime.now():%Y%m%d}-{suffix}"


def get_or_create_portal_project(client_entity_id: str, client_name: str, name: str) -> dict:
    """Newest project of the client, or a new one for portal order requests.

    Returns ``{"id", "entityId"}``. Errors propagate to the order route.
    """
    with get_db() as conn:
        row = conn.execute(
            """SELECT e.id AS entity_id, a2.string_value AS project_id
               FROM entities e
               JOIN attributes a1 ON a1.entity_id = e.id
               JOIN attributes a2 ON a2.entity_id = e.id
               WHERE e.table_id = ?
                 AND a1.attribute_name = 'clientEntityId' AND a1.string_value = ?
                 AND a2.attribute_name = 'id'
               ORDER BY e.created_at DESC, e.rowid DESC LIMIT 1""",
            (PROJECTS_TABLE_ID, client_entity_id),
        ).fetchone()
        if row:
            return {"id": row["project_id"], "entityId": row["entity_id"]}

        project_id = new_id()
        created = now_iso()
        entity_id = create_entity(conn, PROJECTS_TABLE_ID, {
            "id": project_id,
            "name": name,
            "projectNumber": _project_number(),
            "companyName": client_name,
            "clientEntityId": client_entity_id,
            "status": "active",
            "source": "client-portal",
            "createdAt": created,
            "updatedAt": created,
        })
    log.info("Created portal project %s for client %s", project_id, client_entity_id)
    return {"id": project_id, "entityId": entity_id}
