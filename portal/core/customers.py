"""
Customer lookups: login by email, full customer record for quote PDFs,
FinStat rating block and the organization's client-rating pricing rules.
"""

import logging

from portal.core.db import get_db, loads_json, ts_to_datetime

log = logging.getLogger("portal.customers")


def find_customer_by_email(email: str):
    """Customer whose email or contact email matches (case-insensitive).

    Errors propagate: the login route reports them as a 500.
    """
    with get_db() as conn:
        row = conn.execute(
            """SELECT id, entity_id, name, email, contact_email, business_name,
                      phone, organization_id
               FROM customers
               WHERE LOWER(email) = LOWER(?) OR LOWER(contact_email) = LOWER(?)
               LIMIT 1""",
            (email, email),
        ).fetchone()
    if not row:
        return None
    return {
        "id": row["id"],
        "entityId": row["entity_id"] or row["id"],
        "name": row["name"],
        "email": row["email"],
        "contactEmail": row["contact_email"],
        "businessName": row["business_name"],
        "phone": row["phone"],
        "organizationId": row["organization_id"],
    }


def get_customer_by_id(customer_id: str):
    """Customer with address and tax ids, matched on id or entity_id."""
    try:
        with get_db() as conn:
            row = conn.execute(
                """SELECT id, entity_id, name, email, contact_email, business_name, phone,
                          organization_id, billing_street, billing_city, billing_postal_code,
                          billing_country, corr_street, corr_city, corr_postal_code,
                          corr_country, ico, dic, ic_dph
                   FROM customers WHERE id = ? OR entity_id = ? LIMIT 1""",
                (customer_id, customer_id),
            ).fetchone()
    except Exception as e:
        log.error("get_customer_by_id(%s): %s", customer_id, e)
        return None
    if not row:
        return None
    return {
        "id": row["id"],
        "entityId": row["entity_id"] or row["id"],
        "name": row["name"],
        "email": row["email"],
        "contactEmail": row["contact_email"],
        "businessName": row["business_name"],
        "phone": row["phone"],
        "organizationId": row["organization_id"],
        "billingStreet": row["billing_street"],
        "billingCity": row["billing_city"],
        "billingPostalCode": row["billing_postal_code"],
        "billingCountry": row["billing_country"],
        "corrStreet": row["corr_street"],
        "corrCity": row["corr_city"],
        "corrPostalCode": row["corr_postal_code"],
        "corrCountry": row["corr_country"],
        "ico": row["ico"],
        "dic": row["dic"],
        "icDph": row["ic_dph"],
    }


def _score(value):
    return float(value) if value else None


def get_customer_rating(customer_id: str):
    """FinStat rating and financials for the customer dashboard."""
    try:
        with get_db() as conn:
            row = conn.execute(
                """SELECT overall_rating, rating_class, risk_level, risk_score, financial_score,
                          stability_score, rating_recommendation, rating_badges, rating_details,
                          rating_last_update, total_revenue, yearly_revenue, current_profit,
                          payment_discipline_rating, customer_category
                   FROM customers WHERE id = ? LIMIT 1""",
                (customer_id,),
            ).fetchone()
    except Exception as e:
        log.error("get_customer_rating(%s): %s", customer_id, e)
        return None
    if not row:
        return None
    return {
        "overallScore": _score(row["overall_rating"]),
        "ratingClass": row["rating_class"],
        "riskLevel": row["risk_level"],
        "riskScore": _score(row["risk_score"]),
        "financialScore": _score(row["financial_score"]),
        "stabilityScore": _score(row["stability_score"]),
        "ratingRecommendation": row["rating_recommendation"],
        "ratingBadges": loads_json(row["rating_badges"]),
        "ratingDetails": loads_json(row["rating_details"]),
        "ratingLastUpdate": ts_to_datetime(row["rating_last_update"]),
        "totalRevenue": _score(row["total_revenue"]),
        "yearlyRevenue": _score(row["yearly_revenue"]),
        "currentProfit": _score(row["current_profit"]),
        "paymentDisciplineRating": row["payment_discipline_rating"],
        "customerCategory": row["customer_category"],
    }


def get_global_client_rating_rules(organization_id: str) -> list:
    """``globalClientRating`` rules from the organization's global_settings tool."""
    try:
        with get_db() as conn:
            row = conn.execute(
                """SELECT config FROM tools
                   WHERE organization_id = ? AND type = 'global_settings' LIMIT 1""",
                (organization_id,),
            ).fetchone()
    except Exception as e:
        log.error("get_global_client_rating_rules(%s): %s", organization_id, e)
        return []
    if not row or not row["config"]:
        log.info("No global settings for organization %s", organization_id)
        return []

    config = loads_json(row["config"])
    # Some writers store the config JSON-encoded twice
    if isinstance(config, str):
        config = loads_json(config)
    if not isinstance(config, dict):
        log.warning("Unreadable global settings config for organization %s", organization_id)
        return []
    return config.get("globalClientRating") or []


# ── Client display fields ────────────────────────────────────────────────────
# Client records arrive from the CRM table, from calculation snapshots and
# from Flowii imports, each with its own field names.

_NAME_KEYS = ("name", "Názov", "Obchodné meno", "companyName", "company")
_STREET_KEYS = (
    "businessAddress", "invoicingAddress", "street",
    "Fakturačná adresa - ulica", "Korešpondenčná adresa - ulica", "Adresa - ulica", "Ulica",
    "billingStreet", "billing_street", "corrStreet", "corr_street", "address",
)
_POSTAL_KEYS = (
    "businessPostalCode", "invoicingPostalCode", "postalCode",
    "Fakturačná adresa - PSČ", "Korešpondenčná adresa - PSČ", "Adresa - PSČ", "PSČ",
    "billingPostalCode", "billing_postal_code", "corrPostalCode", "corr_postal_code", "zip",
)
_CITY_KEYS = (
    "businessCity", "invoicingCity", "city",
    "Fakturačná adresa - mesto", "Korešpondenčná adresa - mesto", "Adresa - mesto", "Mesto",
    "billingCity", "billing_city", "corrCity", "corr_city",
)
_COUNTRY_KEYS = (
    "businessCountry", "invoicingCountry", "country",
    "Fakturačná adresa - krajina", "Korešpondenčná adresa - krajina", "Adresa - krajina", "Krajina",
    "billingCountry", "billing_country", "corrCountry", "corr_country",
)
_ICO_KEYS = ("ico", "IČO", "businessId", "companyId")
_DIC_KEYS = ("dic", "DIČ", "taxId")
_IC_DPH_KEYS = ("icDph", "IČ DPH", "vatId", "vatNumber")
_EMAIL_KEYS = ("email", "Hlavný kontakt - email", "Email", "contactEmail")
_PHONE_KEYS = ("phone", "Hlavný kontakt - telefón 1", "Telefón", "contactPhone1", "tel")


def _first(client: dict, keys, default=""):
    for key in keys:
        value = client.get(key)
        if value:
            return str(value)
    return default


def client_display_fields(client: dict) -> dict:
    """Name, one-line address, tax ids and contacts for the quote header."""
    client = client or {}
    street = _first(client, _STREET_KEYS)
    postal = _first(client, _POSTAL_KEYS)
    city = _first(client, _CITY_KEYS)
    country = _first(client, _COUNTRY_KEYS)
    return {
        "name": _first(client, _NAME_KEYS, "Klient"),
        "street": street,
        "postalCode": postal,
        "city": city,
        "country": country,
        "address": ", ".join(p for p in (street, postal, city, country) if p),
        "ico": _first(client, _ICO_KEYS),
        "dic": _first(client, _DIC_KEYS),
        "icDph": _first(client, _IC_DPH_KEYS),
        "email": _first(client, _EMAIL_KEYS),
        "phone": _first(client, _PHONE_KEYS),
    }
