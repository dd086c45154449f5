# routes_auth.py
# Email login / logout. No password: the email must belong to a customer
# (or a customer contact) in the CRM.

import logging

from flask import jsonify

from portal.api.routes import bp, json_error, request_json
from portal.core.customers import find_customer_by_email
from portal.core.db import is_database_configured
from portal.core.security import rate_limit
from portal.core.session import clear_session_cookie, set_session_cookie

log = logging.getLogger("portal.auth")


@bp.route("/api/auth/login", methods=["POST"])
@rate_limit("auth")
def api_login():
    if not is_database_configured():
        return json_error("Databáza nie je nakonfigurovaná. Kontaktujte administrátora.", 503,
                          details="Chýba DB_URL environment variable")

    email = request_json().get("email")
    if not email or not isinstance(email, str):
        return json_error("Email je povinný", 400)
    email = email.strip().lower()

    try:
        customer = find_customer_by_email(email)
    except Exception as e:
        log.error("Login lookup failed for %s: %s", email, e, exc_info=True)
        return json_error("Nastala chyba pri prihlásení", 500, details=str(e))

    if not customer:
        log.info("Login rejected for unknown email %s", email)
        return json_error("Email nebol nájdený v našej databáze. Kontaktujte prosím podporu.", 401)

    response = jsonify({
        "success": True,
        "message": "Prihlásenie úspešné",
        "customer": {"name": customer["name"], "businessName": customer["businessName"]},
    })
    set_session_cookie(response, {
        "customerId": customer["id"],
        "customerEntityId": customer["entityId"],
        "customerName": customer["name"],
        "email": email,
        "organizationId": customer["organizationId"],
    })
    log.info("Client login: %s", customer["name"], extra={"user": email})
    return response


@bp.route("/api/auth/logout", methods=["POST"])
def api_logout():
    return clear_session_cookie(jsonify({"success": True}))
