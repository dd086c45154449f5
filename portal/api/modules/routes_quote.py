# routes_quote.py
# Shared quote links (no login: the share token is the credential), the PDF
# download and the client's answer. respond-waiting is the logged-in
# dashboard variant for quotes waiting on the client.

import logging
from urllib.parse import urlencode

from flask import Response, jsonify, redirect, request

from portal.api.routes import bp, client_required, current_client, json_error
from portal.core.calculations import (
    get_calculation_by_share_token, get_quote_bundle_by_token, record_question, update_quote_response,
)
from portal.core.customers import get_customer_by_id
from portal.core.security import rate_limit
from portal.forms.quote_pdf import generate_quote_pdf, quote_filename
from portal.knowledge.pricing import reconstruct_product_prices

log = logging.getLogger("portal.quote")

FORM_ACTIONS = ("approved", "rejected", "requested_changes")


def _quote_client(calculation: dict) -> dict:
    """Selected client from the calculation, completed from the customers table."""
    selected = (calculation.get("calculationData") or {}).get("selectedClient")
    selected = selected if isinstance(selected, dict) else {}
    client_id = selected.get("entityId") or selected.get("id") or calculation.get("clientEntityId")
    if not client_id:
        return selected
    customer = get_customer_by_id(client_id)
    if not customer:
        log.info("PDF client %s not in customers table, using calculation data", client_id)
        return selected
    return {**selected, **{k: v for k, v in customer.items() if v is not None}}


@bp.route("/api/quote/<calculation_id>/<token>")
@rate_limit("public")
def api_quote(calculation_id, token):
    quote = get_calculation_by_share_token(calculation_id, token)
    if not quote:
        return json_error("Invalid share token", 403)
    calculation = quote["calculation"]
    data = calculation.get("calculationData") or {}
    products = reconstruct_product_prices(
        data.get("products"), data.get("globalPricingBreakdown"),
        calculation.get("totalPrice"), data.get("actualTotalPrice"),
    )
    return jsonify({**quote, "products": products})


@bp.route("/api/quote/<calculation_id>/<token>/pdf")
@rate_limit("heavy")
def api_quote_pdf(calculation_id, token):
    lang = request.args.get("lang") or "sk"
    if not calculation_id.strip() or not token.strip():
        return json_error("Missing id or token", 400)

    quote = get_calculation_by_share_token(calculation_id, token)
    if not quote:
        return json_error("Invalid share token", 403)

    try:
        pdf = generate_quote_pdf(quote, lang, client=_quote_client(quote["calculation"]))
    except Exception as e:
        log.error("Quote PDF for %s failed: %s", calculation_id, e, exc_info=True)
        return json_error("Failed to generate PDF", 500, details=str(e))

    filename = quote_filename(quote["calculation"].get("name"), lang, calculation_id)
    return Response(pdf, mimetype="application/pdf", headers={
        "Content-Disposition": f'attachment; filename="{filename}"',
    })


@bp.route("/api/quote/<calculation_id>/<token>/respond", methods=["POST"])
@rate_limit("public")
def api_quote_respond(calculation_id, token):
    action = request.form.get("action")
    comment = request.form.get("comment")
    if action not in FORM_ACTIONS:
        return Response("Invalid action", status=400, mimetype="text/plain")

    if not update_quote_response(calculation_id, token, action, comment or None):
        return Response("Failed to update quote", status=500, mimetype="text/plain")
    return redirect(f"/quote/{calculation_id}/{token}?{urlencode({'responded': action})}", code=303)


@bp.route("/api/quote/<calculation_id>/respond-waiting", methods=["POST"])
@client_required
def api_quote_respond_waiting(calculation_id):
    session = current_client()
    comment = (request.form.get("comment") or "").strip()
    if not comment:
        return redirect("/dashboard?error=empty_response", code=303)

    try:
        token = record_question(calculation_id, comment, session.get("customerName"))
    except Exception as e:
        log.error("respond-waiting on %s failed: %s", calculation_id, e, exc_info=True)
        return redirect("/dashboard?error=server_error", code=303)
    if not token:
        return redirect("/dashboard?error=no_share", code=303)
    return redirect("/dashboard?success=response_sent", code=303)


@bp.route("/api/quote/bundle/<bundle_id>/<token>")
@rate_limit("public")
def api_quote_bundle(bundle_id, token):
    bundle = get_quote_bundle_by_token(bundle_id, token)
    if not bundle:
        return json_error("Bundle not found", 404)
    return jsonify(bundle)
