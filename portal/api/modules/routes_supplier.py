# routes_supplier.py
# Supplier RFQ links: read the request, submit prices as JSON or as the
# HTML form (form posts are answered with redirects back to the page).

import logging
from urllib.parse import quote

from flask import jsonify, redirect, request

from portal.api.routes import bp, json_error, request_json
from portal.core.security import rate_limit
from portal.core.supplier_rfq import get_supplier_rfq_by_token, parse_supplier_form, submit_supplier_quote

log = logging.getLogger("portal.supplier")


@bp.route("/api/supplier-rfq/<token>")
@rate_limit("public")
def api_supplier_rfq(token):
    found = get_supplier_rfq_by_token(token)
    if not found:
        return json_error("RFQ not found", 404)
    return jsonify(found)


@bp.route("/api/supplier-rfq/<token>/respond", methods=["POST"])
@rate_limit("public")
def api_supplier_rfq_respond(token):
    is_json = "application/json" in (request.content_type or "")
    if is_json:
        body = request_json()
        items = [i for i in (body.get("items") or []) if isinstance(i, dict)]
        submitted = {"items": items, "supplierEmail": body.get("supplierEmail"),
                     "supplierName": body.get("supplierName"), "notes": body.get("notes")}
    else:
        submitted = parse_supplier_form(request.form)

    if not submitted["items"]:
        return json_error("No items submitted", 400)

    try:
        result = submit_supplier_quote(token, submitted["items"], submitted["supplierEmail"],
                                       submitted["supplierName"], submitted["notes"])
    except Exception as e:
        log.error("Supplier response for %s failed: %s", token[:8], e, exc_info=True)
        if is_json:
            return json_error("Internal server error", 500)
        return redirect(f"/supplier-rfq/{token}?error=exception", code=303)

    if not result["success"]:
        log.info("Supplier response rejected: %s", result.get("error"))
        if not is_json:
            return redirect(f"/supplier-rfq/{token}?error={quote(result.get('error') or 'unknown', safe='')}",
                            code=303)
        return json_error(result.get("error"), 400)

    if not is_json:
        return redirect(f"/supplier-rfq/{token}?submitted=1", code=303)
    return jsonify({"success": True, "quoteId": result["quoteId"]})
