# routes_portal.py
# Logged-in client area: projects, calculations, orders, statistics,
# notifications, rating, product catalogue and order requests.

import logging
from datetime import datetime

from flask import jsonify, request

from portal.api.routes import bp, client_required, current_client, int_arg, json_error, request_json
from portal.core.calculations import (
    can_customer_access_calculation, get_calculation_activities, get_calculation_by_id,
    get_calculation_product_dimensions, get_calculation_products, get_calculation_share_link,
    get_client_calculations, get_client_notifications, get_client_projects,
    get_or_create_portal_project, get_project_calculations,
)
from portal.core.config import is_production
from portal.core.customers import get_customer_by_id, get_customer_rating, get_global_client_rating_rules
from portal.core.orders import (
    can_customer_access_order, get_customer_orders, get_order_by_calculation_id, get_order_by_id,
    get_order_services, get_order_tasks, get_quote_products,
)
from portal.core.statistics import get_client_statistics
from portal.forms.quote_pdf import format_date
from portal.integrations import business_flow
from portal.knowledge.pricing import as_number

log = logging.getLogger("portal.routes")


# ═══════════════════════════════════════════════════════════════════════════════
# Projects & calculations
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/projects")
@client_required
def api_projects():
    session = current_client()
    try:
        result = get_client_projects(session.get("customerId"), session.get("customerName"),
                                     limit=int_arg("limit", 20), offset=int_arg("offset", 0))
    except Exception as e:
        log.error("Projects for %s failed: %s", session.get("customerId"), e, exc_info=True)
        return json_error("Internal server error", 500)
    return jsonify(result)


@bp.route("/api/calculations")
@client_required
def api_calculations():
    session = current_client()
    project_id = request.args.get("projectId")
    limit = int_arg("limit", 20)
    offset = int_arg("offset", 0)
    try:
        if project_id:
            result = get_project_calculations(project_id, limit=limit, offset=offset)
        else:
            result = get_client_calculations(session.get("customerId"), session.get("customerName"),
                                             limit=limit, offset=offset)
    except Exception as e:
        log.error("Calculations for %s failed: %s", session.get("customerId"), e, exc_info=True)
        return json_error("Internal server error", 500)
    return jsonify(result)


@bp.route("/api/calculations/<calculation_id>")
@client_required
def api_calculation_detail(calculation_id):
    session = current_client()
    if not can_customer_access_calculation(session.get("customerId"), session.get("customerName"),
                                           calculation_id):
        return json_error("Forbidden", 403)
    calculation = get_calculation_by_id(calculation_id)
    if not calculation:
        return json_error("Calculation not found", 404)
    return jsonify({
        "calculation": calculation,
        "products": get_calculation_products(calculation_id),
        "dimensions": get_calculation_product_dimensions(calculation_id),
        "activities": get_calculation_activities(calculation_id),
        "order": get_order_by_calculation_id(calculation_id),
        "shareLink": get_calculation_share_link(calculation_id),
    })


# ═══════════════════════════════════════════════════════════════════════════════
# Product catalogue & order requests
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/product-templates")
@client_required
def api_product_templates():
    session = current_client()
    try:
        data = business_flow.list_product_templates(
            session.get("organizationId"),
            page=request.args.get("page") or "1",
            page_size=request.args.get("pageSize") or "20",
            search=request.args.get("search") or "",
            category_id=request.args.get("categoryId") or "",
        )
    except business_flow.UpstreamError as e:
        return json_error("Failed to fetch product templates", e.status)
    except Exception as e:
        log.error("Product templates failed: %s", e, exc_info=True)
        return json_error("Internal server error", 500)
    return jsonify(data)


def _cart_product(item: dict) -> dict:
    """Calculation product for one cart line; parameter modifiers raise the unit price."""
    selected = {}
    modifier = 0.0
    for param in item.get("parameters") or []:
        selected[param.get("parameterName")] = param.get("value")
        modifier += as_number(param.get("priceModifier"))
    quantity = as_number(item.get("quantity"))
    unit_price = as_number(item.get("basePrice")) + modifier
    total_cost = unit_price * quantity
    return {
        "id": item.get("id"),
        "productId": item.get("id"),
        "name": item.get("name"),
        "product": {"id": item.get("id"), "name": item.get("name"), "categoryId": item.get("categoryId")},
        "variant": {"name": item.get("name"), "unit": "ks"},
        "quantity": item.get("quantity"),
        "calculatedQuantity": item.get("quantity"),
        "totalCost": total_cost,
        "salePrice": unit_price,
        "finalPrice": total_cost,
        "deliveryDays": item.get("deliveryDays"),
        "customFieldValues": selected,
        "calculatorInputValues": selected,
    }


@bp.route("/api/order-request", methods=["POST"])
@client_required
def api_order_request():
    session = current_client()
    body = request_json()
    items = [i for i in (body.get("items") or []) if isinstance(i, dict)]
    if not items:
        return json_error("No items in cart", 400)
    project_name = body.get("projectName")
    note = body.get("note")

    try:
        project = get_or_create_portal_project(
            session.get("customerId"), session.get("customerName"),
            project_name or f"Dopyt z portálu - {format_date(datetime.now(), 'sk')}",
        )
        products = [_cart_product(i) for i in items]
        total = sum(p["totalCost"] for p in products)
        names = ", ".join(str(i.get("name") or "") for i in items)
        calculation = business_flow.create_calculation(session.get("organizationId"), {
            "name": project_name or f"Dopyt - {names[:50]}",
            "description": note or f"Dopyt z klientského portálu obsahujúci {len(items)} produktov",
            "projectId": project["id"],
            "calculationData": {
                "products": products,
                "services": [],
                "materials": [],
                "customVariables": [],
                "actualTotalPrice": total,
                "totalCost": total,
                "selectedClient": {
                    "entityId": session.get("customerId"),
                    "name": session.get("customerName"),
                    "email": session.get("email"),
                },
                "customerNote": note,
                "source": "client-portal",
            },
            "calculationDataKeys": ["products", "services", "materials", "customVariables",
                                    "actualTotalPrice"],
        })
    except business_flow.UpstreamError:
        return json_error("Failed to create calculation", 500)
    except Exception as e:
        log.error("Order request failed for %s: %s", session.get("customerId"), e, exc_info=True)
        return json_error("Internal server error", 500)

    log.info("Order request from %s: project %s, calculation %s, %d items",
             session.get("customerName"), project["id"], calculation.get("id"), len(items))
    return jsonify({
        "success": True,
        "projectId": project["id"],
        "calculationId": calculation.get("id"),
        "message": "Dopyt bol úspešne odoslaný. Budeme vás kontaktovať s cenovou ponukou.",
    }), 201


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/orders")
@client_required
def api_orders():
    session = current_client()
    try:
        orders = get_customer_orders(session.get("customerId"), session.get("customerName"))
    except Exception as e:
        log.error("Orders for %s failed: %s", session.get("customerId"), e, exc_info=True)
        return json_error("Internal server error", 500)
    return jsonify({"items": orders, "total": len(orders)})


@bp.route("/api/orders/<order_id>")
@client_required
def api_order_detail(order_id):
    session = current_client()
    order = get_order_by_id(order_id)
    if not order:
        return json_error("Order not found", 404)
    if not can_customer_access_order(session.get("customerId"), session.get("customerName"), order_id):
        return json_error("Forbidden", 403)
    return jsonify({
        "order": order,
        "services": get_order_services(order_id),
        "tasks": get_order_tasks(order_id),
        "products": get_quote_products(order_id, order["name"]),
    })


# ═══════════════════════════════════════════════════════════════════════════════
# Dashboard widgets
# ═══════════════════════════════════════════════════════════════════════════════

@bp.route("/api/statistics")
@client_required
def api_statistics():
    session = current_client()
    return jsonify(get_client_statistics(session.get("customerId"), session.get("customerName")))


@bp.route("/api/notifications")
@client_required
def api_notifications():
    session = current_client()
    notifications = get_client_notifications(session.get("customerId"), session.get("customerName"),
                                             limit=int_arg("limit", 10))
    return jsonify({"items": notifications})


@bp.route("/api/customer/rating")
@client_required
def api_customer_rating():
    session = current_client()
    return jsonify({
        "rating": get_customer_rating(session.get("customerId")),
        "rules": get_global_client_rating_rules(session.get("organizationId")),
    })


# ── Diagnostics ─────────────────────────────────────────────────────────────

@bp.route("/api/test-customer/<customer_id>")
def api_test_customer(customer_id):
    """Address lookup used to debug PDF customer boxes. Not served in production."""
    if is_production():
        return json_error("Not found", 404)
    try:
        customer = get_customer_by_id(customer_id)
    except Exception as e:
        return json_error("Database error", 500, details=str(e))
    if not customer:
        return json_error("Customer not found", 404, searchedId=customer_id)
    fields = ("id", "entityId", "name", "billingStreet", "billingCity", "billingPostalCode",
              "billingCountry", "corrStreet", "corrCity", "ico", "dic", "icDph", "email",
              "contactEmail")
    return jsonify({"success": True, "customer": {k: customer.get(k) for k in fields}})
