"""
Production orders (orders_v2) and their services and department tasks.
Orders are read-only for the portal.
"""

import re
import logging
from collections import OrderedDict

from portal.core.db import get_db, loads_json, ts_to_datetime
from portal.knowledge.pricing import extract_dimensions

log = logging.getLogger("portal.orders")

_ORDER_COLUMNS = """id, order_number, name, status, priority, client_name, client_entity_id,
                    calculation_id, total_value, services_count, start_date,
                    planned_end_date, actual_end_date, created_at, updated_at"""

_PRODUCT_SERVICE_ID = re.compile(r"^([a-f0-9-]{36})-service-")
_ORDER_NAME_PREFIX = re.compile(r"^Kalkulácia\s*-\s*", re.IGNORECASE)


def _order_from_row(row) -> dict:
    return {
        "id": row["id"],
        "orderNumber": row["order_number"],
        "name": row["name"],
        "status": row["status"],
        "priority": row["priority"],
        "clientName": row["client_name"],
        "clientEntityId": row["client_entity_id"],
        "calculationId": row["calculation_id"],
        "totalValue": row["total_value"],
        "servicesCount": row["services_count"],
        "startDate": ts_to_datetime(row["start_date"]),
        "plannedEndDate": ts_to_datetime(row["planned_end_date"]),
        "actualEndDate": ts_to_datetime(row["actual_end_date"]),
        "createdAt": ts_to_datetime(row["created_at"]),
        "updatedAt": ts_to_datetime(row["updated_at"]),
    }


def get_customer_orders(customer_id: str, customer_name: str) -> list:
    """Orders of the customer, newest first."""
    try:
        with get_db() as conn:
            rows = conn.execute(
                f"""SELECT {_ORDER_COLUMNS} FROM orders_v2
                    WHERE client_entity_id = ? OR LOWER(client_name) LIKE LOWER(?)
                    ORDER BY created_at DESC""",
                (customer_id, f"%{customer_name}%"),
            ).fetchall()
    except Exception as e:
        log.error("get_customer_orders(%s): %s", customer_id, e)
        return []
    return [_order_from_row(r) for r in rows]


def get_order_by_id(order_id: str):
    try:
        with get_db() as conn:
            row = conn.execute(
                f"SELECT {_ORDER_COLUMNS} FROM orders_v2 WHERE id = ? LIMIT 1", (order_id,)
            ).fetchone()
    except Exception as e:
        log.error("get_order_by_id(%s): %s", order_id, e)
        return None
    return _order_from_row(row) if row else None


def get_order_by_calculation_id(calculation_id: str):
    """Order created from a calculation, if the client already ordered it."""
    try:
        with get_db() as conn:
            row = conn.execute(
                f"SELECT {_ORDER_COLUMNS} FROM orders_v2 WHERE calculation_id = ? LIMIT 1",
                (calculation_id,),
            ).fetchone()
    except Exception as e:
        log.error("get_order_by_calculation_id(%s): %s", calculation_id, e)
        return None
    return _order_from_row(row) if row else None


def _service_status(task_statuses, stored_status):
    if not task_statuses:
        return stored_status
    if all(s == "completed" for s in task_statuses):
        return "completed"
    if any(s in ("in_progress", "completed") for s in task_statuses):
        return "in_progress"
    return "pending"


def get_order_services(order_id: str) -> list:
    """Services of an order with status derived from their department tasks."""
    try:
        with get_db() as conn:
            services = conn.execute(
                """SELECT id, order_id, service_name, department_name, service_category, status,
                          quantity, unit, base_price, sale_price, total_price
                   FROM order_services WHERE order_id = ?
                   ORDER BY sequence ASC, created_at ASC""",
                (order_id,),
            ).fetchall()
            tasks = conn.execute(
                "SELECT service_id, status FROM order_tasks_v2 WHERE order_id = ?", (order_id,)
            ).fetchall()
    except Exception as e:
        log.error("get_order_services(%s): %s", order_id, e)
        return []

    by_service = {}
    for task in tasks:
        by_service.setdefault(task["service_id"], []).append(task["status"])

    return [{
        "id": r["id"],
        "orderId": r["order_id"],
        "serviceName": r["service_name"],
        "departmentName": r["department_name"],
        "serviceCategory": r["service_category"],
        "status": _service_status(by_service.get(r["id"]), r["status"]),
        "quantity": r["quantity"],
        "unit": r["unit"],
        "basePrice": r["base_price"],
        "salePrice": r["sale_price"],
        "totalPrice": r["total_price"],
    } for r in services]


def get_order_tasks(order_id: str) -> list:
    try:
        with get_db() as conn:
            rows = conn.execute(
                """SELECT id, order_id, service_id, department_name, status,
                          estimated_duration, started_at, completed_at
                   FROM order_tasks_v2 WHERE order_id = ?
                   ORDER BY sequence ASC, created_at ASC""",
                (order_id,),
            ).fetchall()
    except Exception as e:
        log.error("get_order_tasks(%s): %s", order_id, e)
        return []
    return [{
        "id": r["id"],
        "orderId": r["order_id"],
        "serviceId": r["service_id"],
        "departmentName": r["department_name"],
        "status": r["status"],
        "estimatedDuration": r["estimated_duration"],
        "startedAt": ts_to_datetime(r["started_at"]),
        "completedAt": ts_to_datetime(r["completed_at"]),
    } for r in rows]


def can_customer_access_order(customer_id: str, customer_name: str, order_id: str) -> bool:
    order = get_order_by_id(order_id)
    if not order:
        return False
    if order["clientEntityId"] == customer_id:
        return True
    client_name = (order["clientName"] or "").lower()
    return bool(client_name) and (customer_name or "").lower() in client_name


def get_quote_products(order_id: str, order_name: str) -> list:
    """Products of an order, rebuilt by grouping its services.

    The main application writes product services with ids of the form
    ``<product uuid>-service-<service id>``; anything else is grouped as
    ``standalone``.
    """
    try:
        with get_db() as conn:
            rows = conn.execute(
                """SELECT service_id, service_name, quantity, unit, sale_price, total_price,
                          service_category, input_fields_data
                   FROM order_services WHERE order_id = ?
                   ORDER BY sequence ASC, created_at ASC""",
                (order_id,),
            ).fetchall()
    except Exception as e:
        log.error("get_quote_products(%s): %s", order_id, e)
        return []

    groups = OrderedDict()
    for row in rows:
        service_name = row["service_name"] or ""
        total = row["total_price"] or 0
        # Zero-priced automatic services (invoicing) are not products
        if total == 0 and "automatická" in service_name:
            continue
        match = _PRODUCT_SERVICE_ID.match(row["service_id"] or "")
        product_id = match.group(1) if match else "standalone"
        fields = loads_json(row["input_fields_data"], {})
        if product_id not in groups:
            groups[product_id] = {
                "services": [],
                "totalPrice": 0,
                "quantity": row["quantity"] or 1,
                "unit": row["unit"] or "ks",
                "inputFieldsData": {},
            }
        group = groups[product_id]
        group["services"].append({"name": service_name, "price": total})
        group["totalPrice"] += total
        if isinstance(fields, dict):
            group["inputFieldsData"].update(fields)

    base_name = _ORDER_NAME_PREFIX.sub("", order_name or "").strip()
    products = []
    for idx, (product_id, group) in enumerate(groups.items()):
        name = base_name
        if len(groups) > 1 and idx > 0:
            name = (group["services"][0]["name"] if group["services"] else "") or f"Produkt {idx + 1}"
        product = {
            "id": product_id,
            "name": name,
            "quantity": group["quantity"],
            "unit": group["unit"],
            "unitPrice": group["totalPrice"] / group["quantity"],
            "totalPrice": group["totalPrice"],
            "services": group["services"],
        }
        dimensions = extract_dimensions(group["inputFieldsData"])
        if dimensions:
            product["dimensions"] = dimensions
        products.append(product)
    return products
