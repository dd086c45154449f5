"""
Client Statistics
=================
Dashboard numbers for one client, computed from orders_v2, order_tasks_v2
and order_services:

- spend totals, last 12 months of spending, status breakdown
- delivery / production times from the last completed task before invoicing
  (order dates as fallback)
- top 5 product departments by spend, internal departments excluded
- this month vs last month

Month boundaries use server local time.
"""

import math
import logging
from datetime import datetime

from portal.core.db import get_db, ts_to_datetime

log = logging.getLogger("portal.statistics")

MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "Máj", "Jún", "Júl", "Aug", "Sep", "Okt", "Nov", "Dec"]

# Departments that are production steps, not product categories
INTERNAL_DEPARTMENTS = {
    "fakturácia", "finalizácia / balenie", "finalizácia", "neviazane", "nakup-predaj",
    "tlač", "print", "balenie", "dokončovanie", "uncategorized", "ostatné",
}

DEPARTMENT_LABELS = {
    "Veľkoformátová tlač": "Veľkoformát",
    "velkoformatova-tlac": "Veľkoformát",
    "polep áut": "Polep vozidiel",
    "polep-aut": "Polep vozidiel",
    "Maloformátová tlač": "Maloformát",
    "maloformatova-tlac": "Maloformát",
    "Digitálna tlač": "Digitálna tlač",
    "PVC": "PVC produkty",
    "Roll-up": "Roll-up systémy",
    "Textil": "Textilná potlač",
    "Svetelná reklama": "Svetelná reklama",
}

SECONDS_PER_DAY = 86400


def empty_statistics() -> dict:
    return {
        "totalSpent": 0,
        "totalOrders": 0,
        "averageOrderValue": 0,
        "monthlySpending": [],
        "orderStatusBreakdown": [],
        "averageDeliveryDays": None,
        "averageProductionDays": None,
        "fastestDeliveryDays": None,
        "topProducts": [],
        "lastOrderDate": None,
        "ordersThisMonth": 0,
        "ordersLastMonth": 0,
        "spendingThisMonth": 0,
        "spendingLastMonth": 0,
    }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _month_key(dt: datetime) -> str:
    return f"{dt.year}-{dt.month:02d}"


def _last_months(now: datetime, count: int = 12) -> list:
    """``(year, month)`` pairs for the last ``count`` months, oldest first."""
    months = []
    year, month = now.year, now.month
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(months))


def _monthly_spending(orders, now):
    buckets = {f"{y}-{m:02d}": {"amount": 0, "orderCount": 0} for y, m in _last_months(now)}
    for order in orders:
        created = ts_to_datetime(order["created_at"])
        if not created:
            continue
        key = _month_key(created.astimezone())
        if key in buckets:
            buckets[key]["amount"] += order["total_value"] or 0
            buckets[key]["orderCount"] += 1
    result = []
    for key, data in buckets.items():
        year, month = (int(p) for p in key.split("-"))
        result.append({"month": MONTH_NAMES[month - 1], "year": year, **data})
    return result


def _status_breakdown(orders):
    counts = {}
    for order in orders:
        counts[order["status"]] = counts.get(order["status"], 0) + 1
    total = len(orders)
    return [{"status": status, "count": count, "percentage": _round_half_up(count / total * 100)}
            for status, count in counts.items()]


def _durations(task_rows, orders):
    """(delivery days list, production days list) from tasks, else order dates."""
    delivery, production = [], []
    for row in task_rows:
        last = row["last_task_completed"]
        if row["order_start_date"] and last:
            days = _round_half_up((last - row["order_start_date"]) / SECONDS_PER_DAY)
            if days >= 0:
                production.append(days)
        if row["order_created_at"] and last:
            days = _round_half_up((last - row["order_created_at"]) / SECONDS_PER_DAY)
            if days >= 0:
                delivery.append(days)

    if not delivery:
        for order in orders:
            end = order["actual_end_date"]
            if order["start_date"] and end:
                days = _round_half_up((end - order["start_date"]) / SECONDS_PER_DAY)
                if days > 0:
                    production.append(days)
            if order["created_at"] and end:
                days = _round_half_up((end - order["created_at"]) / SECONDS_PER_DAY)
                if days > 0:
                    delivery.append(days)
    return delivery, production


def _top_departments(department_rows, orders):
    categories = {}
    for row in department_rows:
        name = row["department_name"] or ""
        if name.lower() in INTERNAL_DEPARTMENTS:
            continue
        label = DEPARTMENT_LABELS.get(name, name)
        entry = categories.setdefault(label, {"count": 0, "totalSpent": 0})
        entry["count"] += row["order_count"]
        entry["totalSpent"] += row["total"] or 0

    if not categories and orders:
        categories["Zákazky celkom"] = {
            "count": len(orders),
            "totalSpent": sum(o["total_value"] or 0 for o in orders),
        }
    top = [{"name": name, **data} for name, data in categories.items()]
    top.sort(key=lambda item: item["totalSpent"], reverse=True)
    return top[:5]


def get_client_statistics(client_entity_id: str, client_name: str) -> dict:
    try:
        with get_db() as conn:
            orders = conn.execute(
                """SELECT id, status, total_value, start_date, planned_end_date,
                          actual_end_date, created_at
                   FROM orders_v2
                   WHERE client_entity_id = ? OR LOWER(client_name) LIKE LOWER(?)
                   ORDER BY created_at DESC""",
                (client_entity_id, f"%{client_name}%"),
            ).fetchall()
            if not orders:
                return empty_statistics()

            order_ids = [o["id"] for o in orders]
            placeholders = ",".join("?" * len(order_ids))
            task_rows = conn.execute(
                f"""SELECT t.order_id, o.created_at AS order_created_at,
                           o.start_date AS order_start_date,
                           MAX(t.completed_at) AS last_task_completed
                    FROM order_tasks_v2 t JOIN orders_v2 o ON t.order_id = o.id
                    WHERE t.order_id IN ({placeholders})
                      AND t.status = 'completed'
                      AND t.department_name NOT IN ('FAKTURÁCIA', 'Fakturácia')
                    GROUP BY t.order_id, o.created_at, o.start_date""",
                order_ids,
            ).fetchall()
            department_rows = conn.execute(
                f"""SELECT department_name, COUNT(DISTINCT order_id) AS order_count,
                           SUM(total_price) AS total
                    FROM order_services
                    WHERE order_id IN ({placeholders}) AND total_price > 0
                    GROUP BY department_name
                    ORDER BY total DESC""",
                order_ids,
            ).fetchall()
    except Exception as e:
        log.error("get_client_statistics(%s): %s", client_entity_id, e)
        return empty_statistics()

    now = datetime.now()
    total_orders = len(orders)
    total_spent = sum(o["total_value"] or 0 for o in orders)
    delivery, production = _durations(task_rows, orders)

    this_month_start = datetime(now.year, now.month, 1).timestamp()
    previous = _last_months(now, 2)[0]
    last_month_start = datetime(previous[0], previous[1], 1).timestamp()

    stats = empty_statistics()
    stats.update({
        "totalSpent": total_spent,
        "totalOrders": total_orders,
        "averageOrderValue": total_spent / total_orders,
        "monthlySpending": _monthly_spending(orders, now),
        "orderStatusBreakdown": _status_breakdown(orders),
        "averageDeliveryDays": _round_half_up(sum(delivery) / len(delivery)) if delivery else None,
        "averageProductionDays": _round_half_up(sum(production) / len(production)) if production else None,
        "fastestDeliveryDays": min(delivery) if delivery else None,
        "topProducts": _top_departments(department_rows, orders),
    })

    for order in orders:
        created = order["created_at"] or 0
        value = order["total_value"] or 0
        if stats["lastOrderDate"] is None and created:
            stats["lastOrderDate"] = ts_to_datetime(created)
        if created >= this_month_start:
            stats["ordersThisMonth"] += 1
            stats["spendingThisMonth"] += value
        elif created >= last_month_start:
            stats["ordersLastMonth"] += 1
            stats["spendingLastMonth"] += value
    return stats
