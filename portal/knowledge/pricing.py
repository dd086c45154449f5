"""
Pricing Reconstruction
======================
Calculations saved by the main application carry prices under several
generations of field names, and the client-rating / delivery-term
multipliers are applied on top of stored sale prices. This module
re-derives what the client actually pays per line.

Two consumers:
1. Quote page / calculation detail: reconstruct_product_prices()
2. PDF quotation: build_quote_lines(), which also spreads the calculation
   total (including referrer commission) proportionally over every line
"""

import re
import logging

log = logging.getLogger("portal.pricing")

_SUFFIXED_DIMENSION = re.compile(r"^(width_mm|height_mm|pieces)_(\d+)$", re.IGNORECASE)

DEFAULT_LABELS = {"product": "Produkt", "service": "Služba", "material": "Materiál", "pcs": "ks"}


def as_number(value) -> float:
    """Numeric value or 0 for missing, blank or unparsable input."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return number


def _get(obj, *path):
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


# ── Dimensions ────────────────────────────────────────────────────────────────

def extract_dimensions(fields: dict) -> list:
    """Sticker sizes from calculator input fields.

    Supports ``width_mm_N``/``height_mm_N``/``pieces_N`` sets (sorted by N) and
    a single ``width_mm|width|sirka`` + ``height_mm|height|vyska`` pair, used
    only when no numbered set is present.
    """
    if not isinstance(fields, dict):
        return []
    suffixes = set()
    for key in fields:
        match = _SUFFIXED_DIMENSION.match(str(key))
        if match:
            suffixes.add(match.group(2))

    dimensions = []
    has_width = any(k in fields for k in ("width_mm", "width", "sirka"))
    has_height = any(k in fields for k in ("height_mm", "height", "vyska"))
    if has_width and has_height and not suffixes:
        width = as_number(fields.get("width_mm") or fields.get("width") or fields.get("sirka"))
        height = as_number(fields.get("height_mm") or fields.get("height") or fields.get("vyska"))
        pieces = as_number(fields.get("pieces") or fields.get("pocet") or fields.get("ks") or 1)
        if width > 0 and height > 0:
            dimensions.append({"width": width, "height": height, "pieces": pieces, "name": "Nálepka"})

    for idx, suffix in enumerate(sorted(suffixes, key=int)):
        width = as_number(fields.get(f"width_mm_{suffix}"))
        height = as_number(fields.get(f"height_mm_{suffix}"))
        pieces = as_number(fields.get(f"pieces_{suffix}") or 1)
        if width > 0 and height > 0:
            dimensions.append({
                "width": width, "height": height, "pieces": pieces,
                "name": f"Nálepka {idx + 1}",
            })
    return dimensions


# ── Multipliers ───────────────────────────────────────────────────────────────

def pricing_multiplier(breakdown) -> float:
    """Client-rating multiplier times delivery-term multiplier."""
    breakdown = breakdown if isinstance(breakdown, dict) else {}
    client = as_number(breakdown.get("clientMultiplier")) or 1.0
    delivery = as_number(breakdown.get("deliveryMultiplier")) or 1.0
    return client * delivery


def price_ratio(breakdown) -> float:
    """finalPrice / originalPrice when both were saved, else the combined multiplier.

    Older calculations stored only the global totals, not the multipliers.
    """
    breakdown = breakdown if isinstance(breakdown, dict) else {}
    final = as_number(breakdown.get("finalPrice"))
    original = as_number(breakdown.get("originalPrice"))
    if final > 0 and original > 0:
        return final / original
    return pricing_multiplier(breakdown)


def product_display_name(product: dict) -> str:
    """"Category - Variant" as the main application shows it."""
    category = (_get(product, "product", "name") or _get(product, "product", "categoryName")
                or product.get("categoryName") or "")
    variant = (_get(product, "variant", "name") or _get(product, "variant", "variantName")
               or product.get("variantName") or product.get("name")
               or product.get("templateName") or "")
    if category and variant and category != variant:
        return f"{category} - {variant}"
    return variant or category or "Produkt"


# ── Calculation products ──────────────────────────────────────────────────────

def reconstruct_product_prices(products, breakdown=None, total_price=0, actual_total_price=0) -> list:
    """Quote products with the price the client pays for each."""
    products = [p for p in (products or []) if isinstance(p, dict)]
    ratio = price_ratio(breakdown)
    # totalPrice includes commissions, actualTotalPrice is the base price
    final_total = as_number(total_price) or as_number(actual_total_price)
    fallback = final_total / (len(products) or 1)

    result = []
    for product in products:
        fields = product.get("customFieldValues") or product.get("calculatorInputValues") or {}
        dimensions = extract_dimensions(fields)

        adjusted = as_number(product.get("globalAdjustedPrice")) or as_number(product.get("adjustedPrice"))
        base = (as_number(product.get("totalSale")) or as_number(product.get("originalSalePrice"))
                or as_number(product.get("salePrice")) or as_number(product.get("finalPrice"))
                or as_number(product.get("price")))
        total = adjusted if adjusted > 0 else base * ratio
        if total == 0 and fallback > 0:
            total = fallback

        quantity = as_number(product.get("quantity")) or as_number(product.get("calculatedQuantity")) or 1
        unit = _get(product, "variant", "unit") or product.get("unit") or "ks"

        item = {
            "id": product.get("id") or product.get("productId") or "unknown",
            "name": product_display_name(product),
            "quantity": quantity,
            "unit": unit,
            "unitPrice": total / quantity if quantity > 0 else total,
            "totalPrice": total,
            "services": [],
        }
        if dimensions:
            item["dimensions"] = dimensions
        result.append(item)
    return result


# ── PDF lines ─────────────────────────────────────────────────────────────────

def _base_product_total(product: dict, multiplier: float) -> float:
    sale = as_number(product.get("totalSale")) or as_number(product.get("originalSalePrice"))
    if sale > 0:
        return sale * multiplier
    price = as_number(product.get("finalPrice")) or as_number(product.get("price"))
    if price > 0:
        return price * multiplier
    qty = as_number(product.get("quantity")) or 1
    unit_price = as_number(_get(product, "variant", "unitSalePrice")) or as_number(product.get("unitPrice"))
    if unit_price > 0:
        return unit_price * qty * multiplier
    return as_number(_get(product, "variant", "basePrice")) * multiplier


def _service_sale(service: dict) -> float:
    return (as_number(service.get("totalSale")) or as_number(service.get("calculatedPrice"))
            or as_number(service.get("salePrice")) or as_number(service.get("calculatedCost")))


def _product_name(product):
    return product.get("name") or _get(product, "variant", "name") or _get(product, "product", "name") or ""


def _service_name(service):
    return _get(service, "service", "name") or service.get("name") or service.get("serviceName") or ""


def _material_name(material):
    return _get(material, "material", "name") or material.get("name") or material.get("materialName") or ""


def _items(calculation_data, key):
    items = (calculation_data or {}).get(key) or []
    return [i for i in items if isinstance(i, dict)] if isinstance(items, list) else []


def collect_line_names(calculation_data: dict) -> list:
    """Unique non-blank product, service and material names, in line order."""
    names = [_product_name(p) for p in _items(calculation_data, "products")]
    names += [_service_name(s) for s in _items(calculation_data, "services")]
    names += [_material_name(m) for m in _items(calculation_data, "materials")]
    seen, unique = set(), []
    for name in names:
        if isinstance(name, str) and name.strip() and name not in seen:
            seen.add(name)
            unique.append(name)
    return unique


def _line(name, description, qty, unit, total, vat_rate):
    vat = total * vat_rate / 100
    return {
        "name": name,
        "description": description,
        "qty": qty,
        "unit": unit,
        "unitPrice": total / qty if qty > 0 else total,
        "total": total,
        "vatRate": vat_rate,
        "vatAmount": vat,
        "totalWithVat": total + vat,
    }


def build_quote_lines(calculation_data, total_amount=0, vat_rate=23, foreign=False,
                      translate=None, labels=None) -> dict:
    """Line items and totals for the PDF quotation.

    ``total_amount`` is the calculation total including every markup; the
    ratio between it and the sum of reconstructed lines is applied to each
    line so the lines add up to what the client was quoted. Foreign
    quotations are reverse charge (VAT 0).
    """
    calculation_data = calculation_data if isinstance(calculation_data, dict) else {}
    labels = {**DEFAULT_LABELS, **(labels or {})}
    tr = translate or (lambda text: text)

    products = _items(calculation_data, "products")
    services = _items(calculation_data, "services")
    materials = _items(calculation_data, "materials")
    multiplier = pricing_multiplier(calculation_data.get("globalPricingBreakdown"))
    total_amount = as_number(total_amount)

    base_total = sum(_base_product_total(p, multiplier) for p in products)
    base_total += sum(_service_sale(s) * multiplier for s in services)
    base_total += sum((as_number(m.get("totalSale")) or as_number(m.get("totalCost"))) * multiplier for m in materials)
    markup = total_amount / base_total if total_amount > 0 and base_total > 0 else 1.0

    effective_vat = 0 if foreign else as_number(vat_rate)
    lines = []
    product_sum = 0.0
    for product in products:
        total = _base_product_total(product, multiplier) * markup
        product_sum += total
        specs = product.get("templateConfigLabels")
        description = ""
        if isinstance(specs, dict):
            description = ", ".join(
                [str(v) for k, v in specs.items() if v and k not in ("id", "entityId")][:4]
            )
        lines.append(_line(
            tr(_product_name(product) or labels["product"]), description,
            as_number(product.get("quantity")) or 1, labels["pcs"], total, effective_vat,
        ))

    service_sum = 0.0
    for service in services:
        total = _service_sale(service) * multiplier * markup
        if total <= 0:
            continue
        service_sum += total
        lines.append(_line(tr(_service_name(service) or labels["service"]), "", 1,
                           labels["pcs"], total, effective_vat))

    for material in materials:
        qty = as_number(material.get("quantity")) or 1
        unit = labels["pcs"] if material.get("unit") == "ks" else (material.get("unit") or labels["pcs"])
        base = (as_number(material.get("totalSale")) or as_number(material.get("totalCost"))
                or as_number(material.get("salePrice")) * qty)
        lines.append(_line(tr(_material_name(material) or labels["material"]), "", qty,
                           unit, base * multiplier * markup, effective_vat))

    global_total = total_amount if total_amount > 0 else product_sum + service_sum
    vat_amount = global_total * effective_vat / 100
    return {
        "lines": lines,
        "globalTotal": global_total,
        "vatRate": effective_vat,
        "vatAmount": vat_amount,
        "totalWithVat": global_total + vat_amount,
        "markupRatio": markup,
    }
