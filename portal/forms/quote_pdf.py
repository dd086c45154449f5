"""
Quote PDF Generator
===================
Invoice-style quotation rendered straight onto a reportlab canvas.

Layout (A4, top to bottom):
  - supplier box (logo + invoicing details) | document title, name, date
  - customer box | delivery address box
  - date / validity (+14 days) / delivery time strip
  - 8-column item table, header repeated on page breaks
  - VAT summary (reverse charge for foreign-language quotes)
  - conditions, contact bar, thank-you footer

Languages: sk, en, de-AT. Item names and the calculation name are machine
translated for en / de-AT; unknown languages get Slovak labels.
"""

import io
import os
import re
import logging
from datetime import datetime, timedelta
from typing import Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.colors import HexColor
from reportlab.lib.utils import simpleSplit, ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont, TTFError
from reportlab.pdfgen import canvas

from portal.core.config import PROJECT_ROOT, data_dir
from portal.core.customers import client_display_fields
from portal.integrations.translate import translate_batch
from portal.knowledge.pricing import as_number, build_quote_lines, collect_line_names

log = logging.getLogger("portal.quote_pdf")

VALIDITY_DAYS = 14
DEFAULT_DELIVERY_DAYS = 10

# ═══════════════════════════════════════════════════════════════════════════════
# COLORS
# ═══════════════════════════════════════════════════════════════════════════════
ORANGE  = HexColor("#d4740c")   # labels, table header, totals bar
NAVY    = HexColor("#1a365d")   # names and values
SLATE   = HexColor("#4a5568")   # detail text
GRAY    = HexColor("#666666")
BORDER  = HexColor("#e5e5e5")
PANEL   = HexColor("#fafafa")
VAT_HDR = HexColor("#f7f7f7")
WHITE   = HexColor("#FFFFFF")

# ═══════════════════════════════════════════════════════════════════════════════
# LABELS
# ═══════════════════════════════════════════════════════════════════════════════
PDF_TRANSLATIONS = {
    "sk": {
        "docTitle": "CENOVÁ PONUKA",
        "supplier": "DODÁVATEĽ",
        "customer": "ODBERATEĽ",
        "product": "Produkt",
        "service": "Služba",
        "material": "Materiál",
        "price": "Cena",
        "conditions": "Podmienky",
        "deliveryTime": "Dodacia lehota",
        "workingDays": "pracovných dní",
        "offerValidity": "Platnosť ponuky",
        "days": "dní",
        "vat": "DPH",
        "reverseCharge": "Reverse Charge - DPH",
        "totalNet": "CELKOM",
        "footer": "Ďakujeme za Váš záujem. V prípade otázok nás neváhajte kontaktovať.",
        "items": "Položky",
        "name": "Názov",
        "count": "Počet",
        "unit": "MJ",
        "unitPrice": "J.cena",
        "total": "Celkom",
        "vatBase": "Základ DPH",
        "totalToPay": "Suma na úhradu",
        "date": "Dátum",
        "validity": "Platnosť",
        "deliveryAddress": "Dodacia adresa",
        "defaultCountry": "Slovenská republika",
        "pcs": "ks",
    },
    "en": {
        "docTitle": "QUOTATION",
        "supplier": "SUPPLIER",
        "customer": "CUSTOMER",
        "product": "Product",
        "service": "Service",
        "material": "Material",
        "price": "Price",
        "conditions": "Terms & Conditions",
        "deliveryTime": "Delivery time",
        "workingDays": "working days",
        "offerValidity": "Offer validity",
        "days": "days",
        "vat": "VAT",
        "reverseCharge": "Reverse Charge - VAT",
        "totalNet": "TOTAL NET",
        "footer": "Thank you for your interest. Please do not hesitate to contact us if you have any questions.",
        "items": "Items",
        "name": "Name",
        "count": "Qty",
        "unit": "Unit",
        "unitPrice": "Unit Price",
        "total": "Total",
        "vatBase": "VAT Base",
        "totalToPay": "Total to Pay",
        "date": "Date",
        "validity": "Validity",
        "deliveryAddress": "Delivery Address",
        "defaultCountry": "Slovakia",
        "pcs": "pcs",
    },
    "de-AT": {
        "docTitle": "ANGEBOT",
        "supplier": "LIEFERANT",
        "customer": "KUNDE",
        "product": "Produkt",
        "service": "Dienstleistung",
        "material": "Material",
        "price": "Preis",
        "conditions": "Bedingungen",
        "deliveryTime": "Lieferzeit",
        "workingDays": "Werktage",
        "offerValidity": "Angebotsgültigkeit",
        "days": "Tage",
        "vat": "MwSt.",
        "reverseCharge": "Reverse Charge - MwSt.",
        "totalNet": "GESAMT NETTO",
        "footer": "Vielen Dank für Ihr Interesse. Bei Fragen stehen wir Ihnen gerne zur Verfügung.",
        "items": "Positionen",
        "name": "Bezeichnung",
        "count": "Menge",
        "unit": "Einheit",
        "unitPrice": "Einzelpreis",
        "total": "Gesamt",
        "vatBase": "Nettobetrag",
        "totalToPay": "Zahlbetrag",
        "date": "Datum",
        "validity": "Gültigkeit",
        "deliveryAddress": "Lieferadresse",
        "defaultCountry": "Österreich",
        "pcs": "Stk.",
    },
}

_FILENAME_PREFIX = {"de-AT": "angebot", "en": "quotation"}


def labels_for(lang: str) -> dict:
    return PDF_TRANSLATIONS.get(lang) or PDF_TRANSLATIONS["sk"]


# ── Formatting ────────────────────────────────────────────────────────────────

def format_currency(amount, lang: str = "sk") -> str:
    """EUR amount as sk-SK ('1 234,56 €') or de-AT ('€ 1.234,56') shows it."""
    value = as_number(amount)
    sign = "-" if value < 0 else ""
    grouped = f"{abs(value):,.2f}"          # 1,234.56
    if lang == "de-AT":
        number = grouped.replace(",", "_").replace(".", ",").replace("_", ".")
        return f"{sign}€ {number}"
    number = grouped.replace(",", " ").replace(".", ",")
    return f"{sign}{number} €"


def format_date(dt: datetime, lang: str = "sk") -> str:
    if lang == "de-AT":
        return dt.strftime("%d.%m.%Y")
    if lang == "en":
        return dt.strftime("%d/%m/%Y")
    return f"{dt.day}. {dt.month}. {dt.year}"


def _plain_number(value) -> str:
    value = as_number(value)
    return str(int(value)) if value == int(value) else f"{value:g}"


def quote_filename(name: str, lang: str, fallback: str) -> str:
    """Download name, e.g. ``cenova-ponuka-Banner-3x1m.pdf``."""
    prefix = _FILENAME_PREFIX.get(lang, "cenova-ponuka")
    safe = re.sub(r"[^a-zA-Z0-9]", "-", name or fallback or "")
    return f"{prefix}-{safe}.pdf"


# ── Assets ────────────────────────────────────────────────────────────────────

_FONT_CANDIDATES = [
    ("DejaVuSans.ttf", "DejaVuSans-Bold.ttf"),
]
SYSTEM_FONT_DIRS = ["/usr/share/fonts/truetype/dejavu", "/usr/share/fonts/dejavu"]
_fonts = None


def find_pdf_font() -> Optional[str]:
    """Directory holding DejaVuSans.ttf (data dir ``fonts/`` first), or None."""
    regular = _FONT_CANDIDATES[0][0]
    for path in [os.path.join(data_dir(), "fonts"), *SYSTEM_FONT_DIRS]:
        if os.path.exists(os.path.join(path, regular)):
            return path
    return None


def _register_fonts():
    """(regular, bold) font names; DejaVu Sans when available for Slovak glyphs."""
    global _fonts
    if _fonts:
        return _fonts
    _fonts = ("Helvetica", "Helvetica-Bold")
    for regular, bold in _FONT_CANDIDATES:
        for path in [os.path.join(data_dir(), "fonts"), *SYSTEM_FONT_DIRS]:
            if not os.path.exists(os.path.join(path, regular)):
                continue
            try:
                pdfmetrics.registerFont(TTFont("PortalSans", os.path.join(path, regular)))
                bold_path = os.path.join(path, bold)
                if os.path.exists(bold_path):
                    pdfmetrics.registerFont(TTFont("PortalSans-Bold", bold_path))
                    _fonts = ("PortalSans", "PortalSans-Bold")
                else:
                    _fonts = ("PortalSans", "PortalSans")
                log.info("PDF font registered from %s", path)
                return _fonts
            except TTFError as e:
                log.warning("Font registration failed for %s: %s", path, e)
    log.warning("DejaVu Sans not found, PDF falls back to Helvetica")
    return _fonts


def _find_logo() -> Optional[str]:
    """Find logo: data/logo.{png,jpg,jpeg} or static/images/logo.*"""
    for d in [data_dir(), os.path.join(PROJECT_ROOT, "static", "images")]:
        for ext in ("png", "jpg", "jpeg"):
            for name in ("company_logo", "logo"):
                p = os.path.join(d, f"{name}.{ext}")
                if os.path.exists(p):
                    return p
    return None


def _translation_map(calculation: dict, calculation_data: dict, lang: str) -> dict:
    texts = []
    if calculation.get("name"):
        texts.append(calculation["name"])
    texts += collect_line_names(calculation_data)
    unique = list(dict.fromkeys(t for t in texts if isinstance(t, str) and t.strip()))
    if not unique:
        return {}
    translated = translate_batch(unique, lang, "sk")
    return dict(zip(unique, translated))


# ═══════════════════════════════════════════════════════════════════════════════
# MAIN PDF GENERATOR
# ═══════════════════════════════════════════════════════════════════════════════

def generate_quote_pdf(quote: dict, lang: str = "sk", client: dict = None) -> bytes:
    """
    Render the quotation for a shared calculation.

    quote: ``{"calculation", "share", "organization"}`` as returned by
        get_calculation_by_share_token().
    client: customer record merged over calculationData.selectedClient;
        defaults to the selected client alone.
    """
    # ── Setup ──────────────────────────────────────────────────────────────────
    t = labels_for(lang)
    foreign = lang != "sk"
    calculation = quote.get("calculation") or {}
    organization = quote.get("organization") or {}
    calculation_data = calculation.get("calculationData") or {}
    invoicing = organization.get("invoicing") or {}
    vat_rate = as_number(invoicing.get("vatRate")) or 23

    translations = _translation_map(calculation, calculation_data, lang) if foreign else {}

    def tr(text):
        return translations.get(text) or text if foreign and text else text

    total_amount = as_number(calculation.get("totalPrice")) or as_number(calculation_data.get("actualTotalPrice"))
    summary = build_quote_lines(
        calculation_data, total_amount=total_amount, vat_rate=vat_rate, foreign=foreign,
        translate=tr, labels={k: t[k] for k in ("product", "service", "material", "pcs")},
    )
    if client is None:
        client = calculation_data.get("selectedClient") or {}
    customer = client_display_fields(client)

    org_name = invoicing.get("companyName") or organization.get("name") or "Spoločnosť"
    org_address = ", ".join(p for p in (invoicing.get("street"), invoicing.get("postalCode"),
                                        invoicing.get("city")) if p)
    delivery_days = calculation_data.get("overallDeliveryDays") or DEFAULT_DELIVERY_DAYS
    today = datetime.now()
    current_date = format_date(today, lang)
    validity_date = format_date(today + timedelta(days=VALIDITY_DAYS), lang)
    title_value = tr(calculation.get("name")) or calculation.get("calculationNumber") or ""

    def money(amount):
        return format_currency(amount, lang)

    log.info("Generating quote PDF %s (lang=%s, %d lines)",
             calculation.get("id"), lang, len(summary["lines"]))

    # ── Page constants ─────────────────────────────────────────────────────────
    W, H = A4
    ML = 40
    MR = W - 40
    UW = MR - ML
    FONT, BOLD = _register_fonts()

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"{t['docTitle']} - {calculation.get('name') or ''}")
    c.setAuthor(org_name)

    # top-origin y -> reportlab y
    def Y(top_y):
        return H - top_y

    def box(x, yt, w, h, fill=None, border=BORDER):
        if fill is not None:
            c.setFillColor(fill)
            c.rect(x, Y(yt) - h, w, h, fill=1, stroke=0)
        if border is not None:
            c.setStrokeColor(border)
            c.setLineWidth(0.75)
            c.rect(x, Y(yt) - h, w, h, fill=0, stroke=1)

    def text(x, yt, txt, font=None, size=9, color=NAVY, align="left"):
        c.setFont(font or FONT, size)
        c.setFillColor(color)
        s = str(txt) if txt not in (None, "") else ""
        if align == "right":
            c.drawRightString(x, Y(yt), s)
        elif align == "center":
            c.drawCentredString(x, Y(yt), s)
        else:
            c.drawString(x, Y(yt), s)

    def lines_in(txt, width, size=9, font=None):
        return simpleSplit(str(txt or ""), font or FONT, size, width)

    # ══════════════════════════════════════════════════════════════════════════
    # HEADER
    # ══════════════════════════════════════════════════════════════════════════
    half = UW / 2
    top = 40

    # ── Supplier box (left) ────────────────────────────────────────────────────
    supplier_details = [
        org_address,
        f"IČO: {invoicing.get('ico') or ''} · DIČ: {invoicing.get('dic') or ''}",
        f"IČ DPH: {invoicing.get('icDph') or ''}",
        f"{invoicing.get('email') or ''} · {invoicing.get('phone') or ''}",
    ]
    sy = top + 18
    text(ML + 12, sy, t["supplier"], BOLD, 8, ORANGE)
    sy += 6
    logo_path = _find_logo()
    if logo_path:
        try:
            img = ImageReader(logo_path)
            iw, ih = img.getSize()
            scale = min(150 / iw, 40 / ih)
            dw, dh = iw * scale, ih * scale
            c.drawImage(img, ML + 12, Y(sy) - dh, width=dw, height=dh,
                        preserveAspectRatio=True, mask="auto")
            sy += dh + 4
        except Exception as e:
            log.warning("Logo load failed: %s", e)
    sy += 12
    text(ML + 12, sy, org_name, BOLD, 12, NAVY)
    for detail in supplier_details:
        for part in lines_in(detail, half - 34, 8):
            sy += 11
            text(ML + 12, sy, part, FONT, 8, SLATE)
    supplier_h = sy + 12 - top
    box(ML, top, half - 10, supplier_h)

    # ── Document title (right) ─────────────────────────────────────────────────
    text(MR, top + 14, t["docTitle"], FONT, 9, ORANGE, "right")
    ty = top + 14
    for part in lines_in(title_value, half - 10, 18, BOLD)[:3]:
        ty += 22
        text(MR, ty, part, BOLD, 18, ORANGE, "right")
    text(MR, ty + 18, current_date, FONT, 9, GRAY, "right")

    cur = top + max(supplier_h, ty + 18 - top) + 14

    # ── Customer / delivery address ────────────────────────────────────────────
    tax_ids = " ".join(p for p in (
        f"IČO: {customer['ico']}" if customer["ico"] else "",
        f"· DIČ: {customer['dic']}" if customer["dic"] else "",
    ) if p)
    contact = customer["email"] + (f" · {customer['phone']}" if customer["phone"] else "")
    customer_details = [customer["address"], tax_ids,
                        f"IČ DPH: {customer['icDph']}" if customer["icDph"] else "", contact]

    cy = cur + 18
    text(ML + 12, cy, t["customer"], BOLD, 8, ORANGE)
    cy += 16
    text(ML + 12, cy, customer["name"], BOLD, 11, NAVY)
    for detail in customer_details:
        for part in lines_in(detail, half - 24, 8):
            cy += 11
            text(ML + 12, cy, part, FONT, 8, SLATE)

    dy = cur + 18
    text(ML + half + 12, dy, t["deliveryAddress"], BOLD, 8, ORANGE)
    dy += 8
    for part in lines_in(customer["address"] or t["defaultCountry"], half - 24, 8):
        dy += 11
        text(ML + half + 12, dy, part, FONT, 8, SLATE)

    customer_h = max(cy, dy) + 12 - cur
    box(ML, cur, half, customer_h)
    box(ML + half, cur, half, customer_h)
    cur += customer_h + 12

    # ── Dates strip ────────────────────────────────────────────────────────────
    box(ML, cur, UW, 34, fill=PANEL)
    date_items = [
        (t["date"], current_date),
        (t["validity"], validity_date),
        (t["deliveryTime"], f"{delivery_days} {t['workingDays']}"),
    ]
    for i, (label, value) in enumerate(date_items):
        x = ML + 12 + i * UW / 4
        text(x, cur + 13, label, BOLD, 7, ORANGE)
        text(x, cur + 26, value, FONT, 9, NAVY)
    cur += 34 + 16

    # ══════════════════════════════════════════════════════════════════════════
    # ITEMS TABLE
    # ══════════════════════════════════════════════════════════════════════════
    text(ML, cur, t["items"].upper(), BOLD, 9, ORANGE)
    c.setStrokeColor(ORANGE)
    c.setLineWidth(1.5)
    c.line(ML, Y(cur + 5), MR, Y(cur + 5))
    cur += 12

    # (label, width share, align)
    col_specs = [
        (t["name"], 0.35, "left"),
        (t["count"], 0.08, "center"),
        (t["unit"], 0.06, "center"),
        (t["unitPrice"], 0.12, "right"),
        (t["price"], 0.12, "right"),
        (f"{t['vat']}%", 0.07, "center"),
        (t["vat"], 0.10, "right"),
        (t["total"], 0.10, "right"),
    ]
    COLS = []
    x = ML
    for label, share, align in col_specs:
        COLS.append((label, x, UW * share, align))
        x += UW * share

    def cell(col, yt, value, font=None, size=8, color=NAVY):
        _, cx, cw, align = COLS[col]
        if align == "right":
            text(cx + cw - 4, yt, value, font, size, color, "right")
        elif align == "center":
            text(cx + cw / 2, yt, value, font, size, color, "center")
        else:
            text(cx + 4, yt, value, font, size, color)

    hdr_h = 20

    def table_header(yt):
        c.setFillColor(ORANGE)
        c.rect(ML, Y(yt) - hdr_h, UW, hdr_h, fill=1, stroke=0)
        for col, (label, _, _, _) in enumerate(COLS):
            cell(col, yt + 13, label.upper(), BOLD, 6.5, WHITE)
        return yt + hdr_h

    def new_page():
        c.setFillColor(GRAY)
        c.setFont(FONT, 7)
        c.drawRightString(MR, 20, str(c.getPageNumber()))
        c.showPage()
        return 40

    cur = table_header(cur)
    for item in summary["lines"]:
        name_lines = lines_in(item["name"], COLS[0][2] - 8, 9, BOLD)
        desc_lines = lines_in(item["description"], COLS[0][2] - 8, 7) if item["description"] else []
        row_h = max(20, len(name_lines) * 11 + len(desc_lines) * 9 + 9)

        if Y(cur) - row_h < 60:
            cur = table_header(new_page())

        baseline = cur + 13
        ly = baseline
        for part in name_lines:
            text(COLS[0][1] + 4, ly, part, BOLD, 9, NAVY)
            ly += 11
        for part in desc_lines:
            text(COLS[0][1] + 4, ly - 2, part, FONT, 7, SLATE)
            ly += 9
        cell(1, baseline, f"{as_number(item['qty']):.2f}")
        cell(2, baseline, item["unit"])
        cell(3, baseline, money(item["unitPrice"]))
        cell(4, baseline, money(item["total"]))
        cell(5, baseline, f"{_plain_number(item['vatRate'])}%")
        cell(6, baseline, money(item["vatAmount"]))
        cell(7, baseline, money(item["totalWithVat"]), BOLD)

        c.setStrokeColor(BORDER)
        c.setLineWidth(0.75)
        c.line(ML, Y(cur + row_h), MR, Y(cur + row_h))
        cur += row_h

    # ══════════════════════════════════════════════════════════════════════════
    # VAT SUMMARY + CONDITIONS + FOOTER
    # ══════════════════════════════════════════════════════════════════════════
    conditions = [
        (t["deliveryTime"], f"{delivery_days} {t['workingDays']}"),
        (t["offerValidity"], f"{VALIDITY_DAYS} {t['days']}"),
    ]
    if foreign:
        conditions.append((t["vat"], t["reverseCharge"]))
    tail_h = 12 + 90 + 14 + (24 + 13 * len(conditions)) + 16 + 36 + 30
    if Y(cur) - tail_h < 30:
        cur = new_page()

    cur += 12
    vx = ML + half
    vw = half
    effective_vat = _plain_number(summary["vatRate"])
    box(vx, cur, vw, 90)
    box(vx, cur, vw, 22, fill=VAT_HDR)
    text(vx + 10, cur + 14, f"{t['vat']} {effective_vat}%".upper(), BOLD, 7, GRAY)
    text(vx + vw * 0.4 + 10, cur + 14, t["vatBase"].upper(), BOLD, 7, GRAY)
    text(vx + vw - 10, cur + 14, t["total"].upper(), BOLD, 7, GRAY, "right")
    row_label = t["reverseCharge"] if foreign else f"{t['vat']} {effective_vat}%"
    text(vx + 10, cur + 38, row_label, FONT, 9, NAVY)
    text(vx + vw * 0.4 + 10, cur + 38, money(summary["globalTotal"]), FONT, 9, NAVY)
    text(vx + vw - 10, cur + 38, money(summary["totalWithVat"]), FONT, 9, NAVY, "right")
    box(vx, cur + 50, vw, 40, fill=ORANGE, border=None)
    text(vx + 12, cur + 74, t["totalNet"] if foreign else t["totalToPay"], BOLD, 10, WHITE)
    text(vx + vw - 12, cur + 76, money(summary["totalWithVat"]), BOLD, 15, WHITE, "right")
    cur += 90 + 14

    # ── Conditions ─────────────────────────────────────────────────────────────
    cond_h = 24 + 13 * len(conditions)
    box(ML, cur, UW, cond_h, fill=PANEL)
    text(ML + 12, cur + 14, t["conditions"].upper(), BOLD, 8, ORANGE)
    ky = cur + 14
    for label, value in conditions:
        ky += 13
        text(ML + 12, ky, f"{label}:", FONT, 8, GRAY)
        text(ML + 12 + UW * 0.4, ky, value, BOLD, 8, NAVY)
    cur += cond_h + 16

    # ── Contact bar ────────────────────────────────────────────────────────────
    box(ML, cur, UW, 36, fill=ORANGE, border=None)
    text(ML + 12, cur + 13, "Telefónne číslo:", FONT, 7, WHITE)
    text(ML + 12, cur + 27, invoicing.get("phone") or "", BOLD, 9, WHITE)
    text(MR - 12, cur + 13, "Email:", FONT, 7, WHITE, "right")
    text(MR - 12, cur + 27, invoicing.get("email") or "", BOLD, 9, WHITE, "right")
    cur += 36 + 12

    c.setStrokeColor(BORDER)
    c.setLineWidth(0.75)
    c.line(ML, Y(cur), MR, Y(cur))
    for part in lines_in(t["footer"], UW, 7):
        cur += 12
        text(W / 2, cur, part, FONT, 7, GRAY, "center")

    if c.getPageNumber() > 1:
        c.setFillColor(GRAY)
        c.setFont(FONT, 7)
        c.drawRightString(MR, 20, str(c.getPageNumber()))
    c.save()
    return buf.getvalue()
