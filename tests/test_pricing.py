"""
Tests for portal.knowledge.pricing: numeric coercion, dimensions, multipliers,
quote-page product prices and PDF quote lines.
"""
import pytest

from portal.knowledge.pricing import (
    as_number, build_quote_lines, collect_line_names, extract_dimensions,
    price_ratio, pricing_multiplier, product_display_name, reconstruct_product_prices,
)


# ═══════════════════════════════════════════════════════════════════════════════
# as_number
# ═══════════════════════════════════════════════════════════════════════════════

class TestAsNumber:

    @pytest.mark.parametrize("raw, expected", [
        (12, 12.0), ("12.5", 12.5), (None, 0.0), ("", 0.0), ("abc", 0.0),
        (True, 0.0), (float("nan"), 0.0), ({}, 0.0),
    ])
    def test_coercion(self, raw, expected):
        assert as_number(raw) == expected


# ═══════════════════════════════════════════════════════════════════════════════
# Dimensions
# ═══════════════════════════════════════════════════════════════════════════════

class TestExtractDimensions:

    def test_single_pair(self):
        dims = extract_dimensions({"width_mm": 300, "height_mm": "200", "pieces": 5})
        assert dims == [{"width": 300, "height": 200, "pieces": 5, "name": "Nálepka"}]

    def test_slovak_field_names(self):
        dims = extract_dimensions({"sirka": 100, "vyska": 50})
        assert dims[0]["width"] == 100
        assert dims[0]["pieces"] == 1

    def test_numbered_sets_sorted_by_index(self):
        dims = extract_dimensions({
            "width_mm_10": 40, "height_mm_10": 40,
            "width_mm_2": 100, "height_mm_2": 50, "pieces_2": 3,
        })
        assert [d["width"] for d in dims] == [100, 40]
        assert [d["name"] for d in dims] == ["Nálepka 1", "Nálepka 2"]
        assert dims[0]["pieces"] == 3
        assert dims[1]["pieces"] == 1

    def test_numbered_sets_suppress_single_pair(self):
        dims = extract_dimensions({"width_mm": 1, "height_mm": 1, "width_mm_1": 20, "height_mm_1": 30})
        assert len(dims) == 1
        assert dims[0]["width"] == 20

    def test_zero_size_skipped(self):
        assert extract_dimensions({"width_mm": 0, "height_mm": 100}) == []

    def test_not_a_dict(self):
        assert extract_dimensions(None) == []


# ═══════════════════════════════════════════════════════════════════════════════
# Multipliers
# ═══════════════════════════════════════════════════════════════════════════════

class TestMultipliers:

    def test_combined_multiplier(self):
        assert pricing_multiplier({"clientMultiplier": 1.1, "deliveryMultiplier": 1.5}) == pytest.approx(1.65)

    def test_missing_multipliers_default_to_one(self):
        assert pricing_multiplier(None) == 1.0
        assert pricing_multiplier({"clientMultiplier": 0}) == 1.0

    def test_ratio_prefers_saved_totals(self):
        breakdown = {"finalPrice": 150, "originalPrice": 100, "clientMultiplier": 3}
        assert price_ratio(breakdown) == 1.5

    def test_ratio_falls_back_to_multiplier(self):
        assert price_ratio({"originalPrice": 100, "clientMultiplier": 1.2}) == pytest.approx(1.2)


class TestProductDisplayName:

    def test_category_and_variant(self):
        assert product_display_name({"product": {"name": "Banner"}, "variant": {"name": "PVC 510g"}}) \
            == "Banner - PVC 510g"

    def test_same_category_and_variant_not_repeated(self):
        assert product_display_name({"product": {"name": "Roll-up"}, "variant": {"name": "Roll-up"}}) == "Roll-up"

    def test_fallback(self):
        assert product_display_name({}) == "Produkt"


# ═══════════════════════════════════════════════════════════════════════════════
# Quote page products
# ═══════════════════════════════════════════════════════════════════════════════

class TestReconstructProductPrices:

    def test_sale_price_times_ratio(self):
        items = reconstruct_product_prices(
            [{"id": "p1", "name": "Banner", "totalSale": 100, "quantity": 4}],
            {"clientMultiplier": 1.2},
        )
        assert items[0]["totalPrice"] == pytest.approx(120)
        assert items[0]["unitPrice"] == pytest.approx(30)
        assert items[0]["unit"] == "ks"
        assert items[0]["services"] == []

    def test_adjusted_price_wins(self):
        items = reconstruct_product_prices(
            [{"id": "p1", "totalSale": 100, "globalAdjustedPrice": 80}], {"clientMultiplier": 2})
        assert items[0]["totalPrice"] == 80

    def test_fallback_splits_total_evenly(self):
        items = reconstruct_product_prices([{"id": "a"}, {"id": "b"}], None, total_price=0,
                                           actual_total_price=300)
        assert [i["totalPrice"] for i in items] == [150, 150]

    def test_total_price_preferred_over_actual(self):
        items = reconstruct_product_prices([{"id": "a"}], None, total_price=500, actual_total_price=300)
        assert items[0]["totalPrice"] == 500

    def test_dimensions_attached(self):
        items = reconstruct_product_prices(
            [{"id": "p1", "salePrice": 10, "customFieldValues": {"width_mm": 100, "height_mm": 100}}])
        assert items[0]["dimensions"][0]["width"] == 100

    def test_non_dict_products_ignored(self):
        assert reconstruct_product_prices(["x", None]) == []

    def test_unknown_id(self):
        assert reconstruct_product_prices([{"price": 1}])[0]["id"] == "unknown"


# ═══════════════════════════════════════════════════════════════════════════════
# PDF quote lines
# ═══════════════════════════════════════════════════════════════════════════════

class TestBuildQuoteLines:

    def test_lines_in_order_and_zero_services_skipped(self, calculation_data):
        result = build_quote_lines(calculation_data, total_amount=200)
        assert [l["name"] for l in result["lines"]] == ["Banner 3x1m", "Montaz", "Lanko"]

    def test_markup_spread_over_lines(self, calculation_data):
        result = build_quote_lines(calculation_data, total_amount=400)
        assert result["markupRatio"] == pytest.approx(2.0)
        totals = [l["total"] for l in result["lines"]]
        assert totals == pytest.approx([200, 100, 100])
        assert result["globalTotal"] == 400

    def test_product_line_details(self, calculation_data):
        product = build_quote_lines(calculation_data, total_amount=200)["lines"][0]
        assert product["qty"] == 2
        assert product["unitPrice"] == pytest.approx(50)
        assert product["description"] == "PVC 510g, Oka"
        assert product["vatRate"] == 23
        assert product["vatAmount"] == pytest.approx(23)
        assert product["totalWithVat"] == pytest.approx(123)

    def test_material_unit_label(self, calculation_data):
        material = build_quote_lines(calculation_data, labels={"pcs": "pcs"})["lines"][-1]
        assert material["unit"] == "pcs"
        assert material["unitPrice"] == pytest.approx(12.5)

    def test_global_total_without_amount_excludes_materials(self, calculation_data):
        result = build_quote_lines(calculation_data, total_amount=0)
        assert result["globalTotal"] == pytest.approx(150)
        assert result["vatAmount"] == pytest.approx(150 * 0.23)

    def test_foreign_is_reverse_charge(self, calculation_data):
        result = build_quote_lines(calculation_data, total_amount=200, foreign=True)
        assert result["vatRate"] == 0
        assert result["totalWithVat"] == result["globalTotal"]
        assert all(l["vatAmount"] == 0 for l in result["lines"])

    def test_multiplier_applied_to_every_line(self, calculation_data):
        calculation_data["globalPricingBreakdown"] = {"clientMultiplier": 1.5}
        result = build_quote_lines(calculation_data)
        assert [l["total"] for l in result["lines"]] == pytest.approx([150, 75, 75])

    def test_translate_hook(self, calculation_data):
        result = build_quote_lines(calculation_data, translate=lambda t: t.upper())
        assert result["lines"][0]["name"] == "BANNER 3X1M"

    def test_fallback_names(self):
        data = {"products": [{"totalSale": 10}], "services": [{"salePrice": 5}], "materials": [{}]}
        names = [l["name"] for l in build_quote_lines(data)["lines"]]
        assert names == ["Produkt", "Služba", "Materiál"]

    def test_empty_calculation(self):
        result = build_quote_lines(None)
        assert result["lines"] == []
        assert result["globalTotal"] == 0


class TestCollectLineNames:

    def test_unique_in_line_order(self):
        data = {
            "products": [{"name": "Banner"}, {"variant": {"name": "Banner"}}],
            "services": [{"service": {"name": "Montaz"}}, {"name": "  "}],
            "materials": [{"materialName": "Lanko"}],
        }
        assert collect_line_names(data) == ["Banner", "Montaz", "Lanko"]
