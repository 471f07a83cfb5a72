# Overview: Pytest coverage for cost extraction from product text.

"""
Cost Extraction Tests

extract_costs() is pure, so these tests need no app or database.
"""

from decimal import Decimal

from inventory_cutover.services.cost_extraction import (
    DEFAULT_SUPPLIER,
    HIGH,
    LOW,
    MEDIUM,
    extract_costs,
)


DESCRIPTION = "\n".join([
    "L $20.00 abril",
    "Rx $25 mayo",
    "15/06/23 Compra Center $ 19,50",
])


class TestEntryParsing:
    """Supplier, amount and date recovery per line."""

    def test_multi_line_description(self):
        result = extract_costs("Paracetamol 500mg", DESCRIPTION)

        assert [e.supplier for e in result.entries] == ["L", "Rx", "Compra Center"]
        assert [e.amount for e in result.entries] == [Decimal("20.00"), Decimal("25"), Decimal("19.50")]
        assert [e.month for e in result.entries] == ["abril", "mayo", "junio"]
        assert all(e.confidence == HIGH for e in result.entries)
        # Name line carries no cost, so description lines start at 2
        assert [e.line_number for e in result.entries] == [2, 3, 4]

    def test_numeric_date_sets_day_and_year(self):
        entry = extract_costs(None, "15/06/23 Compra Center $ 19,50").entries[0]

        assert (entry.day, entry.month_number, entry.year) == (15, 6, 2023)
        assert entry.supplier == "Compra Center"

    def test_day_before_month_name(self):
        entry = extract_costs(None, "Rx $12 15 de marzo").entries[0]

        assert entry.month == "marzo"
        assert entry.day == 15
        assert entry.supplier == "Rx"

    def test_day_after_month_name(self):
        entry = extract_costs(None, "Rx $12 marzo 3").entries[0]

        assert entry.month_number == 3
        assert entry.day == 3

    def test_date_before_supplier_is_not_part_of_supplier(self):
        entry = extract_costs(None, "3 marzo Rx $12").entries[0]

        assert entry.supplier == "Rx"
        assert entry.day == 3

    def test_month_typo_aliases(self):
        assert extract_costs(None, "L $20 abirl").entries[0].month == "abril"
        assert extract_costs(None, "L $20 mallo").entries[0].month == "mayo"
        assert extract_costs(None, "L $20 setiembre").entries[0].month_number == 9

    def test_comma_decimal_and_emoji_marker(self):
        entry = extract_costs(None, "Farmacia 💲 7,25").entries[0]

        assert entry.amount == Decimal("7.25")
        assert entry.to_dict()["amount_cents"] == 725

    def test_supplier_limited_by_characters(self):
        entry = extract_costs(None, "Distribuidora Farmaceutica Nacional $30").entries[0]

        assert entry.supplier == "Nacional"

    def test_supplier_limited_by_words(self):
        entry = extract_costs(None, "a b c d $5").entries[0]

        assert entry.supplier == "b c d"

    def test_missing_supplier_defaults(self):
        entry = extract_costs(None, "$15 marzo").entries[0]

        assert entry.supplier == DEFAULT_SUPPLIER
        assert entry.confidence == MEDIUM


class TestConfidenceAndSelection:
    """Confidence law, selection and manual review rules."""

    def test_confidence_levels(self):
        assert extract_costs(None, "Rx $10 mayo").entries[0].confidence == HIGH
        assert extract_costs(None, "Rx $10").entries[0].confidence == MEDIUM
        assert extract_costs(None, "$10 mayo").entries[0].confidence == MEDIUM
        assert extract_costs(None, "$10").entries[0].confidence == LOW

    def test_single_confident_entry_needs_no_review(self):
        result = extract_costs(None, "Farmacia $15")

        assert result.selected_cost == Decimal("15")
        assert result.requires_manual_review is False

    def test_single_low_entry_needs_review(self):
        result = extract_costs(None, "$15")

        assert result.selected_cost == Decimal("15")
        assert result.requires_manual_review is True

    def test_two_dated_lines(self):
        result = extract_costs(None, "L $20.00 abril\nRx $25 mayo")

        assert [e.confidence for e in result.entries] == [HIGH, HIGH]
        assert result.selected_cost == Decimal("25")
        assert result.requires_manual_review is True

    def test_multiple_entries_select_last_and_need_review(self):
        result = extract_costs(None, DESCRIPTION)

        assert result.selected_cost == Decimal("19.50")
        assert result.requires_manual_review is True
        assert result.to_dict()["selected_cost_cents"] == 1950

    def test_deterministic(self):
        assert extract_costs("Ibuprofeno", DESCRIPTION) == extract_costs("Ibuprofeno", DESCRIPTION)


class TestRejectedInput:
    """Lines that must not produce entries."""

    def test_empty_text(self):
        result = extract_costs("", None)

        assert result.entries == ()
        assert result.selected_cost is None
        assert result.requires_manual_review is True
        assert result.errors == ("No text to extract costs from",)

    def test_no_cost_lines(self):
        result = extract_costs("Paracetamol", "Caja x 20 tabletas")

        assert result.entries == ()
        assert result.requires_manual_review is True
        assert "No cost entries found" in result.errors

    def test_excluded_prefixes(self):
        text = "\n".join(["Costo $20", "Fórmula: $5", "Descripción: $7", "Laboratorio: Bayer $9"])

        assert extract_costs(None, text).entries == ()

    def test_out_of_range_amount_is_reported(self):
        result = extract_costs(None, "L $20000 abril")

        assert result.entries == ()
        assert any(e.startswith("Line 1: amount 20000") for e in result.errors)
        assert "No cost entries found" in result.errors

    def test_out_of_range_line_does_not_hide_valid_lines(self):
        result = extract_costs(None, "L $20000 abril\nRx $25 mayo")

        assert [e.amount for e in result.entries] == [Decimal("25")]
        assert len(result.errors) == 1


class TestWrappedMonthLines:
    """A month written on its own line belongs to the cost line above it."""

    def test_month_only_line_is_merged(self):
        result = extract_costs(None, "L $20\nabril")

        assert len(result.entries) == 1
        entry = result.entries[0]
        assert entry.month == "abril"
        assert entry.confidence == HIGH
        assert entry.original_line == "L $20 abril"

    def test_month_line_with_day_is_merged(self):
        entry = extract_costs(None, "L $20\n12 de abril").entries[0]

        assert (entry.day, entry.month_number) == (12, 4)

    def test_month_line_after_non_cost_line_is_not_merged(self):
        result = extract_costs(None, "Caja x 20\nabril\nRx $10")

        assert len(result.entries) == 1
        assert result.entries[0].month is None
