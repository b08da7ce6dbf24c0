"""
Tests for the FIFO lot allocator.

Tests cover:
- Oldest-first matching and partial lots
- COGS, revenue and average prices
- Shortfall flagging and the strict policy
- Uncosted lots
- Input validation and purity
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_engines.fifo import ShortfallPolicy, allocate_fifo
from ledger_kernel.domain.records import SaleType
from ledger_kernel.exceptions import InventoryShortfallError, MissingLotCostError
from tests.builders import PRODUCT, lot, sale

D1 = date(2024, 1, 1)
D2 = date(2024, 1, 2)
D3 = date(2024, 1, 3)
D4 = date(2024, 1, 4)


def _run(lots, sales, **kwargs):
    kwargs.setdefault("sale_type", SaleType.REFILL)
    return allocate_fifo(product_id=PRODUCT, lots=lots, sales=sales, **kwargs)


class TestFifoOrder:
    """Oldest lots are consumed first."""

    def test_two_lots_partially_consumed(self):
        """10 @ 100 then 10 @ 120, sell 15: COGS 1600, avg 106.67, 5 left in T2."""
        lots = [lot(D1, 10, "100", lot_id="T1"), lot(D2, 10, "120", lot_id="T2")]
        result = _run(lots, [sale(D3, 15, "2250", sale_id="S1")])

        assert result.total_sold_quantity == 15
        assert result.total_cogs == Decimal("1600")
        assert result.average_buying_price == Decimal("106.67")
        assert [(p.lot_id, p.remaining_quantity) for p in result.remaining_lots] == [("T2", 5)]
        assert result.remaining_inventory_value == Decimal("600")
        assert not result.is_provisional

    def test_lots_sorted_by_date_regardless_of_input_order(self):
        lots = [lot(D2, 10, "120", lot_id="T2"), lot(D1, 10, "100", lot_id="T1")]
        result = _run(lots, [sale(D3, 4, "600")])

        (allocation,) = result.sale_allocations
        assert [p.lot_id for p in allocation.portions] == ["T1"]
        assert result.total_cogs == Decimal("400")

    def test_same_day_lots_keep_input_order(self):
        lots = [lot(D1, 3, "90", lot_id="A"), lot(D1, 3, "95", lot_id="B")]
        result = _run(lots, [sale(D2, 4, "600")])

        (allocation,) = result.sale_allocations
        assert [(p.lot_id, p.quantity) for p in allocation.portions] == [("A", 3), ("B", 1)]

    def test_sales_processed_in_date_order(self):
        lots = [lot(D1, 5, "100", lot_id="T1"), lot(D2, 5, "200", lot_id="T2")]
        later = sale(D4, 5, "1000", sale_id="late")
        earlier = sale(D3, 5, "1000", sale_id="early")
        result = _run(lots, [later, earlier])

        by_id = {a.sale_id: a for a in result.sale_allocations}
        assert [p.lot_id for p in by_id["early"].portions] == ["T1"]
        assert [p.lot_id for p in by_id["late"].portions] == ["T2"]

    def test_sale_spanning_three_lots(self):
        lots = [
            lot(D1, 2, "10", lot_id="A"),
            lot(D2, 2, "20", lot_id="B"),
            lot(D3, 2, "30", lot_id="C"),
        ]
        result = _run(lots, [sale(D4, 5, "500")])

        (allocation,) = result.sale_allocations
        assert [(p.lot_id, p.quantity) for p in allocation.portions] == [
            ("A", 2), ("B", 2), ("C", 1),
        ]
        assert result.total_cogs == Decimal("20") + Decimal("40") + Decimal("30")


class TestRevenueAndAverages:

    def test_average_selling_price(self):
        lots = [lot(D1, 10, "100")]
        result = _run(lots, [sale(D2, 4, "600"), sale(D3, 2, "320")])

        assert result.total_sales_revenue == Decimal("920")
        assert result.average_selling_price == Decimal("153.33")

    def test_no_sales_gives_zero_averages(self):
        result = _run([lot(D1, 10, "100")], [])

        assert result.total_sold_quantity == 0
        assert result.total_cogs == Decimal("0")
        assert result.average_buying_price == Decimal("0")
        assert result.average_selling_price == Decimal("0")
        assert result.remaining_inventory_value == Decimal("1000")

    def test_no_lots_and_no_sales(self):
        result = _run([], [])

        assert result.total_sold_quantity == 0
        assert result.remaining_lots == ()
        assert not result.is_provisional

    def test_zero_cost_lot_is_excluded_from_averages(self):
        lots = [lot(D1, 10, "0", lot_id="FREE"), lot(D2, 10, "100", lot_id="T2")]

        result = _run(lots, [sale(D3, 10, "1500")])

        assert result.average_buying_price == Decimal("100.00")
        assert result.total_cogs == Decimal("1000")
        assert result.uncosted_lot_ids == ("FREE",)
        assert result.is_provisional

    def test_only_zero_cost_lots_raises(self):
        with pytest.raises(MissingLotCostError):
            _run([lot(D1, 5, "0")], [sale(D2, 5, "500")])

    def test_amount_places_controls_average_rounding(self):
        result = _run(
            [lot(D1, 3, "10")],
            [sale(D2, 3, "10")],
            amount_places=4,
        )
        assert result.average_selling_price == Decimal("3.3333")


class TestShortfall:
    """Sales beyond the available lots are flagged, never hidden."""

    def test_shortfall_is_flagged_with_proportional_revenue(self, captured_logs):
        lots = [lot(D1, 6, "100")]
        result = _run(lots, [sale(D2, 10, "1500", sale_id="S1")])

        (shortfall,) = result.shortfalls
        assert shortfall.sale_id == "S1"
        assert shortfall.requested == 10
        assert shortfall.allocated == 6
        assert shortfall.missing == 4
        assert result.total_sold_quantity == 10
        assert result.total_cogs == Decimal("600")
        assert result.total_sales_revenue == Decimal("900")
        assert result.is_provisional

        warnings = [r for r in captured_logs() if r["message"] == "fifo_inventory_shortfall"]
        assert len(warnings) == 1
        assert warnings[0]["level"] == "WARNING"
        assert warnings[0]["missing"] == 4

    def test_sale_with_no_lots_left_has_zero_revenue(self):
        lots = [lot(D1, 5, "100")]
        result = _run(lots, [sale(D2, 5, "500"), sale(D3, 3, "300", sale_id="S2")])

        assert result.shortfalls[0].sale_id == "S2"
        assert result.shortfalls[0].allocated == 0
        assert result.sale_allocations[1].revenue == Decimal("0")
        assert result.total_sales_revenue == Decimal("500")

    def test_raise_policy(self):
        with pytest.raises(InventoryShortfallError) as exc_info:
            _run(
                [lot(D1, 2, "100")],
                [sale(D2, 5, "500", sale_id="S9")],
                shortfall_policy=ShortfallPolicy.RAISE,
            )

        assert exc_info.value.code == "INVENTORY_SHORTFALL"
        assert exc_info.value.sale_id == "S9"
        assert exc_info.value.missing == 3


class TestUncostedLots:

    def test_uncosted_lots_are_skipped_and_listed(self):
        lots = [
            lot(D1, 5, None, lot_id="NOCOST"),
            lot(D2, 5, "100", lot_id="T2"),
        ]
        result = _run(lots, [sale(D3, 3, "450")])

        (allocation,) = result.sale_allocations
        assert [p.lot_id for p in allocation.portions] == ["T2"]
        assert result.uncosted_lot_ids == ("NOCOST",)
        assert result.is_provisional

    def test_all_lots_uncosted_raises(self):
        with pytest.raises(MissingLotCostError) as exc_info:
            _run([lot(D1, 5, None, lot_id="X"), lot(D2, 5, None, lot_id="Y")], [])

        assert exc_info.value.lot_ids == ("X", "Y")
        assert exc_info.value.code == "MISSING_LOT_COST"


class TestValidationAndPurity:

    def test_sale_of_other_product_rejected(self):
        with pytest.raises(ValueError, match="belongs to product"):
            _run([lot(D1, 5, "100")], [sale(D2, 1, "100", product_id="OTHER")])

    def test_lot_of_other_product_rejected(self):
        with pytest.raises(ValueError, match="belongs to product"):
            _run([lot(D1, 5, "100", product_id="OTHER")], [])

    def test_sale_of_other_type_rejected(self):
        with pytest.raises(ValueError, match="PACKAGE"):
            _run([lot(D1, 5, "100")], [sale(D2, 1, "100", sale_type=SaleType.PACKAGE)])

    def test_consuming_types_admit_other_sale_types(self):
        result = _run(
            [lot(D1, 5, "100")],
            [sale(D2, 2, "400", sale_type=SaleType.PACKAGE), sale(D3, 1, "150")],
            consuming_types=frozenset(SaleType),
        )
        assert result.total_sold_quantity == 3
        assert result.remaining_lots[0].remaining_quantity == 2

    def test_inputs_are_not_mutated_and_calls_repeat(self):
        lots = [lot(D1, 10, "100"), lot(D2, 10, "120")]
        sales = [sale(D3, 15, "2250")]
        snapshot = (list(lots), list(sales))

        first = _run(lots, sales)
        second = _run(lots, sales)

        assert (lots, sales) == snapshot
        assert first == second
        assert all(original.quantity == 10 for original in lots)

    def test_engine_trace_is_logged(self, captured_logs):
        _run([lot(D1, 1, "100")], [])

        traces = [r for r in captured_logs() if r["message"] == "LEDGER_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "fifo_allocator"
        assert len(traces[-1]["input_fingerprint"]) == 16
