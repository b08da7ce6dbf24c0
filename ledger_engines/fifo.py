"""
ledger_engines.fifo -- FIFO lot allocator.

Responsibility:
    Match sale quantities against purchase lots oldest-first and report cost
    of goods sold, revenue on the matched quantity, average buying and selling
    prices, and the value of what is left.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Lots arrive already costed
    for one sale-type context (see ledger_engines.pricing).  The stateful
    FifoValuationService lives in ledger_services/.

Invariants enforced:
    - FIFO order: a newer lot is drawn only once every older costed lot is
      exhausted.  Lots are stably sorted by lot_date; same-day lots keep
      their input order.
    - Conservation: total_sold_quantity == sum of sale quantities, and every
      sale's allocated quantity + shortfall == its requested quantity.
    - COGS == sum over portions of quantity x lot unit cost.
    - Purity: inputs are never mutated.  Each call folds over its own
      LotPosition list, so concurrent and repeated calls are independent.
    - Shortfalls are always reported, never hidden.

Failure modes:
    - MissingLotCostError when lots exist but none carries a unit cost.
    - InventoryShortfallError on the first shortfall under ShortfallPolicy.RAISE.
    - ValueError when a lot or sale belongs to another product, or a sale
      has a different sale type than requested.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from enum import Enum

from ledger_engines.tracer import traced_engine
from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.domain.records import PurchaseLot, SaleEvent, SaleType
from ledger_kernel.exceptions import InventoryShortfallError, MissingLotCostError
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.fifo")


class ShortfallPolicy(str, Enum):
    """What to do when sales exceed the costed lots."""

    FLAG = "flag"    # Report on the result, mark it provisional
    RAISE = "raise"  # Raise InventoryShortfallError


class ConsumptionMode(str, Enum):
    """Which sale types draw down the lots when reporting stock on hand."""

    REFILL_ONLY = "refill_only"
    ALL_SALE_TYPES = "all_sale_types"


@dataclass(frozen=True, slots=True)
class LotPosition:
    """A lot's state inside one allocation run."""

    lot_id: str
    lot_date: date
    unit_cost: Decimal
    original_quantity: int
    remaining_quantity: int

    @property
    def original_cost(self) -> Decimal:
        return self.unit_cost * self.original_quantity

    @property
    def remaining_value(self) -> Decimal:
        return self.unit_cost * self.remaining_quantity

    @property
    def consumed_quantity(self) -> int:
        return self.original_quantity - self.remaining_quantity


@dataclass(frozen=True, slots=True)
class SalePortion:
    """Quantity of one sale drawn from one lot."""

    lot_id: str
    quantity: int
    unit_cost: Decimal

    @property
    def cost(self) -> Decimal:
        return self.unit_cost * self.quantity


@dataclass(frozen=True, slots=True)
class SaleAllocation:
    """How one sale was matched to lots."""

    sale_id: str
    sale_date: date
    requested: int
    portions: tuple[SalePortion, ...]
    revenue: Decimal

    @property
    def allocated(self) -> int:
        return sum(p.quantity for p in self.portions)

    @property
    def cost(self) -> Decimal:
        return sum((p.cost for p in self.portions), ZERO)


@dataclass(frozen=True, slots=True)
class AllocationShortfall:
    """A sale that could not be fully matched to costed lots."""

    sale_id: str
    requested: int
    allocated: int

    @property
    def missing(self) -> int:
        return self.requested - self.allocated


@dataclass(frozen=True)
class FifoAllocationResult:
    """Outcome of one FIFO allocation for a product and sale type."""

    product_id: str
    sale_type: SaleType
    total_sold_quantity: int
    total_cogs: Decimal
    average_buying_price: Decimal
    total_sales_revenue: Decimal
    average_selling_price: Decimal
    remaining_inventory_value: Decimal
    remaining_lots: tuple[LotPosition, ...] = ()
    sale_allocations: tuple[SaleAllocation, ...] = ()
    shortfalls: tuple[AllocationShortfall, ...] = ()
    uncosted_lot_ids: tuple[str, ...] = ()

    @property
    def allocated_quantity(self) -> int:
        return sum(a.allocated for a in self.sale_allocations)

    @property
    def remaining_quantity(self) -> int:
        return sum(p.remaining_quantity for p in self.remaining_lots)

    @property
    def is_provisional(self) -> bool:
        """True when a shortfall occurred or some lots could not be costed."""
        return bool(self.shortfalls or self.uncosted_lot_ids)


def _check_inputs(
    product_id: str,
    lots: Sequence[PurchaseLot],
    sales: Sequence[SaleEvent],
    accepted: frozenset[SaleType],
) -> None:
    for lot in lots:
        if lot.product_id != product_id:
            raise ValueError(
                f"Lot {lot.lot_id} belongs to product {lot.product_id}, "
                f"not {product_id}"
            )
    for sale in sales:
        if sale.product_id != product_id:
            raise ValueError(
                f"Sale {sale.sale_id} belongs to product {sale.product_id}, "
                f"not {product_id}"
            )
        if sale.sale_type not in accepted:
            expected = ", ".join(sorted(t.value for t in accepted))
            raise ValueError(
                f"Sale {sale.sale_id} is {sale.sale_type.value}, expected {expected}"
            )


def _sale_revenue(sale: SaleEvent, allocated: int) -> Decimal:
    if allocated == sale.quantity:
        return sale.total_value
    if allocated == 0:
        return ZERO
    return sale.total_value * allocated / sale.quantity


@traced_engine(
    "fifo_allocator", "1.0",
    fingerprint_fields=("product_id", "sale_type", "shortfall_policy"),
)
def allocate_fifo(
    *,
    product_id: str,
    lots: Sequence[PurchaseLot],
    sales: Sequence[SaleEvent],
    sale_type: SaleType,
    shortfall_policy: ShortfallPolicy = ShortfallPolicy.FLAG,
    amount_places: int = 2,
    consuming_types: frozenset[SaleType] | None = None,
) -> FifoAllocationResult:
    """
    Allocate ``sales`` against ``lots`` oldest-first.

    Args:
        product_id: Product every lot and sale must belong to.
        lots: Lots costed for ``sale_type``.  Lots with no positive
            ``unit_cost`` are left out of the queue and listed in
            ``uncosted_lot_ids``.
        sales: Sales of ``sale_type``; processed in ascending date order.
        sale_type: Sale-type context of the run.
        shortfall_policy: FLAG reports shortfalls on the result; RAISE
            raises InventoryShortfallError on the first one.
        amount_places: Decimal places for the two reported averages.  Sums
            are returned unrounded.
        consuming_types: Sale types allowed to draw on the lots.  Defaults
            to ``{sale_type}``; stock-on-hand reporting passes every type
            while keeping the lots costed for ``sale_type``.

    Returns:
        FifoAllocationResult.  Revenue counts only the allocated share of
        each sale: ``total_value x allocated / quantity``.
    """
    _check_inputs(product_id, lots, sales, consuming_types or frozenset({sale_type}))

    ordered_lots = sorted(lots, key=lambda lot: lot.lot_date)
    uncosted = tuple(lot.lot_id for lot in ordered_lots if not lot.is_costed)
    if ordered_lots and len(uncosted) == len(ordered_lots):
        logger.error("fifo_all_lots_uncosted", extra={
            "product_id": product_id,
            "sale_type": sale_type.value,
            "lot_count": len(ordered_lots),
        })
        raise MissingLotCostError(product_id, uncosted)

    positions: list[LotPosition] = [
        LotPosition(
            lot_id=lot.lot_id,
            lot_date=lot.lot_date,
            unit_cost=lot.unit_cost,
            original_quantity=lot.quantity,
            remaining_quantity=lot.quantity,
        )
        for lot in ordered_lots
        if lot.is_costed
    ]

    allocations: list[SaleAllocation] = []
    shortfalls: list[AllocationShortfall] = []
    total_sold = 0
    total_cogs = ZERO
    total_revenue = ZERO
    cursor = 0

    for sale in sorted(sales, key=lambda s: s.sale_date):
        total_sold += sale.quantity
        need = sale.quantity
        portions: list[SalePortion] = []

        while need > 0 and cursor < len(positions):
            position = positions[cursor]
            if position.remaining_quantity == 0:
                cursor += 1
                continue
            take = min(need, position.remaining_quantity)
            portions.append(SalePortion(position.lot_id, take, position.unit_cost))
            positions[cursor] = replace(
                position, remaining_quantity=position.remaining_quantity - take,
            )
            need -= take

        allocated = sale.quantity - need
        revenue = _sale_revenue(sale, allocated)
        allocation = SaleAllocation(
            sale_id=sale.sale_id,
            sale_date=sale.sale_date,
            requested=sale.quantity,
            portions=tuple(portions),
            revenue=revenue,
        )
        allocations.append(allocation)
        total_cogs += allocation.cost
        total_revenue += revenue

        if need > 0:
            logger.warning("fifo_inventory_shortfall", extra={
                "product_id": product_id,
                "sale_id": sale.sale_id,
                "sale_type": sale_type.value,
                "requested": sale.quantity,
                "allocated": allocated,
                "missing": need,
            })
            if shortfall_policy == ShortfallPolicy.RAISE:
                raise InventoryShortfallError(
                    product_id, sale.sale_id, sale.quantity, allocated,
                )
            shortfalls.append(AllocationShortfall(sale.sale_id, sale.quantity, allocated))

    remaining = tuple(p for p in positions if p.remaining_quantity > 0)
    remaining_value = sum((p.remaining_value for p in remaining), ZERO)

    if total_sold:
        avg_buying = round_money(total_cogs / total_sold, amount_places)
        avg_selling = round_money(total_revenue / total_sold, amount_places)
    else:
        avg_buying = ZERO
        avg_selling = ZERO

    result = FifoAllocationResult(
        product_id=product_id,
        sale_type=sale_type,
        total_sold_quantity=total_sold,
        total_cogs=total_cogs,
        average_buying_price=avg_buying,
        total_sales_revenue=total_revenue,
        average_selling_price=avg_selling,
        remaining_inventory_value=remaining_value,
        remaining_lots=remaining,
        sale_allocations=tuple(allocations),
        shortfalls=tuple(shortfalls),
        uncosted_lot_ids=uncosted,
    )

    logger.info("fifo_allocation_completed", extra={
        "product_id": product_id,
        "sale_type": sale_type.value,
        "sale_count": len(allocations),
        "total_sold_quantity": total_sold,
        "total_cogs": str(total_cogs),
        "shortfall_count": len(shortfalls),
        "uncosted_lot_count": len(uncosted),
    })
    return result
