"""
ledger_services.inventory_valuation_service -- FIFO inventory cost figures.

Responsibility:
    Read purchase and sale history from an EventStore, cost the lots for a
    sale-type context and run the pure FIFO allocator.  Produces per-product
    window figures, a monthly per-product report and stock-on-hand status.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Pure allocation lives in ledger_engines.fifo; cost resolution in
    ledger_engines.pricing.

Invariants enforced:
    - Lots are the GLOBAL history of completed incoming shipments up to the
      window end.  Only the sales are windowed.
    - Sales of one sale type never draw on lots costed for another type.
    - Stock-on-hand lots are always costed gas-only (cylinders return).

Failure modes:
    - MissingLotCostError when every lot of the product lacks a cost.
    - InventoryShortfallError under ShortfallPolicy.RAISE.

Usage:
    with session_scope() as session:
        service = FifoValuationService(EventSelector(session))
        result = service.evaluate_product(
            "tenant-1", "LPG-12KG", date(2024, 3, 1), date(2024, 3, 31),
            SaleType.REFILL,
        )
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from ledger_config import EngineConfig, get_active_config
from ledger_engines.fifo import (
    ConsumptionMode,
    FifoAllocationResult,
    LotPosition,
    ShortfallPolicy,
    allocate_fifo,
)
from ledger_engines.pricing import build_lots
from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.domain.event_store import EventStore
from ledger_kernel.domain.records import SaleType
from ledger_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.inventory_valuation")


@dataclass(frozen=True)
class InventoryStatus:
    """Stock on hand for one product after FIFO consumption."""

    product_id: str
    as_of: date
    mode: ConsumptionMode
    remaining_quantity: int
    remaining_value: Decimal
    average_cost: Decimal
    batches: tuple[LotPosition, ...]
    shortfall_quantity: int = 0
    uncosted_lot_ids: tuple[str, ...] = ()

    @property
    def is_provisional(self) -> bool:
        return bool(self.shortfall_quantity or self.uncosted_lot_ids)


class FifoValuationService:
    """
    FIFO cost figures over an EventStore.

    Contract:
        Receives an EventStore and, optionally, an EngineConfig via
        constructor injection.  Read-only: never writes to the store.
    Guarantees:
        - Same store contents always produce the same figures.
        - Shortfalls and uncosted lots surface on the returned objects.
    """

    def __init__(
        self,
        event_store: EventStore,
        config: EngineConfig | None = None,
    ):
        self._store = event_store
        self._config = config if config is not None else get_active_config()

    def evaluate_product(
        self,
        tenant_id: str,
        product_id: str,
        window_start: date,
        window_end: date,
        sale_type: SaleType,
        counterparty_id: str | None = None,
        shortfall_policy: ShortfallPolicy | None = None,
    ) -> FifoAllocationResult:
        """
        FIFO figures for one product's ``sale_type`` sales in the window.

        Args:
            counterparty_id: Restrict the sales (not the lots) to one driver.
            shortfall_policy: Overrides ``valuation.shortfall_policy``.
        """
        if window_end < window_start:
            raise ValueError(
                f"window_end {window_end.isoformat()} is before "
                f"window_start {window_start.isoformat()}"
            )

        with LogContext.bind(tenant_id=tenant_id, product_id=product_id):
            records = self._store.purchase_records(tenant_id, product_id, window_end)
            lots = build_lots(records, sale_type)
            sales = self._store.sale_events(
                tenant_id, product_id, window_start, window_end,
                sale_type=sale_type, counterparty_id=counterparty_id,
            )

            logger.info("fifo_evaluation_started", extra={
                "sale_type": sale_type.value,
                "window_start": window_start,
                "window_end": window_end,
                "counterparty_id": counterparty_id,
                "lot_count": len(lots),
                "sale_count": len(sales),
            })

            return allocate_fifo(
                product_id=product_id,
                lots=lots,
                sales=sales,
                sale_type=sale_type,
                shortfall_policy=shortfall_policy or self._config.valuation.shortfall_policy,
                amount_places=self._config.valuation.amount_places,
            )

    def monthly_analytics(
        self,
        tenant_id: str,
        year: int,
        month: int,
        sale_type: SaleType,
        counterparty_id: str | None = None,
    ) -> dict[str, FifoAllocationResult]:
        """
        Per-product FIFO figures for one calendar month.

        Only products with ``sale_type`` sales in the month (for the given
        counterparty, when set) appear in the result.
        """
        window_start = date(year, month, 1)
        window_end = date(year, month, calendar.monthrange(year, month)[1])

        results: dict[str, FifoAllocationResult] = {}
        for product_id in self._store.product_ids(tenant_id):
            sales = self._store.sale_events(
                tenant_id, product_id, window_start, window_end,
                sale_type=sale_type, counterparty_id=counterparty_id,
            )
            if not sales:
                continue
            results[product_id] = self.evaluate_product(
                tenant_id, product_id, window_start, window_end, sale_type,
                counterparty_id=counterparty_id,
            )

        logger.info("fifo_monthly_analytics_completed", extra={
            "tenant_id": tenant_id,
            "year": year,
            "month": month,
            "sale_type": sale_type.value,
            "product_count": len(results),
        })
        return results

    def inventory_status(
        self,
        tenant_id: str,
        product_id: str,
        as_of: date,
        mode: ConsumptionMode | None = None,
    ) -> InventoryStatus:
        """
        Remaining stock, its FIFO value and the open batches as of a date.

        ``mode`` (default ``valuation.consumption_mode``) decides whether
        PACKAGE sales draw down the lots alongside REFILL sales.
        """
        mode = mode or self._config.valuation.consumption_mode
        consuming = (
            frozenset({SaleType.REFILL})
            if mode == ConsumptionMode.REFILL_ONLY
            else frozenset(SaleType)
        )

        with LogContext.bind(tenant_id=tenant_id, product_id=product_id):
            lots = build_lots(
                self._store.purchase_records(tenant_id, product_id, as_of),
                SaleType.REFILL,
            )
            sales = [
                sale
                for sale in self._store.sale_events(tenant_id, product_id, None, as_of)
                if sale.sale_type in consuming
            ]
            result = allocate_fifo(
                product_id=product_id,
                lots=lots,
                sales=sales,
                sale_type=SaleType.REFILL,
                shortfall_policy=ShortfallPolicy.FLAG,
                amount_places=self._config.valuation.amount_places,
                consuming_types=consuming,
            )

        remaining_qty = result.remaining_quantity
        average_cost = (
            round_money(result.remaining_inventory_value / remaining_qty,
                        self._config.valuation.amount_places)
            if remaining_qty
            else ZERO
        )
        status = InventoryStatus(
            product_id=product_id,
            as_of=as_of,
            mode=mode,
            remaining_quantity=remaining_qty,
            remaining_value=result.remaining_inventory_value,
            average_cost=average_cost,
            batches=result.remaining_lots,
            shortfall_quantity=sum(s.missing for s in result.shortfalls),
            uncosted_lot_ids=result.uncosted_lot_ids,
        )
        logger.info("inventory_status_computed", extra={
            "tenant_id": tenant_id,
            "product_id": product_id,
            "as_of": as_of,
            "mode": mode.value,
            "remaining_quantity": remaining_qty,
            "remaining_value": str(status.remaining_value),
        })
        return status
