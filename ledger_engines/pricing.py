"""
ledger_engines.pricing -- Unit cost resolution for purchase lots.

Responsibility:
    Turn a PurchaseRecord into a PurchaseLot costed for one sale-type
    context.  REFILL sales return the cylinder, so a REFILL lot is costed
    at the gas component only; PACKAGE sales consume gas and cylinder, so a
    PACKAGE lot is costed at gas + cylinder.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Cost precedence (first positive match wins):
    1. Structured components (gas_unit_cost, cylinder_unit_cost).
    2. Structured unit_cost field.  Shipments record it as the full line
       cost per unit (gas + cylinder), so in REFILL context a memo gas
       amount is taken before it.
    3. Memo text, via MemoPriceParser.  Legacy imports only; the parser is
       kept behind its own class so it can be swapped or retired without
       touching allocation.

Failure modes:
    - A record with no positive cost resolves to CostSource.NONE and a lot
      with ``unit_cost=None``.  The allocator decides what that means.

Usage:
    from ledger_engines.pricing import build_lots
    lots = build_lots(records, SaleType.REFILL)
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.records import PurchaseLot, PurchaseRecord, SaleType
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.pricing")


class CostSource(str, Enum):
    """Where a lot's unit cost came from."""

    COMPONENTS = "components"
    UNIT_COST = "unit_cost"
    MEMO = "memo"
    NONE = "none"


@dataclass(frozen=True)
class MemoPrices:
    """Amounts scraped from a shipment memo."""

    gas: Decimal
    cylinder: Decimal | None = None


@dataclass(frozen=True)
class CostResolution:
    unit_cost: Decimal | None
    source: CostSource


_AMOUNT = r"৳?\s*(\d[\d,]*(?:\.\d+)?)"


class MemoPriceParser:
    """
    Scrapes ``Gas: <amount>/unit`` and ``Cylinder: <amount>/unit`` from memos.

    Example memo:
        "PACKAGE: Gas: ৳150/unit, Cylinder: ৳200/unit | Driver: Rahim"
    """

    _gas = re.compile(r"\bGas:\s*" + _AMOUNT, re.IGNORECASE)
    _cylinder = re.compile(r"\bCylinder:\s*" + _AMOUNT, re.IGNORECASE)

    @staticmethod
    def _amount(pattern: re.Pattern[str], memo: str) -> Decimal | None:
        match = pattern.search(memo)
        if match is None:
            return None
        try:
            return Decimal(match.group(1).replace(",", ""))
        except InvalidOperation:
            return None

    def parse(self, memo: str | None) -> MemoPrices | None:
        """Return the memo's prices, or None when it has no numeric gas amount."""
        if not memo:
            return None
        gas = self._amount(self._gas, memo)
        if gas is None:
            return None
        return MemoPrices(gas=gas, cylinder=self._amount(self._cylinder, memo))


_default_parser = MemoPriceParser()


def _context_cost(
    gas: Decimal,
    cylinder: Decimal | None,
    sale_type: SaleType,
) -> Decimal:
    if sale_type == SaleType.REFILL:
        return gas
    return gas + (cylinder if cylinder is not None else ZERO)


def extract_unit_cost(
    memo: str | None,
    sale_type: SaleType,
    parser: MemoPriceParser = _default_parser,
) -> Decimal | None:
    """
    Derive a unit cost from memo text alone.

    REFILL -> gas amount; PACKAGE -> gas + cylinder (cylinder absent = 0).
    None when the memo has no gas amount or the derived cost is not positive.
    """
    prices = parser.parse(memo)
    if prices is None:
        return None
    cost = _context_cost(prices.gas, prices.cylinder, sale_type)
    return cost if cost > 0 else None


def resolve_unit_cost(
    record: PurchaseRecord,
    sale_type: SaleType,
    parser: MemoPriceParser = _default_parser,
) -> CostResolution:
    """
    Resolve the record's unit cost for ``sale_type`` (see module docstring).

    A candidate that comes out at zero falls through to the next source.
    """
    if record.gas_unit_cost is not None:
        cost = _context_cost(record.gas_unit_cost, record.cylinder_unit_cost, sale_type)
        if cost > 0:
            return CostResolution(cost, CostSource.COMPONENTS)

    memo_cost = extract_unit_cost(record.memo, sale_type, parser)
    # unit_cost does not split gas from cylinder; a memo gas figure wins for REFILL.
    if sale_type == SaleType.REFILL and memo_cost is not None:
        return CostResolution(memo_cost, CostSource.MEMO)
    if record.unit_cost is not None and record.unit_cost > 0:
        return CostResolution(record.unit_cost, CostSource.UNIT_COST)
    if memo_cost is not None:
        return CostResolution(memo_cost, CostSource.MEMO)
    return CostResolution(None, CostSource.NONE)


def build_lots(
    records: Iterable[PurchaseRecord],
    sale_type: SaleType,
    parser: MemoPriceParser = _default_parser,
) -> list[PurchaseLot]:
    """Convert purchase records to lots costed for ``sale_type``, order preserved."""
    lots: list[PurchaseLot] = []
    memo_count = 0
    uncosted: list[str] = []

    for record in records:
        resolution = resolve_unit_cost(record, sale_type, parser)
        if resolution.source == CostSource.MEMO:
            memo_count += 1
        elif resolution.source == CostSource.NONE:
            uncosted.append(record.record_id)
        lots.append(
            PurchaseLot(
                lot_id=record.record_id,
                product_id=record.product_id,
                quantity=record.quantity,
                lot_date=record.record_date,
                unit_cost=resolution.unit_cost,
                memo=record.memo,
            )
        )

    if memo_count:
        logger.info("lot_cost_from_memo", extra={
            "sale_type": sale_type.value,
            "memo_costed_lots": memo_count,
        })
    if uncosted:
        logger.warning("lot_cost_unresolved", extra={
            "sale_type": sale_type.value,
            "lot_ids": uncosted,
        })
    return lots
