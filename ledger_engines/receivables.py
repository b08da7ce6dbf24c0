"""
ledger_engines.receivables -- Day-over-day receivable recurrence.

Responsibility:
    Compute one counterparty's daily cash and cylinder receivable deltas and
    fold them onto the previous running total.  Validate the predecessor a
    recomputation is about to build on.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Persistence, locking and
    cascading live in ledger_services.receivable_service.

Recurrence:
    cash_delta      = sales_revenue - cash_deposited - discount
    cylinder_delta  = refill_quantity - cylinders_returned
    total(day)      = total(predecessor) + delta(day) + opening(day)

    The predecessor is the latest stored record dated strictly before the
    day; no predecessor means a zero prior total.  ``opening`` is a one-off
    onboarding balance and is zero on every ordinary day.

Failure modes:
    - RecurrenceOrderingError when a predecessor candidate is dated on or
      after the target, or candidates disagree on their date.
    - DuplicateBalanceRecordError when several records share the
      predecessor date.
    - StaleBalanceChainError when a stored total disagrees with its own
      predecessor.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import NamedTuple

from ledger_engines.tracer import traced_engine
from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.records import ReceivableBalance, SaleEvent, SaleType
from ledger_kernel.exceptions import (
    DuplicateBalanceRecordError,
    RecurrenceOrderingError,
    StaleBalanceChainError,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.receivables")


@dataclass(frozen=True, slots=True)
class DailyActivity:
    """Aggregate sale figures of one counterparty for one day."""

    sales_revenue: Decimal = ZERO
    cash_deposited: Decimal = ZERO
    discount: Decimal = ZERO
    refill_quantity: int = 0
    cylinders_returned: int = 0

    @classmethod
    def from_sales(cls, sales: Iterable[SaleEvent]) -> DailyActivity:
        """Aggregate raw sales.  Only REFILL quantities create cylinder debt."""
        revenue = ZERO
        deposited = ZERO
        discount = ZERO
        refill_qty = 0
        returned = 0
        for sale in sales:
            revenue += sale.total_value
            deposited += sale.cash_deposited
            discount += sale.discount
            returned += sale.cylinders_returned
            if sale.sale_type == SaleType.REFILL:
                refill_qty += sale.quantity
        return cls(
            sales_revenue=revenue,
            cash_deposited=deposited,
            discount=discount,
            refill_quantity=refill_qty,
            cylinders_returned=returned,
        )

    @property
    def is_empty(self) -> bool:
        return self == DailyActivity()


@dataclass(frozen=True, slots=True)
class ReceivableDelta:
    cash: Decimal
    cylinders: int


@dataclass(frozen=True, slots=True)
class OpeningBalance:
    """Onboarding balance carried on a single day's record."""

    cash: Decimal = ZERO
    cylinders: int = 0


class RunningTotals(NamedTuple):
    cash: Decimal
    cylinders: int


@dataclass(frozen=True, slots=True)
class ChainDay:
    """Input for one day of an in-memory chain replay."""

    balance_date: date
    activity: DailyActivity
    opening: OpeningBalance = OpeningBalance()


def compute_deltas(activity: DailyActivity) -> ReceivableDelta:
    """Return the day's receivable change."""
    return ReceivableDelta(
        cash=activity.sales_revenue - activity.cash_deposited - activity.discount,
        cylinders=activity.refill_quantity - activity.cylinders_returned,
    )


def roll_forward(
    prior: ReceivableBalance | None,
    delta: ReceivableDelta,
    opening: OpeningBalance | None = None,
) -> RunningTotals:
    """Fold ``delta`` (and any opening balance) onto the predecessor's totals."""
    opening = opening or OpeningBalance()
    prior_cash = prior.cash_total if prior is not None else ZERO
    prior_cylinders = prior.cylinder_total if prior is not None else 0
    return RunningTotals(
        cash=prior_cash + delta.cash + opening.cash,
        cylinders=prior_cylinders + delta.cylinders + opening.cylinders,
    )


def check_predecessor(
    candidates: Sequence[ReceivableBalance],
    target_date: date,
) -> ReceivableBalance | None:
    """
    Validate a predecessor lookup and return the single predecessor.

    ``candidates`` are all stored rows on the latest date before
    ``target_date``.  An empty sequence means the chain starts here.
    """
    if not candidates:
        return None

    counterparty_id = candidates[0].counterparty_id
    dates = {c.balance_date for c in candidates}
    if len(dates) > 1:
        raise RecurrenceOrderingError(
            counterparty_id, target_date,
            "predecessor candidates span several dates",
        )
    (predecessor_date,) = dates
    if predecessor_date >= target_date:
        raise RecurrenceOrderingError(
            counterparty_id, target_date,
            f"predecessor dated {predecessor_date.isoformat()} is not before target",
        )
    if len(candidates) > 1:
        logger.error("receivable_duplicate_predecessor", extra={
            "counterparty_id": counterparty_id,
            "target_date": target_date,
            "duplicate_date": predecessor_date,
            "count": len(candidates),
        })
        raise DuplicateBalanceRecordError(
            counterparty_id, target_date, predecessor_date, len(candidates),
        )
    return candidates[0]


def verify_chain_link(
    record: ReceivableBalance,
    predecessor: ReceivableBalance | None,
    target_date: date | None = None,
) -> None:
    """
    Raise StaleBalanceChainError unless ``record`` is consistent with its
    predecessor: total == predecessor total + delta + opening.

    ``target_date`` names the day whose recomputation found the problem;
    it defaults to the record's own date.
    """
    expected = roll_forward(
        predecessor,
        ReceivableDelta(record.cash_delta, record.cylinder_delta),
        OpeningBalance(record.opening_cash, record.opening_cylinders),
    )
    if expected.cash == record.cash_total and expected.cylinders == record.cylinder_total:
        return

    logger.error("receivable_stale_chain_link", extra={
        "counterparty_id": record.counterparty_id,
        "balance_date": record.balance_date,
        "expected_cash": str(expected.cash),
        "stored_cash": str(record.cash_total),
        "expected_cylinders": expected.cylinders,
        "stored_cylinders": record.cylinder_total,
    })
    raise StaleBalanceChainError(
        counterparty_id=record.counterparty_id,
        target_date=target_date or record.balance_date,
        stale_date=record.balance_date,
        expected_cash=str(expected.cash),
        stored_cash=str(record.cash_total),
        expected_cylinders=expected.cylinders,
        stored_cylinders=record.cylinder_total,
    )


@traced_engine(
    "receivable_replay", "1.0",
    fingerprint_fields=("tenant_id", "counterparty_id"),
)
def replay_chain(
    days: Sequence[ChainDay],
    *,
    tenant_id: str,
    counterparty_id: str,
    prior: ReceivableBalance | None = None,
) -> list[ReceivableBalance]:
    """
    Recompute an ordered run of days in memory.

    ``days`` must be strictly ascending and all later than ``prior``.
    Returns one unsaved ReceivableBalance per day.
    """
    balances: list[ReceivableBalance] = []
    previous = prior
    for day in days:
        if previous is not None and day.balance_date <= previous.balance_date:
            raise RecurrenceOrderingError(
                counterparty_id, day.balance_date,
                f"replay input not ascending after {previous.balance_date.isoformat()}",
            )
        delta = compute_deltas(day.activity)
        totals = roll_forward(previous, delta, day.opening)
        previous = ReceivableBalance(
            tenant_id=tenant_id,
            counterparty_id=counterparty_id,
            balance_date=day.balance_date,
            cash_delta=delta.cash,
            cylinder_delta=delta.cylinders,
            cash_total=totals.cash,
            cylinder_total=totals.cylinders,
            opening_cash=day.opening.cash,
            opening_cylinders=day.opening.cylinders,
        )
        balances.append(previous)
    return balances
