"""
EventStore -- the read contract the engine requires from its host.

The engine never owns purchase or sale data.  Any adapter that satisfies
this protocol can feed the valuation and receivable services; the SQL
adapter shipped with the kernel is ledger_kernel.selectors.event_selector.

Ordering contract:
    Every sequence is returned ascending by event date.  Records sharing a
    date keep a stable, adapter-defined order.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from typing import Protocol, runtime_checkable

from ledger_kernel.domain.records import PurchaseRecord, SaleEvent, SaleType


@runtime_checkable
class EventStore(Protocol):
    """Read-only access to one host's purchase and sale history."""

    def product_ids(self, tenant_id: str) -> Sequence[str]:
        """Products that have shipments or sales for the tenant."""
        ...

    def counterparty_ids(self, tenant_id: str) -> Sequence[str]:
        """Counterparties that have sales for the tenant."""
        ...

    def purchase_records(
        self,
        tenant_id: str,
        product_id: str,
        up_to: date,
    ) -> Sequence[PurchaseRecord]:
        """Completed incoming shipments dated on or before ``up_to``."""
        ...

    def sale_events(
        self,
        tenant_id: str,
        product_id: str,
        start: date | None,
        end: date,
        sale_type: SaleType | None = None,
        counterparty_id: str | None = None,
    ) -> Sequence[SaleEvent]:
        """Sales of a product in [start, end]; ``start=None`` means all history."""
        ...

    def counterparty_sales(
        self,
        tenant_id: str,
        counterparty_id: str,
        start: date,
        end: date,
    ) -> Sequence[SaleEvent]:
        """All sales of one counterparty in [start, end], every product."""
        ...

    def activity_dates(
        self,
        tenant_id: str,
        counterparty_id: str,
        after: date | None,
        before: date | None,
    ) -> Sequence[date]:
        """Distinct sale dates strictly between ``after`` and ``before``."""
        ...
