"""
Module: ledger_kernel.selectors.event_selector
Responsibility: SQL implementation of the EventStore read contract over the
    reference ``shipments`` and ``sales`` tables.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every query is scoped by tenant_id.
    - Results are ascending by event date, ties broken by primary key so
      repeated reads return identical sequences.
    - Purchases are restricted to COMPLETED, INCOMING_FULL shipments.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from sqlalchemy import select, union

from ledger_kernel.domain.records import (
    PurchaseRecord,
    SaleEvent,
    SaleType,
    ShipmentStatus,
    ShipmentType,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.sale import SaleModel
from ledger_kernel.models.shipment import ShipmentModel
from ledger_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.events")


class EventSelector(BaseSelector):
    """Reads purchase and sale history for the engine (EventStore protocol)."""

    def product_ids(self, tenant_id: str) -> Sequence[str]:
        stmt = union(
            select(ShipmentModel.product_id).where(ShipmentModel.tenant_id == tenant_id),
            select(SaleModel.product_id).where(SaleModel.tenant_id == tenant_id),
        )
        return sorted(self.session.execute(stmt).scalars().all())

    def counterparty_ids(self, tenant_id: str) -> Sequence[str]:
        stmt = (
            select(SaleModel.driver_id)
            .where(SaleModel.tenant_id == tenant_id)
            .distinct()
            .order_by(SaleModel.driver_id)
        )
        return list(self.session.execute(stmt).scalars().all())

    def purchase_records(
        self,
        tenant_id: str,
        product_id: str,
        up_to: date,
    ) -> Sequence[PurchaseRecord]:
        stmt = (
            select(ShipmentModel)
            .where(
                ShipmentModel.tenant_id == tenant_id,
                ShipmentModel.product_id == product_id,
                ShipmentModel.shipment_type == ShipmentType.INCOMING_FULL.value,
                ShipmentModel.status == ShipmentStatus.COMPLETED.value,
                ShipmentModel.shipment_date <= up_to,
            )
            .order_by(ShipmentModel.shipment_date, ShipmentModel.id)
        )
        rows = self.session.execute(stmt).scalars().all()
        logger.debug("purchase_records_loaded", extra={
            "tenant_id": tenant_id,
            "product_id": product_id,
            "up_to": up_to,
            "count": len(rows),
        })
        return [row.to_record() for row in rows]

    def sale_events(
        self,
        tenant_id: str,
        product_id: str,
        start: date | None,
        end: date,
        sale_type: SaleType | None = None,
        counterparty_id: str | None = None,
    ) -> Sequence[SaleEvent]:
        stmt = select(SaleModel).where(
            SaleModel.tenant_id == tenant_id,
            SaleModel.product_id == product_id,
            SaleModel.sale_date <= end,
        )
        if start is not None:
            stmt = stmt.where(SaleModel.sale_date >= start)
        if sale_type is not None:
            stmt = stmt.where(SaleModel.sale_type == sale_type.value)
        if counterparty_id is not None:
            stmt = stmt.where(SaleModel.driver_id == counterparty_id)
        stmt = stmt.order_by(SaleModel.sale_date, SaleModel.id)

        rows = self.session.execute(stmt).scalars().all()
        return [row.to_event() for row in rows]

    def counterparty_sales(
        self,
        tenant_id: str,
        counterparty_id: str,
        start: date,
        end: date,
    ) -> Sequence[SaleEvent]:
        stmt = (
            select(SaleModel)
            .where(
                SaleModel.tenant_id == tenant_id,
                SaleModel.driver_id == counterparty_id,
                SaleModel.sale_date >= start,
                SaleModel.sale_date <= end,
            )
            .order_by(SaleModel.sale_date, SaleModel.id)
        )
        rows = self.session.execute(stmt).scalars().all()
        return [row.to_event() for row in rows]

    def activity_dates(
        self,
        tenant_id: str,
        counterparty_id: str,
        after: date | None,
        before: date | None,
    ) -> Sequence[date]:
        stmt = select(SaleModel.sale_date).where(
            SaleModel.tenant_id == tenant_id,
            SaleModel.driver_id == counterparty_id,
        )
        if after is not None:
            stmt = stmt.where(SaleModel.sale_date > after)
        if before is not None:
            stmt = stmt.where(SaleModel.sale_date < before)
        stmt = stmt.distinct().order_by(SaleModel.sale_date)
        return list(self.session.execute(stmt).scalars().all())
