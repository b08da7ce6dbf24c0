"""
Module: ledger_kernel.models.shipment
Responsibility: Reference storage for purchase shipments, read through
    EventSelector.  The host application normally owns this table; the
    kernel ships it so the engine can run against a plain database.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Shipments are immutable once COMPLETED (host responsibility).
    - (tenant_id, product_id, shipment_date) index supports the ascending
      FIFO history query.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.domain.records import PurchaseRecord, ShipmentStatus, ShipmentType


class ShipmentModel(Base):
    """One incoming (or outgoing) shipment of a product."""

    __tablename__ = "shipments"

    __table_args__ = (
        Index("idx_shipment_product_date", "tenant_id", "product_id", "shipment_date"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    shipment_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=ShipmentType.INCOMING_FULL.value,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ShipmentStatus.COMPLETED.value,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    shipment_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Structured cost: whole-unit cost and/or gas + cylinder components
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    gas_unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    cylinder_unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def to_record(self) -> PurchaseRecord:
        return PurchaseRecord(
            record_id=str(self.id),
            product_id=self.product_id,
            quantity=self.quantity,
            record_date=self.shipment_date,
            unit_cost=self.unit_cost,
            gas_unit_cost=self.gas_unit_cost,
            cylinder_unit_cost=self.cylinder_unit_cost,
            memo=self.notes,
        )
