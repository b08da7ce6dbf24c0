"""
Module: ledger_kernel.models.sale
Responsibility: Reference storage for sale transactions, read through
    EventSelector for both FIFO valuation and the receivable recurrence.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity > 0 (validated again when converted to SaleEvent).
    - (tenant_id, driver_id, sale_date) index serves the per-day
      counterparty aggregation; (tenant_id, product_id, sale_date) serves
      the FIFO window query.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.domain.records import SaleEvent, SaleType


class SaleModel(Base):
    """One sale of a product by a driver."""

    __tablename__ = "sales"

    __table_args__ = (
        Index("idx_sale_driver_date", "tenant_id", "driver_id", "sale_date"),
        Index("idx_sale_product_date", "tenant_id", "product_id", "sale_date"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    driver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    sale_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    total_value: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=0)
    cash_deposited: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=0)
    cylinders_deposited: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sale_date: Mapped[date] = mapped_column(Date, nullable=False)

    def to_event(self) -> SaleEvent:
        return SaleEvent(
            sale_id=str(self.id),
            product_id=self.product_id,
            counterparty_id=self.driver_id,
            quantity=self.quantity,
            unit_price=Decimal(self.unit_price),
            total_value=Decimal(self.total_value),
            sale_type=SaleType(self.sale_type),
            sale_date=self.sale_date,
            discount=Decimal(self.discount or 0),
            cash_deposited=Decimal(self.cash_deposited or 0),
            cylinders_returned=int(self.cylinders_deposited or 0),
        )
