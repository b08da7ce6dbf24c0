"""
Module: ledger_kernel.models.receivable
Responsibility: ORM persistence for the per-counterparty daily receivable
    ledger.  Each row is one link of the day-over-day recurrence
    ``total(day) = total(previous day) + delta(day) + opening(day)``.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per (tenant_id, counterparty_id, balance_date): UNIQUE
      constraint.  Recomputation replaces the row, never adds to it.
    - Optimistic concurrency: ``version`` is the SQLAlchemy version_id_col,
      so an UPDATE racing another writer raises StaleDataError instead of
      silently overwriting.
    - (tenant_id, counterparty_id, balance_date) index serves the
      "latest record before date" predecessor query in O(log n).

Failure modes:
    - IntegrityError on a second INSERT for the same key (the service
      retries as an UPDATE).
    - StaleDataError when the row changed between read and write.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.domain.records import ReceivableBalance


class ReceivableBalanceModel(Base):
    """
    Stored daily receivable balance for one counterparty.

    Contract:
        Only ReceivableLedgerService writes rows, and only after reading
        the unique predecessor row for the same counterparty.

    Guarantees:
        - cash_total == predecessor.cash_total + cash_delta + opening_cash.
        - cylinder_total == predecessor.cylinder_total + cylinder_delta
          + opening_cylinders.
        - opening_* values survive recomputation of the day.
    """

    __tablename__ = "receivable_balances"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "counterparty_id",
            "balance_date",
            name="uq_receivable_balance_key",
        ),
        Index(
            "idx_receivable_counterparty_date",
            "tenant_id",
            "counterparty_id",
            "balance_date",
        ),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    counterparty_id: Mapped[str] = mapped_column(String(100), nullable=False)
    balance_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Day deltas (sales activity only)
    cash_delta: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=0)
    cylinder_delta: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Onboarding balances booked on this day
    opening_cash: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=0)
    opening_cylinders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Running totals
    cash_total: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=0)
    cylinder_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    computed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_record(self) -> ReceivableBalance:
        """Convert to the frozen domain record."""
        return ReceivableBalance(
            tenant_id=self.tenant_id,
            counterparty_id=self.counterparty_id,
            balance_date=self.balance_date,
            cash_delta=Decimal(self.cash_delta),
            cylinder_delta=int(self.cylinder_delta),
            cash_total=Decimal(self.cash_total),
            cylinder_total=int(self.cylinder_total),
            opening_cash=Decimal(self.opening_cash),
            opening_cylinders=int(self.opening_cylinders),
            computed_at=self.computed_at,
            version=self.version,
        )
