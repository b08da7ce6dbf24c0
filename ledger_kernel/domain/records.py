"""
Domain records -- immutable inputs and outputs of the reconciliation engine.

Responsibility:
    Define the frozen value objects exchanged between the event store,
    the pure engines and the services: purchase records and lots, sale
    events, and stored receivable balances.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.  Imported by engines, selectors
    and services alike.

Invariants enforced:
    - PurchaseLot.quantity >= 0 and unit_cost (when known) >= 0.
    - SaleEvent.quantity > 0.
    - All amounts are Decimal; quantities are int.
    - Frozen dataclasses: a lot's remaining quantity is NEVER stored on the
      lot.  Allocation runs build their own positions (see ledger_engines.fifo).

Failure modes:
    - ValueError from __post_init__ on violated invariants.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from ledger_kernel.db.types import ZERO
from ledger_kernel.logging_config import get_logger

logger = get_logger("domain.records")


class SaleType(str, Enum):
    """Sale type.  REFILL returns the cylinder; PACKAGE sells gas and cylinder."""

    REFILL = "REFILL"
    PACKAGE = "PACKAGE"


class ShipmentType(str, Enum):
    """Shipment direction as stored by the event store."""

    INCOMING_FULL = "INCOMING_FULL"
    OUTGOING_EMPTY = "OUTGOING_EMPTY"


class ShipmentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True, slots=True)
class PurchaseRecord:
    """
    A completed incoming shipment as read from the event store.

    Cost may come from three places, in order of precedence:
    the structured gas/cylinder components, the structured ``unit_cost``
    field, or a free-text ``memo`` (legacy imports).
    See ledger_engines.pricing.resolve_unit_cost.
    """

    record_id: str
    product_id: str
    quantity: int
    record_date: date
    unit_cost: Decimal | None = None
    gas_unit_cost: Decimal | None = None
    cylinder_unit_cost: Decimal | None = None
    memo: str | None = None

    def __post_init__(self) -> None:
        if self.quantity < 0:
            logger.error("purchase_record_negative_quantity", extra={
                "record_id": self.record_id,
                "product_id": self.product_id,
                "quantity": self.quantity,
            })
            raise ValueError(
                f"Purchase quantity cannot be negative, got {self.quantity}"
            )
        for name in ("unit_cost", "gas_unit_cost", "cylinder_unit_cost"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} cannot be negative, got {value}")


@dataclass(frozen=True, slots=True)
class PurchaseLot:
    """
    One purchase lot costed for a single sale-type context.

    ``unit_cost`` is None when no cost could be derived.  Such lots, and
    lots costed at zero, are excluded from allocation and reported on the
    result.
    """

    lot_id: str
    product_id: str
    quantity: int
    lot_date: date
    unit_cost: Decimal | None
    memo: str | None = None

    def __post_init__(self) -> None:
        if self.quantity < 0:
            logger.error("purchase_lot_invalid_quantity", extra={
                "lot_id": self.lot_id,
                "product_id": self.product_id,
                "quantity": self.quantity,
            })
            raise ValueError(f"Lot quantity cannot be negative, got {self.quantity}")
        if self.unit_cost is not None and self.unit_cost < 0:
            logger.error("purchase_lot_negative_cost", extra={
                "lot_id": self.lot_id,
                "product_id": self.product_id,
                "unit_cost": str(self.unit_cost),
            })
            raise ValueError(f"Lot unit cost cannot be negative, got {self.unit_cost}")

    @property
    def is_costed(self) -> bool:
        return self.unit_cost is not None and self.unit_cost > 0

    @property
    def original_cost(self) -> Decimal:
        """Total cost of the full lot (zero when uncosted)."""
        if self.unit_cost is None:
            return ZERO
        return self.unit_cost * self.quantity


@dataclass(frozen=True, slots=True)
class SaleEvent:
    """
    One sale transaction for a product.

    ``total_value`` is quantity x unit price net of any upstream discount;
    ``discount``, ``cash_deposited`` and ``cylinders_returned`` are the
    collection fields that drive the receivable recurrence.
    """

    sale_id: str
    product_id: str
    counterparty_id: str
    quantity: int
    unit_price: Decimal
    total_value: Decimal
    sale_type: SaleType
    sale_date: date
    discount: Decimal = ZERO
    cash_deposited: Decimal = ZERO
    cylinders_returned: int = 0

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            logger.error("sale_event_invalid_quantity", extra={
                "sale_id": self.sale_id,
                "product_id": self.product_id,
                "quantity": self.quantity,
            })
            raise ValueError(f"Sale quantity must be positive, got {self.quantity}")
        if self.cylinders_returned < 0:
            raise ValueError(
                f"Cylinders returned cannot be negative, got {self.cylinders_returned}"
            )


@dataclass(frozen=True, slots=True)
class ReceivableBalance:
    """
    Stored running receivable state for one counterparty on one day.

    ``cash_total`` = previous total + ``cash_delta`` + ``opening_cash``
    (the same holds for the cylinder track).
    """

    tenant_id: str
    counterparty_id: str
    balance_date: date
    cash_delta: Decimal
    cylinder_delta: int
    cash_total: Decimal
    cylinder_total: int
    opening_cash: Decimal = ZERO
    opening_cylinders: int = 0
    computed_at: datetime | None = None
    version: int = 0
