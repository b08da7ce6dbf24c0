"""Pure domain types for the ledger kernel."""

from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.event_store import EventStore
from ledger_kernel.domain.records import (
    PurchaseLot,
    PurchaseRecord,
    ReceivableBalance,
    SaleEvent,
    SaleType,
    ShipmentStatus,
    ShipmentType,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "EventStore",
    "PurchaseLot",
    "PurchaseRecord",
    "ReceivableBalance",
    "SaleEvent",
    "SaleType",
    "ShipmentStatus",
    "ShipmentType",
]
