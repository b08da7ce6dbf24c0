"""
Stateful services over the pure engines.

    FifoValuationService      -- FIFO cost figures and stock on hand
    ReceivableLedgerService   -- persistent day-over-day receivable ledger
    KeyedLockRegistry         -- in-process lock per ledger key
    open_database             -- engine setup from EngineConfig
"""

from ledger_services.bootstrap import open_database
from ledger_services.inventory_valuation_service import (
    FifoValuationService,
    InventoryStatus,
)
from ledger_services.key_lock import KeyedLockRegistry
from ledger_services.receivable_service import (
    CollectionPerformance,
    RecalculationFailure,
    RecalculationStats,
    ReceivableLedgerService,
    ReceivablesSummary,
)

__all__ = [
    "CollectionPerformance",
    "FifoValuationService",
    "InventoryStatus",
    "KeyedLockRegistry",
    "RecalculationFailure",
    "RecalculationStats",
    "ReceivableLedgerService",
    "ReceivablesSummary",
    "open_database",
]
