"""
Pure calculation engines for the ledger reconciliation engine.

Engines take domain records and return value objects.  They perform no I/O,
hold no state between calls and are safe to run concurrently.
"""

from ledger_engines.fifo import (
    AllocationShortfall,
    ConsumptionMode,
    FifoAllocationResult,
    LotPosition,
    SaleAllocation,
    SalePortion,
    ShortfallPolicy,
    allocate_fifo,
)
from ledger_engines.pricing import (
    CostResolution,
    CostSource,
    MemoPriceParser,
    MemoPrices,
    build_lots,
    extract_unit_cost,
    resolve_unit_cost,
)
from ledger_engines.receivables import (
    ChainDay,
    DailyActivity,
    OpeningBalance,
    ReceivableDelta,
    RunningTotals,
    check_predecessor,
    compute_deltas,
    replay_chain,
    roll_forward,
    verify_chain_link,
)
from ledger_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "AllocationShortfall",
    "ChainDay",
    "ConsumptionMode",
    "CostResolution",
    "CostSource",
    "DailyActivity",
    "FifoAllocationResult",
    "LotPosition",
    "MemoPriceParser",
    "MemoPrices",
    "OpeningBalance",
    "ReceivableDelta",
    "RunningTotals",
    "SaleAllocation",
    "SalePortion",
    "ShortfallPolicy",
    "allocate_fifo",
    "build_lots",
    "check_predecessor",
    "compute_deltas",
    "compute_input_fingerprint",
    "extract_unit_cost",
    "replay_chain",
    "resolve_unit_cost",
    "roll_forward",
    "traced_engine",
    "verify_chain_link",
]
