"""
Typed Exception Hierarchy for the Ledger Kernel.

Every error carries a machine-readable ``code`` class attribute and its
context as structured attributes, so callers catch by type and report by
field rather than by parsing messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- ValuationError
    |   +-- InventoryShortfallError
    |   +-- MissingLotCostError
    |
    +-- ReceivableError
    |   +-- RecurrenceOrderingError
    |       +-- DuplicateBalanceRecordError
    |       +-- StaleBalanceChainError
    |       +-- UnrecordedActivityGapError
    |
    +-- ConcurrencyError
        +-- ConcurrentWriteError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                           | When Raised
-------------|--------------------------------|--------------------------------------
Valuation    | INVENTORY_SHORTFALL            | Sales exceed costed lots (raise policy)
             | MISSING_LOT_COST               | Every lot for a product lacks a cost
-------------|--------------------------------|--------------------------------------
Receivable   | RECURRENCE_ORDERING_VIOLATION  | Predecessor lookup is inconsistent
             | DUPLICATE_BALANCE_RECORD       | >1 stored record for one date
             | STALE_BALANCE_CHAIN            | Predecessor total disagrees with chain
             | UNRECORDED_ACTIVITY_GAP        | Active day before target has no record
-------------|--------------------------------|--------------------------------------
Concurrency  | CONCURRENT_WRITE_CONFLICT      | Upsert retries exhausted on a key

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        service.recompute_day(tenant_id, driver_id, day)
    except RecurrenceOrderingError as e:
        # Fatal for this day: never guess a predecessor total.
        flag_provisional(e.counterparty_id, e.target_date, e.code)
    except ConcurrentWriteError:
        # Safe to retry the whole call.
        requeue()

Shortfalls are normally surfaced on the allocation result itself
(``FifoAllocationResult.shortfalls``); InventoryShortfallError is raised only
when the caller selects the strict shortfall policy.
"""

from datetime import date


class LedgerError(Exception):
    """
    Base exception for all ledger reconciliation errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_ERROR"


# Valuation-related exceptions


class ValuationError(LedgerError):
    """Base exception for FIFO valuation errors."""

    code: str = "VALUATION_ERROR"


class InventoryShortfallError(ValuationError):
    """Sales quantity exceeds the costed lot inventory for a product."""

    code: str = "INVENTORY_SHORTFALL"

    def __init__(
        self,
        product_id: str,
        sale_id: str,
        requested: int,
        allocated: int,
    ):
        self.product_id = product_id
        self.sale_id = sale_id
        self.requested = requested
        self.allocated = allocated
        self.missing = requested - allocated
        super().__init__(
            f"Inventory shortfall for product {product_id}: sale {sale_id} "
            f"requested {requested}, only {allocated} matched to costed lots"
        )


class MissingLotCostError(ValuationError):
    """No lot for the product has a usable unit cost."""

    code: str = "MISSING_LOT_COST"

    def __init__(self, product_id: str, lot_ids: tuple[str, ...]):
        self.product_id = product_id
        self.lot_ids = lot_ids
        super().__init__(
            f"All {len(lot_ids)} lot(s) for product {product_id} lack a unit cost; "
            "refusing to value inventory at zero"
        )


# Receivable-related exceptions


class ReceivableError(LedgerError):
    """Base exception for receivable ledger errors."""

    code: str = "RECEIVABLE_ERROR"


class RecurrenceOrderingError(ReceivableError):
    """The predecessor of a recomputed day is missing, stale or duplicated."""

    code: str = "RECURRENCE_ORDERING_VIOLATION"

    def __init__(
        self,
        counterparty_id: str,
        target_date: date,
        reason: str,
    ):
        self.counterparty_id = counterparty_id
        self.target_date = target_date
        self.reason = reason
        super().__init__(
            f"Cannot recompute receivables for {counterparty_id} on "
            f"{target_date.isoformat()}: {reason}"
        )


class DuplicateBalanceRecordError(RecurrenceOrderingError):
    """More than one stored balance exists for the same counterparty date."""

    code: str = "DUPLICATE_BALANCE_RECORD"

    def __init__(
        self,
        counterparty_id: str,
        target_date: date,
        duplicate_date: date,
        count: int,
    ):
        self.duplicate_date = duplicate_date
        self.count = count
        super().__init__(
            counterparty_id,
            target_date,
            f"{count} records stored for {duplicate_date.isoformat()}",
        )


class StaleBalanceChainError(RecurrenceOrderingError):
    """A stored total does not equal its predecessor total plus its delta."""

    code: str = "STALE_BALANCE_CHAIN"

    def __init__(
        self,
        counterparty_id: str,
        target_date: date,
        stale_date: date,
        expected_cash: str,
        stored_cash: str,
        expected_cylinders: int,
        stored_cylinders: int,
    ):
        self.stale_date = stale_date
        self.expected_cash = expected_cash
        self.stored_cash = stored_cash
        self.expected_cylinders = expected_cylinders
        self.stored_cylinders = stored_cylinders
        super().__init__(
            counterparty_id,
            target_date,
            f"record for {stale_date.isoformat()} is stale "
            f"(cash expected {expected_cash}, stored {stored_cash}; "
            f"cylinders expected {expected_cylinders}, stored {stored_cylinders})",
        )


class UnrecordedActivityGapError(RecurrenceOrderingError):
    """A day with sales activity before the target has never been computed."""

    code: str = "UNRECORDED_ACTIVITY_GAP"

    def __init__(
        self,
        counterparty_id: str,
        target_date: date,
        missing_dates: tuple[date, ...],
    ):
        self.missing_dates = missing_dates
        listed = ", ".join(d.isoformat() for d in missing_dates)
        super().__init__(
            counterparty_id,
            target_date,
            f"activity on {listed} has no stored balance",
        )


# Concurrency-related exceptions


class ConcurrencyError(LedgerError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentWriteError(ConcurrencyError):
    """Read-modify-write on a balance key kept conflicting after retries."""

    code: str = "CONCURRENT_WRITE_CONFLICT"

    def __init__(
        self,
        tenant_id: str,
        counterparty_id: str,
        balance_date: date,
        attempts: int,
    ):
        self.tenant_id = tenant_id
        self.counterparty_id = counterparty_id
        self.balance_date = balance_date
        self.attempts = attempts
        super().__init__(
            f"Concurrent write conflict on receivable balance "
            f"({tenant_id}, {counterparty_id}, {balance_date.isoformat()}) "
            f"after {attempts} attempt(s)"
        )
